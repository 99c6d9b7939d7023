from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pmpulse.core.database import Base, generate_uuid


class Unit(Base):
    """Rentable unit synced from the AppFolio unit directory"""
    __tablename__ = "units"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    unit_number = Column(String(100), nullable=False)
    unit_type = Column(String(100), nullable=True)
    sqft = Column(Integer, nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Float, nullable=True)
    status = Column(String(20), nullable=False, default="vacant")  # 'occupied', 'vacant', 'not_ready'
    market_rent = Column(Float, nullable=True)
    advertised_rent = Column(Float, nullable=True)
    rentable = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    source_updated_at = Column(DateTime(timezone=True), nullable=True)
    # Local-only
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    property = relationship("Property", backref="units")

    def __repr__(self):
        return f"<Unit(id={self.id}, unit_number='{self.unit_number}', external_id='{self.external_id}')>"
