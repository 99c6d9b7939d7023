from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean
from sqlalchemy.sql import func
from pmpulse.core.database import Base, generate_uuid


class Property(Base):
    """Property synced from the AppFolio property directory"""
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address_line1 = Column(String(255), nullable=True)
    address_line2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    zip = Column(String(20), nullable=True)
    county = Column(String(100), nullable=True)
    property_type = Column(String(50), nullable=True)
    unit_count = Column(Integer, nullable=True)
    year_built = Column(Integer, nullable=True)
    total_sqft = Column(Integer, nullable=True)
    portfolio = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    source_updated_at = Column(DateTime(timezone=True), nullable=True, comment="Last modification time reported by AppFolio")
    # Local-only fields, never written by sync
    notes = Column(Text, nullable=True)
    latitude = Column(String(32), nullable=True)
    longitude = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Property(id={self.id}, name='{self.name}', external_id='{self.external_id}')>"
