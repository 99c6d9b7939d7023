from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pmpulse.core.database import Base, generate_uuid


class WorkOrder(Base):
    """Work order synced from the AppFolio work order report"""
    __tablename__ = "work_orders"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=True, index=True)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=True)  # null for building-wide work
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=True)
    vendor_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="open")  # 'open', 'in_progress', 'completed', 'cancelled'
    priority = Column(String(20), nullable=False, default="normal")  # 'low', 'normal', 'high', 'emergency'
    category = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    amount = Column(Float, nullable=True)
    vendor_bill_amount = Column(Float, nullable=True)
    estimate_amount = Column(Float, nullable=True)
    vendor_trade = Column(String(255), nullable=True)
    source_updated_at = Column(DateTime(timezone=True), nullable=True)
    # Local-only
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    property = relationship("Property")
    unit = relationship("Unit")
    vendor = relationship("Vendor")

    def __repr__(self):
        return f"<WorkOrder(id={self.id}, status={self.status}, external_id='{self.external_id}')>"
