from sqlalchemy import Column, String, DateTime, Date, ForeignKey, Text, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pmpulse.core.database import Base, generate_uuid


class Expense(Base):
    """Expense line synced from the AppFolio expense register"""
    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=True)
    payee_name = Column(String(255), nullable=True)
    bill_date = Column(Date, nullable=True, index=True)
    due_date = Column(Date, nullable=True)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    amount = Column(Float, nullable=True)
    paid = Column(Float, nullable=True)
    unpaid = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    gl_account = Column(String(255), nullable=True)
    gl_account_number = Column(String(50), nullable=True, index=True)
    utility_type = Column(String(50), nullable=True, comment="Null when the GL account is not mapped")
    reference_number = Column(String(100), nullable=True)
    source_updated_at = Column(DateTime(timezone=True), nullable=True)
    # Local-only manual adjustments
    adjusted_amount = Column(Float, nullable=True)
    adjustment_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    property = relationship("Property")
    vendor = relationship("Vendor")

    def __repr__(self):
        return f"<Expense(id={self.id}, amount={self.amount}, utility_type={self.utility_type}, external_id='{self.external_id}')>"
