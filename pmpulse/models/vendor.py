from sqlalchemy import Column, String, DateTime, Date, Text, Boolean
from sqlalchemy.sql import func
from pmpulse.core.database import Base, generate_uuid


class Vendor(Base):
    """Vendor synced from the AppFolio vendor directory"""
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    company_name = Column(String(255), nullable=False)
    contact_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address_street = Column(String(255), nullable=True)
    address_city = Column(String(100), nullable=True)
    address_state = Column(String(50), nullable=True)
    address_zip = Column(String(20), nullable=True)
    vendor_type = Column(String(100), nullable=True)
    vendor_trades = Column(String(500), nullable=True)
    workers_comp_expires = Column(Date, nullable=True)
    liability_ins_expires = Column(Date, nullable=True)
    auto_ins_expires = Column(Date, nullable=True)
    state_lic_expires = Column(Date, nullable=True)
    do_not_use = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    source_updated_at = Column(DateTime(timezone=True), nullable=True)
    # Local-only, set by operators when merging duplicate vendors
    canonical_vendor_id = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Vendor(id={self.id}, company_name='{self.company_name}', external_id='{self.external_id}')>"
