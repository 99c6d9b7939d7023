from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from pmpulse.core.database import Base


class RawEvent(Base):
    """Raw AppFolio report page, stored before any transformation"""
    __tablename__ = "raw_events"

    id = Column(Integer, primary_key=True, index=True)
    sync_run_id = Column(Integer, ForeignKey("sync_runs.id"), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False, index=True)
    page_number = Column(Integer, nullable=False)
    page_url = Column(String(1000), nullable=True)
    record_count = Column(Integer, default=0, nullable=False)
    payload = Column(JSON, nullable=False)
    pulled_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<RawEvent(id={self.id}, resource_type={self.resource_type}, page={self.page_number}, records={self.record_count})>"
