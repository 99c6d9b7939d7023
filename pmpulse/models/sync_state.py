from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from pmpulse.core.database import Base


class SyncState(Base):
    """Incremental sync progress, one row per resource type"""
    __tablename__ = "sync_states"

    id = Column(Integer, primary_key=True, index=True)
    resource_type = Column(String(50), unique=True, nullable=False, index=True)
    watermark = Column(DateTime(timezone=True), nullable=True, comment="Latest record modification time synced")
    cursor = Column(JSON, nullable=True, comment="Next page of a fetch stopped by the rate limit, with its window")
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_run_id = Column(Integer, ForeignKey("sync_runs.id"), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SyncState(resource_type={self.resource_type}, watermark={self.watermark})>"
