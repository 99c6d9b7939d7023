from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pmpulse.core.database import Base


class SyncRun(Base):
    """One execution of the AppFolio ingestion pipeline"""
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    connection_id = Column(Integer, ForeignKey("appfolio_connections.id"), nullable=True, index=True)
    mode = Column(String(20), nullable=False)  # 'full', 'incremental'
    status = Column(String(20), nullable=False, default="pending", index=True)  # 'pending', 'running', 'completed', 'failed'
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    processed = Column(Integer, default=0, nullable=False)
    created = Column(Integer, default=0, nullable=False)
    updated = Column(Integer, default=0, nullable=False)
    skipped = Column(Integer, default=0, nullable=False)
    errors_count = Column(Integer, default=0, nullable=False)
    error_summary = Column(Text, nullable=True)
    # triggered_by, date_range, stopped_early, follow_ups
    run_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    connection = relationship("AppfolioConnection")
    resources = relationship(
        "SyncRunResource",
        back_populates="sync_run",
        cascade="all, delete-orphan",
        order_by="SyncRunResource.id",
    )

    @property
    def date_range(self):
        return (self.run_metadata or {}).get("date_range")

    @property
    def triggered_by(self):
        return (self.run_metadata or {}).get("triggered_by")

    @property
    def is_finished(self) -> bool:
        return self.status in ("completed", "failed")

    def __repr__(self):
        return f"<SyncRun(id={self.id}, mode={self.mode}, status={self.status}, processed={self.processed})>"


class SyncRunResource(Base):
    """Per-resource counts for a sync run"""
    __tablename__ = "sync_run_resources"

    id = Column(Integer, primary_key=True, index=True)
    sync_run_id = Column(Integer, ForeignKey("sync_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False)
    received = Column(Integer, default=0, nullable=False)
    created = Column(Integer, default=0, nullable=False)
    updated = Column(Integer, default=0, nullable=False)
    skipped = Column(Integer, default=0, nullable=False)
    errors = Column(Integer, default=0, nullable=False)
    pages = Column(Integer, default=0, nullable=False)
    duration_ms = Column(Integer, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)
    error_messages = Column(JSON, nullable=True)  # most recent 10

    sync_run = relationship("SyncRun", back_populates="resources")

    def __repr__(self):
        return (
            f"<SyncRunResource(run={self.sync_run_id}, resource_type={self.resource_type}, "
            f"created={self.created}, updated={self.updated}, skipped={self.skipped})>"
        )
