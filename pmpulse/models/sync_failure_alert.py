from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pmpulse.core.database import Base


class SyncFailureAlert(Base):
    """Consecutive sync failure streak for a connection"""
    __tablename__ = "sync_failure_alerts"

    id = Column(Integer, primary_key=True, index=True)
    connection_id = Column(Integer, ForeignKey("appfolio_connections.id"), unique=True, nullable=False)
    consecutive_failures = Column(Integer, default=0, nullable=False)
    failure_details = Column(JSON, nullable=True)  # most recent failures, newest last
    last_alert_sent_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_by = Column(String(255), nullable=True)
    acknowledged_failure_count = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    connection = relationship("AppfolioConnection")

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def __repr__(self):
        return f"<SyncFailureAlert(connection_id={self.connection_id}, consecutive_failures={self.consecutive_failures})>"
