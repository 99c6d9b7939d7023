from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from pmpulse.core.database import Base


class AppfolioConnection(Base):
    """AppFolio API connection; credentials are stored encrypted"""
    __tablename__ = "appfolio_connections"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, default="AppFolio")
    database = Column(String(255), nullable=True, comment="AppFolio vhost, e.g. 'acme' for acme.appfolio.com")
    client_id = Column(String(255), nullable=True)
    client_secret_encrypted = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="not_configured")  # 'not_configured', 'connected', 'error'
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def is_configured(self) -> bool:
        return bool(self.database and self.client_id and self.client_secret_encrypted)

    def __repr__(self):
        return f"<AppfolioConnection(id={self.id}, name='{self.name}', database='{self.database}', status={self.status})>"
