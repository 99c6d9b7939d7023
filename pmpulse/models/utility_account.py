from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from pmpulse.core.database import Base


class UtilityAccount(Base):
    """GL account number to utility type mapping used to categorize expenses"""
    __tablename__ = "utility_accounts"

    id = Column(Integer, primary_key=True, index=True)
    gl_account_number = Column(String(50), unique=True, nullable=False, index=True)
    gl_account_name = Column(String(255), nullable=True)
    utility_type = Column(String(50), nullable=False)  # 'water', 'electric', 'gas', 'trash', 'sewer', ...
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<UtilityAccount(gl_account_number='{self.gl_account_number}', utility_type={self.utility_type})>"
