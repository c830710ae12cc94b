from sqlalchemy import Column, DateTime, Integer, String

from .base import Base, utcnow_naive


class UsageLog(Base):
    """Non-authoritative record of credit consumption and plan changes."""

    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True)
    user_email = Column(String(320), nullable=False, index=True)
    model = Column(String, nullable=True)
    operation_type = Column(String, nullable=False)
    credits_consumed = Column(Integer, nullable=False, default=0)
    credits_remaining = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow_naive, index=True)
