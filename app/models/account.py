from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
)

from app.models.base import Base, utcnow_naive


class Account(Base):
    """Per-user plan and monthly AI-usage balance."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("monthly_credits >= 0", name="ck_accounts_monthly_nonneg"),
        Index("ix_accounts_plan_end", "plan", "subscription_end"),
    )

    email = Column(String(320), primary_key=True)
    plan = Column(Enum("free", "pro", name="account_plan"), nullable=False, default="free")
    monthly_credits = Column(Integer, nullable=False, default=0)
    last_monthly_reset = Column(Date, nullable=True)
    subscription_start = Column(DateTime, nullable=True)
    subscription_end = Column(DateTime, nullable=True)
    is_manual_assignment = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive)


__all__ = ["Account"]
