"""Website-builder credit wallet.

Two pools: ``weekly_credits`` is reseeded every 7 days according to the plan,
``purchased_credits`` only grows through verified top-ups and never expires.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from .base import Base, utcnow_naive


class CreditWallet(Base):
    __tablename__ = "credit_wallets"
    __table_args__ = (
        CheckConstraint("weekly_credits >= 0", name="ck_wallets_weekly_nonneg"),
        CheckConstraint("purchased_credits >= 0", name="ck_wallets_purchased_nonneg"),
    )

    email = Column(String(320), primary_key=True)
    weekly_credits = Column(Integer, nullable=False, default=0)
    purchased_credits = Column(Integer, nullable=False, default=0)
    week_start_date = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow_naive)


__all__ = ["CreditWallet"]
