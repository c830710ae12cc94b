from sqlalchemy import Column, DateTime, Enum, Integer, String

from app.models.base import Base, utcnow_naive


class PaymentRecord(Base):
    """Gateway order and its reconciliation state.

    ``payment_id`` stays NULL until the order is credited; its unique
    constraint is what makes crediting idempotent.
    """

    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True)
    user_email = Column(String(320), nullable=False, index=True)
    order_id = Column(String, nullable=False, unique=True)
    payment_id = Column(String, nullable=True, unique=True)
    subscription_id = Column(String, nullable=True, index=True)
    plan_type = Column(
        Enum("pro", "website_credits", name="payment_plan_type"), nullable=False
    )
    package_id = Column(Integer, nullable=True)
    credits = Column(Integer, nullable=True)
    amount = Column(Integer)
    currency = Column(String, default="INR")
    status = Column(
        Enum(
            "pending",
            "active",
            "failed",
            "cancelled",
            "expired",
            name="payment_record_status",
        ),
        nullable=False,
    )
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive)
