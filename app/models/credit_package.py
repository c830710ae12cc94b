from sqlalchemy import Boolean, Column, Integer, String

from .base import Base


class CreditPackage(Base):
    """Purchasable wallet top-up."""

    __tablename__ = "credit_packages"

    id = Column(Integer, primary_key=True)
    credits = Column(Integer, nullable=False)
    price_inr = Column(Integer, nullable=False)
    display_name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
