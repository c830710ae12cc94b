from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


def utcnow_naive() -> datetime:
    """Timestamps are stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass
