from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; all columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
