# learnhub/models/base.py - Declarative base shared by all models
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase

MONEY_QUANT = Decimal("0.01")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass
