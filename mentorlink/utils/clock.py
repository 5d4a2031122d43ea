import uuid
from datetime import datetime, UTC
from typing import Annotated, Optional

from pydantic import AfterValidator


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
