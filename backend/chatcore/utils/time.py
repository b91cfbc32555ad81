from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Naive UTC at millisecond precision, the form BSON round-trips unchanged."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


def from_epoch_ms(value: float) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)
