from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware UTC now; every stored timestamp goes through here."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands timestamps back naive; treat those as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
