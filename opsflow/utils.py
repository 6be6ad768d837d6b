import uuid
from datetime import datetime, timezone
from typing import Optional


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def progress_percent(completed_steps: int, total_steps: int) -> int:
    if total_steps <= 0:
        return 0
    # Half-up rounding, integer arithmetic
    return (200 * completed_steps + total_steps) // (2 * total_steps)
