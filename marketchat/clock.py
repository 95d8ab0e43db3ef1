from datetime import datetime, timedelta, timezone

# Smallest step the store keeps for timestamps (Postgres and SQLite both hold microseconds).
TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from drivers that drop the offset."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def next_after(latest: datetime | None, now: datetime | None = None) -> datetime:
    """Return `now`, or one tick past `latest` if the clock has not moved beyond it."""
    now = now or utcnow()
    latest = as_utc(latest)
    if latest is not None and now <= latest:
        return latest + TICK
    return now
