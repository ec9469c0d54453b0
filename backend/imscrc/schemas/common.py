from datetime import datetime, timezone


def to_utc(value: datetime | None) -> datetime | None:
    """Aware datetimes are stored in UTC; naive ones are taken to be UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


def page_count(total: int, per_page: int) -> int:
    """Number of the last page; an empty result still has page 1."""
    return max(1, -(-total // per_page))
