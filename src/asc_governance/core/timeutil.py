"""Date helpers shared by the audit query, analytics and retention paths."""

from datetime import UTC, date, datetime, time, timedelta


def day_bounds(
    start_date: date | None,
    end_date: date | None,
) -> tuple[datetime | None, datetime | None]:
    """Convert an inclusive day range into a half-open UTC datetime range.

    Args:
        start_date: First day included, or None for unbounded.
        end_date: Last day included, or None for unbounded.

    Returns:
        (start, end) where rows match ``start <= created_at < end``.
    """
    start = datetime.combine(start_date, time.min, tzinfo=UTC) if start_date else None
    end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=UTC) if end_date else None
    return start, end


def add_years(moment: datetime, years: int) -> datetime:
    """Shift a datetime by whole calendar years. Feb 29 maps to Feb 28."""
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        return moment.replace(year=moment.year + years, day=28)


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment
