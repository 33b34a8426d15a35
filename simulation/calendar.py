"""Trading-day guard for the tick scheduler.

Dates are evaluated in UTC. The holiday table lists NYSE full-day closures;
early closes are trading days.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

MARKET_HOLIDAYS: frozenset[date] = frozenset(
    date.fromisoformat(d)
    for d in (
        # 2025
        "2025-01-01", "2025-01-09", "2025-01-20", "2025-02-17", "2025-04-18",
        "2025-05-26", "2025-06-19", "2025-07-04", "2025-09-01", "2025-11-27",
        "2025-12-25",
        # 2026
        "2026-01-01", "2026-01-19", "2026-02-16", "2026-04-03", "2026-05-25",
        "2026-06-19", "2026-07-03", "2026-09-07", "2026-11-26", "2026-12-25",
        # 2027
        "2027-01-01", "2027-01-18", "2027-02-15", "2027-03-26", "2027-05-31",
        "2027-06-18", "2027-07-05", "2027-09-06", "2027-11-25", "2027-12-24",
    )
)


def utc_date(moment: datetime) -> date:
    """Calendar date of *moment* in UTC (naive datetimes are taken as UTC)."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(timezone.utc).date()


def is_weekend(moment: datetime) -> bool:
    return utc_date(moment).weekday() >= 5


def holiday_on(moment: datetime) -> date | None:
    """Return the holiday date if the market is closed on *moment*'s UTC date."""
    day = utc_date(moment)
    return day if day in MARKET_HOLIDAYS else None


def closed_reason(moment: datetime) -> str | None:
    """Skip reason for a non-trading day, or None when the market is open.

    Returns ``"weekend"`` or ``"holiday: YYYY-MM-DD"``.
    """
    if is_weekend(moment):
        return "weekend"
    holiday = holiday_on(moment)
    if holiday is not None:
        return f"holiday: {holiday.isoformat()}"
    return None


def hour_bucket(moment: datetime) -> datetime:
    """Truncate *moment* to the start of its UTC hour (the idempotence key)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
