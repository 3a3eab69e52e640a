"""
Holiday calendar snapshot for working-day arithmetic.

Holidays come from the `holidays` table. A holiday either names one exact
date, or (is_recurring) matches the same month and day in every year.
The snapshot is cached in-process and dropped whenever holidays change.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from djflow.core.config import settings
from djflow.core.database import SupabaseClient, get_supabase_client


logger = logging.getLogger(__name__)


# Cache the calendar to avoid repeated DB calls
_calendar_cache: Optional["HolidayCalendar"] = None
_calendar_cache_expiry: datetime | None = None


def _as_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class HolidayCalendar:
    """Immutable set of exact-date and recurring (month, day) holidays."""
    dates: frozenset[date] = frozenset()
    recurring: frozenset[tuple[int, int]] = frozenset()
    names: dict[date, str] = field(default_factory=dict, compare=False)
    recurring_names: dict[tuple[int, int], str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_rows(cls, rows: Iterable[dict]) -> "HolidayCalendar":
        """Build a calendar from `holidays` rows."""
        dates: set[date] = set()
        recurring: set[tuple[int, int]] = set()
        names: dict[date, str] = {}
        recurring_names: dict[tuple[int, int], str] = {}

        for row in rows:
            holiday_date = _as_date(row["holiday_date"])
            if row.get("is_recurring"):
                key = (holiday_date.month, holiday_date.day)
                recurring.add(key)
                recurring_names.setdefault(key, row.get("name", ""))
            else:
                dates.add(holiday_date)
                names.setdefault(holiday_date, row.get("name", ""))

        return cls(
            dates=frozenset(dates),
            recurring=frozenset(recurring),
            names=names,
            recurring_names=recurring_names,
        )

    @classmethod
    def empty(cls) -> "HolidayCalendar":
        return cls()

    def is_holiday(self, check_date: date) -> bool:
        if check_date in self.dates:
            return True
        return (check_date.month, check_date.day) in self.recurring

    def holiday_name(self, check_date: date) -> Optional[str]:
        """Name of the holiday on this date, or None."""
        if check_date in self.names:
            return self.names[check_date]
        return self.recurring_names.get((check_date.month, check_date.day))


def load_holiday_calendar(db: Optional[SupabaseClient] = None) -> HolidayCalendar:
    """Load the holiday calendar, serving from cache while it is fresh."""
    global _calendar_cache, _calendar_cache_expiry

    now = datetime.now(timezone.utc)
    if _calendar_cache is not None and _calendar_cache_expiry and now < _calendar_cache_expiry:
        return _calendar_cache

    db = db or get_supabase_client()
    rows = db.get_holidays()

    _calendar_cache = HolidayCalendar.from_rows(rows)
    _calendar_cache_expiry = now + timedelta(minutes=settings.holiday_cache_ttl_minutes)

    logger.debug(
        f"Loaded holiday calendar: {len(_calendar_cache.dates)} dated, "
        f"{len(_calendar_cache.recurring)} recurring"
    )
    return _calendar_cache


def invalidate_holiday_cache() -> None:
    """Drop the cached calendar so the next lookup reloads it."""
    global _calendar_cache, _calendar_cache_expiry
    _calendar_cache = None
    _calendar_cache_expiry = None
