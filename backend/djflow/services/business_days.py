"""
Business Day Calculator for DJ Flow.

Working day = not Saturday, not Sunday, not a holiday (exact or recurring).

Key Rules:
- Friday + 2 working days → Tuesday
- Adding working days always lands on a working day
- Adding zero (or fewer) working days returns the start date unchanged
- SLA due dates count working days from the creation date
"""
from datetime import date, timedelta
from typing import Optional

from djflow.core.config import settings
from djflow.services.holiday_calendar import HolidayCalendar, load_holiday_calendar


def is_weekend(check_date: date) -> bool:
    """Check if date is a weekend (Saturday=5, Sunday=6)."""
    return check_date.weekday() >= 5


def is_working_day(check_date: date, calendar: Optional[HolidayCalendar] = None) -> bool:
    """
    Check if a date is a working day.

    Working day = Not weekend AND not holiday
    """
    if is_weekend(check_date):
        return False
    calendar = calendar or load_holiday_calendar()
    return not calendar.is_holiday(check_date)


def add_working_days(
    start_date: date,
    num_days: int,
    calendar: Optional[HolidayCalendar] = None
) -> date:
    """
    Calculate N working days after a start date.

    Example:
        start_date = Friday April 18
        num_days = 2
        result = Tuesday April 22 (skips weekend)

    Args:
        start_date: The starting date (not counted)
        num_days: Number of working days to add
        calendar: Holiday snapshot; loaded from the store when omitted

    Returns:
        Date that is N working days after start

    Raises:
        ValueError: If no working day exists within the search limit
    """
    if num_days <= 0:
        return start_date

    calendar = calendar or load_holiday_calendar()
    limit = settings.working_day_search_limit

    result_date = start_date
    days_counted = 0
    gap = 0

    while days_counted < num_days:
        result_date = result_date + timedelta(days=1)

        if is_working_day(result_date, calendar):
            days_counted += 1
            gap = 0
        else:
            gap += 1
            if gap > limit:
                raise ValueError(
                    f"No working day found within {limit} days after {result_date - timedelta(days=gap)}"
                )

    return result_date


def working_days_between(
    start_date: date,
    end_date: date,
    calendar: Optional[HolidayCalendar] = None
) -> int:
    """
    Count working days between two dates, both ends included.

    Returns 0 when end_date is before start_date.
    """
    if end_date < start_date:
        return 0

    calendar = calendar or load_holiday_calendar()
    count = 0
    current = start_date

    while current <= end_date:
        if is_working_day(current, calendar):
            count += 1
        current += timedelta(days=1)

    return count


def calculate_due_date(
    start_date: date,
    sla_working_days: Optional[int] = None,
    calendar: Optional[HolidayCalendar] = None
) -> date:
    """Due date for a job type SLA, counted in working days from start_date."""
    if sla_working_days is None:
        sla_working_days = settings.default_sla_working_days
    return add_working_days(start_date, sla_working_days, calendar)


def get_deadline_urgency(deadline: date, today: Optional[date] = None) -> str:
    """
    Determine urgency level based on deadline proximity.

    Returns:
        CRITICAL: Due today or overdue
        HIGH: Due tomorrow
        NORMAL: Due within 3 days
        LOW: Due later
    """
    today = today or date.today()

    if deadline <= today:
        return "CRITICAL"

    days_until = (deadline - today).days

    if days_until == 1:
        return "HIGH"
    elif days_until <= 3:
        return "NORMAL"
    else:
        return "LOW"
