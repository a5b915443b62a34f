from collections.abc import Iterable
from datetime import date, timedelta


def current_streak(completed_dates: Iterable[date], today: date) -> int:
    """
    Consecutive days with a completed session, counted back from the most recent one.

    The streak is alive only if the latest completed day is today or yesterday.

    Example:
        >>> today = date(2025, 3, 10)
        >>> current_streak([date(2025, 3, 9), date(2025, 3, 8)], today)
        2
    """
    days = sorted(set(completed_dates), reverse=True)
    if not days:
        return 0

    if days[0] not in (today, today - timedelta(days=1)):
        return 0

    streak = 0
    expected = days[0]
    for day in days:
        if day != expected:
            break
        streak += 1
        expected -= timedelta(days=1)
    return streak
