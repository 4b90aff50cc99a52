"""Streak and completion statistics over a habit's completion log.

Pure functions: no I/O, no clock reads. Every function first collapses
the log to one outcome per calendar day, keeping the most recent entry
for that day.
"""

from datetime import date, timedelta
from typing import Iterable

from ..models import HabitLog


def collapse_by_day(log: Iterable[HabitLog]) -> dict[date, bool]:
    """Map each calendar day to the completion flag of its latest entry.

    Latest means highest ``logged_at``; on equal ``logged_at`` the entry
    appearing later in the log wins.
    """
    latest: dict[date, HabitLog] = {}
    for entry in log:
        current = latest.get(entry.date)
        if current is None or entry.logged_at >= current.logged_at:
            latest[entry.date] = entry
    return {day: entry.completed for day, entry in latest.items()}


def completed_days(log: Iterable[HabitLog]) -> list[date]:
    """Sorted calendar days whose latest entry is completed."""
    return sorted(day for day, done in collapse_by_day(log).items() if done)


def current_streak(log: Iterable[HabitLog], as_of: date) -> int:
    """Count consecutive completed days ending at ``as_of``.

    Entries dated after ``as_of`` are ignored. Returns 0 when ``as_of``
    itself has no completed entry.
    """
    days = {d for d in completed_days(log) if d <= as_of}
    streak = 0
    check = as_of
    while check in days:
        streak += 1
        check -= timedelta(days=1)
    return streak


def longest_streak(log: Iterable[HabitLog]) -> int:
    """Longest run of consecutive completed days anywhere in the log."""
    longest = 0
    run = 0
    previous: date | None = None
    for day in completed_days(log):
        if previous is not None and (day - previous).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day
    return longest


def completion_rate(log: Iterable[HabitLog], start: date, end: date) -> float:
    """Fraction of calendar days in ``[start, end]`` with a completion.

    Raises:
        ValueError: If ``end`` is before ``start``.
    """
    if end < start:
        raise ValueError(f"Window end {end} is before start {start}")
    total_days = (end - start).days + 1
    hits = sum(1 for d in completed_days(log) if start <= d <= end)
    return hits / total_days


def completions_by_day(log: Iterable[HabitLog], as_of: date, days: int) -> list[float]:
    """1.0/0.0 per day for the ``days`` days ending at ``as_of``, oldest first."""
    done = set(completed_days(log))
    return [
        1.0 if as_of - timedelta(days=offset) in done else 0.0
        for offset in reversed(range(days))
    ]
