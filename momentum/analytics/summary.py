"""Weekly summaries for moods and workouts."""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from ..models import MoodEntry, WorkoutLog

# Minimum change in average mood score between window halves to call a trend
TREND_THRESHOLD = 0.5


@dataclass
class MoodSummary:
    average: float
    trend: str  # "improving", "declining" or "stable"
    entries: int


@dataclass
class WorkoutSummary:
    total_workouts: int
    total_minutes: int
    total_calories: int
    average_per_week: float


def _in_window(day: date, as_of: date, days: int) -> bool:
    return as_of - timedelta(days=days - 1) <= day <= as_of


def _average(values: list[int]) -> float:
    return sum(values) / len(values) if values else 0.0


def mood_summary(entries: Iterable[MoodEntry], as_of: date, days: int = 7) -> MoodSummary:
    """Average mood and trend over the ``days`` days ending at ``as_of``.

    The trend compares the average score of the older half of the window
    with the newer half.
    """
    window = sorted(
        (e for e in entries if not e.is_deleted and _in_window(e.date.date(), as_of, days)),
        key=lambda e: e.date,
    )
    scores = [e.mood.score for e in window]

    midpoint = as_of - timedelta(days=days // 2)
    older = [e.mood.score for e in window if e.date.date() <= midpoint]
    newer = [e.mood.score for e in window if e.date.date() > midpoint]

    trend = "stable"
    if older and newer:
        delta = _average(newer) - _average(older)
        if delta >= TREND_THRESHOLD:
            trend = "improving"
        elif delta <= -TREND_THRESHOLD:
            trend = "declining"

    return MoodSummary(average=_average(scores), trend=trend, entries=len(scores))


def workout_summary(
    workouts: Iterable[WorkoutLog], as_of: date, days: int = 7
) -> WorkoutSummary:
    """Totals over the ``days`` days ending at ``as_of``."""
    window = [
        w for w in workouts
        if not w.is_deleted and _in_window(w.date.date(), as_of, days)
    ]
    total_seconds = sum(w.duration for w in window)
    total_calories = sum(w.calories_burned or 0.0 for w in window)
    return WorkoutSummary(
        total_workouts=len(window),
        total_minutes=int(total_seconds // 60),
        total_calories=int(total_calories),
        average_per_week=len(window) * 7 / days,
    )
