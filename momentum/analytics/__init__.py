"""Derived statistics computed from entity logs."""

from .streaks import (
    collapse_by_day,
    completed_days,
    completion_rate,
    completions_by_day,
    current_streak,
    longest_streak,
)
from .summary import MoodSummary, WorkoutSummary, mood_summary, workout_summary

__all__ = [
    "MoodSummary",
    "WorkoutSummary",
    "collapse_by_day",
    "completed_days",
    "completion_rate",
    "completions_by_day",
    "current_streak",
    "longest_streak",
    "mood_summary",
    "workout_summary",
]
