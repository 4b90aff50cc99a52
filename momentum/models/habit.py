"""Habit entity and its per-day completion log."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar

from .base import Entity, EntityType, as_day, dt_from_str, dt_to_str
from .clock import ModificationClock


class HabitCategory(Enum):
    FITNESS = "fitness"
    NUTRITION = "nutrition"
    PRODUCTIVITY = "productivity"
    MEDITATION = "meditation"
    READING = "reading"
    HYDRATION = "hydration"
    SLEEP = "sleep"
    GRATITUDE = "gratitude"
    EXERCISE = "exercise"
    OTHER = "other"


class HabitFrequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class HabitLog:
    """A single day's completion record."""

    date: date
    completed: bool = True
    notes: str | None = None
    logged_at: int = 0  # ms, breaks same-day ties

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "completed": self.completed,
            "notes": self.notes,
            "logged_at": self.logged_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HabitLog":
        return cls(
            date=as_day(data["date"]),
            completed=bool(data.get("completed", True)),
            notes=data.get("notes"),
            logged_at=int(data.get("logged_at", 0)),
        )


@dataclass
class Habit(Entity):
    """A tracked habit owning an ordered-by-date completion log."""

    entity_type: ClassVar[EntityType] = EntityType.HABITS

    name: str = ""
    description: str | None = None
    category: HabitCategory = HabitCategory.OTHER
    frequency: HabitFrequency = HabitFrequency.DAILY
    created_at: datetime | None = field(default_factory=datetime.now)
    is_active: bool = True
    color: str = "purple"
    icon: str = "star.fill"
    logs: list[HabitLog] = field(default_factory=list)

    def entry_for(self, day: date | datetime | str) -> HabitLog | None:
        """Return the log entry for a calendar day, if any."""
        day = as_day(day)
        for entry in self.logs:
            if entry.date == day:
                return entry
        return None

    def log_completion(
        self,
        day: date | datetime | str,
        clock: ModificationClock,
        completed: bool = True,
        notes: str | None = None,
    ) -> HabitLog:
        """Record a day's outcome, replacing any existing entry for that day.

        Args:
            day: Calendar day being logged.
            clock: Clock used to stamp the mutation.
            completed: Whether the habit was completed.
            notes: Optional free-text note.

        Returns:
            The new log entry.
        """
        day = as_day(day)
        ts = self.touch(clock)
        entry = HabitLog(date=day, completed=completed, notes=notes, logged_at=ts)
        self.logs = [e for e in self.logs if e.date != day]
        self.logs.append(entry)
        self.logs.sort(key=lambda e: e.date)
        return entry

    def toggle_completion(
        self, day: date | datetime | str, clock: ModificationClock
    ) -> HabitLog:
        """Flip a day's completion; an unlogged day becomes completed."""
        existing = self.entry_for(day)
        if existing is None:
            return self.log_completion(day, clock)
        return self.log_completion(
            day, clock, completed=not existing.completed, notes=existing.notes
        )

    def _payload_to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "frequency": self.frequency.value,
            "created_at": dt_to_str(self.created_at),
            "is_active": self.is_active,
            "color": self.color,
            "icon": self.icon,
            "logs": [e.to_dict() for e in self.logs],
        }

    @classmethod
    def _payload_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        logs = [HabitLog.from_dict(e) for e in data.get("logs", [])]
        logs.sort(key=lambda e: e.date)
        return {
            "name": data.get("name", ""),
            "description": data.get("description"),
            "category": HabitCategory(data.get("category", "other")),
            "frequency": HabitFrequency(data.get("frequency", "daily")),
            "created_at": dt_from_str(data.get("created_at")),
            "is_active": bool(data.get("is_active", True)),
            "color": data.get("color", "purple"),
            "icon": data.get("icon", "star.fill"),
            "logs": logs,
        }
