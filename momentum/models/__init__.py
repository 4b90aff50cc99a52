"""Synced entity models.

Every entity carries ``id``, ``updated_at`` and an optional ``deleted_at``
tombstone; the rest is entity-specific payload.
"""

from .base import Entity, EntityType, as_day, check_id, new_id
from .clock import ModificationClock, wall_clock_ms
from .entries import (
    Exercise,
    ExerciseSet,
    FoodItem,
    Intensity,
    MealLog,
    MealType,
    MoodEntry,
    MoodLevel,
    Priority,
    Quadrant,
    Task,
    TaskCategory,
    WorkoutLog,
    WorkoutType,
)
from .habit import Habit, HabitCategory, HabitFrequency, HabitLog

ENTITY_CLASSES: dict[EntityType, type[Entity]] = {
    EntityType.HABITS: Habit,
    EntityType.MOODS: MoodEntry,
    EntityType.WORKOUTS: WorkoutLog,
    EntityType.MEALS: MealLog,
    EntityType.TASKS: Task,
}


def entity_class(entity_type: EntityType) -> type[Entity]:
    """Return the dataclass for an entity type."""
    return ENTITY_CLASSES[entity_type]


__all__ = [
    "ENTITY_CLASSES",
    "Entity",
    "EntityType",
    "Exercise",
    "ExerciseSet",
    "FoodItem",
    "Habit",
    "HabitCategory",
    "HabitFrequency",
    "HabitLog",
    "Intensity",
    "MealLog",
    "MealType",
    "ModificationClock",
    "MoodEntry",
    "MoodLevel",
    "Priority",
    "Quadrant",
    "Task",
    "TaskCategory",
    "WorkoutLog",
    "WorkoutType",
    "as_day",
    "check_id",
    "entity_class",
    "new_id",
    "wall_clock_ms",
]
