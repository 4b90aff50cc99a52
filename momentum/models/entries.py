"""Mood, workout, meal and task entities."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from .base import Entity, EntityType, dt_from_str, dt_to_str, new_id
from .clock import ModificationClock


# ---------------------------------------------------------------------------
# Mood
# ---------------------------------------------------------------------------


class MoodLevel(Enum):
    TERRIBLE = "terrible"
    SAD = "sad"
    NEUTRAL = "neutral"
    GOOD = "good"
    EXCELLENT = "excellent"

    @property
    def score(self) -> int:
        """Numeric score from 1 (terrible) to 5 (excellent)."""
        return list(MoodLevel).index(self) + 1


@dataclass
class MoodEntry(Entity):
    entity_type: ClassVar[EntityType] = EntityType.MOODS

    date: datetime = field(default_factory=datetime.now)
    mood: MoodLevel = MoodLevel.NEUTRAL
    energy: int = 5  # 1-10
    stress: int = 5  # 1-10
    sleep: int = 7  # hours
    notes: str | None = None
    triggers: list[str] = field(default_factory=list)

    def _payload_to_dict(self) -> dict[str, Any]:
        return {
            "date": dt_to_str(self.date),
            "mood": self.mood.value,
            "energy": self.energy,
            "stress": self.stress,
            "sleep": self.sleep,
            "notes": self.notes,
            "triggers": list(self.triggers),
        }

    @classmethod
    def _payload_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "date": datetime.fromisoformat(data["date"]),
            "mood": MoodLevel(data.get("mood", "neutral")),
            "energy": int(data.get("energy", 5)),
            "stress": int(data.get("stress", 5)),
            "sleep": int(data.get("sleep", 7)),
            "notes": data.get("notes"),
            "triggers": list(data.get("triggers", [])),
        }


# ---------------------------------------------------------------------------
# Workout
# ---------------------------------------------------------------------------


class WorkoutType(Enum):
    CARDIO = "cardio"
    STRENGTH = "strength"
    FLEXIBILITY = "flexibility"
    SPORTS = "sports"
    OTHER = "other"


class Intensity(Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HIGH = "high"
    VERY_HIGH = "very_high"


@dataclass
class ExerciseSet:
    reps: int | None = None
    weight: float | None = None  # pounds
    duration: float | None = None  # seconds
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reps": self.reps,
            "weight": self.weight,
            "duration": self.duration,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExerciseSet":
        return cls(
            reps=data.get("reps"),
            weight=data.get("weight"),
            duration=data.get("duration"),
            notes=data.get("notes"),
        )


@dataclass
class Exercise:
    name: str
    muscle_group: str = "full"
    sets: list[ExerciseSet] = field(default_factory=list)
    notes: str | None = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "muscle_group": self.muscle_group,
            "sets": [s.to_dict() for s in self.sets],
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Exercise":
        return cls(
            id=data.get("id") or new_id(),
            name=data["name"],
            muscle_group=data.get("muscle_group", "full"),
            sets=[ExerciseSet.from_dict(s) for s in data.get("sets", [])],
            notes=data.get("notes"),
        )


@dataclass
class WorkoutLog(Entity):
    entity_type: ClassVar[EntityType] = EntityType.WORKOUTS

    date: datetime = field(default_factory=datetime.now)
    workout_type: WorkoutType = WorkoutType.OTHER
    duration: float = 0.0  # seconds
    intensity: Intensity = Intensity.MODERATE
    calories_burned: float | None = None
    exercises: list[Exercise] = field(default_factory=list)
    notes: str | None = None
    recovery_notes: str | None = None

    def _payload_to_dict(self) -> dict[str, Any]:
        return {
            "date": dt_to_str(self.date),
            "workout_type": self.workout_type.value,
            "duration": self.duration,
            "intensity": self.intensity.value,
            "calories_burned": self.calories_burned,
            "exercises": [e.to_dict() for e in self.exercises],
            "notes": self.notes,
            "recovery_notes": self.recovery_notes,
        }

    @classmethod
    def _payload_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "date": datetime.fromisoformat(data["date"]),
            "workout_type": WorkoutType(data.get("workout_type", "other")),
            "duration": float(data.get("duration", 0.0)),
            "intensity": Intensity(data.get("intensity", "moderate")),
            "calories_burned": data.get("calories_burned"),
            "exercises": [Exercise.from_dict(e) for e in data.get("exercises", [])],
            "notes": data.get("notes"),
            "recovery_notes": data.get("recovery_notes"),
        }


# ---------------------------------------------------------------------------
# Meal
# ---------------------------------------------------------------------------


class MealType(Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"
    OTHER = "other"


@dataclass
class FoodItem:
    name: str
    quantity: float = 1.0
    unit: str = "serving"
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    barcode: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
            "barcode": self.barcode,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FoodItem":
        return cls(
            name=data["name"],
            quantity=float(data.get("quantity", 1.0)),
            unit=data.get("unit", "serving"),
            calories=float(data.get("calories", 0.0)),
            protein=float(data.get("protein", 0.0)),
            carbs=float(data.get("carbs", 0.0)),
            fat=float(data.get("fat", 0.0)),
            barcode=data.get("barcode"),
        )


@dataclass
class MealLog(Entity):
    entity_type: ClassVar[EntityType] = EntityType.MEALS

    date: datetime = field(default_factory=datetime.now)
    meal_type: MealType = MealType.OTHER
    foods: list[FoodItem] = field(default_factory=list)
    total_calories: float = 0.0
    total_protein: float = 0.0
    total_carbs: float = 0.0
    total_fat: float = 0.0
    notes: str | None = None
    mood: MoodLevel | None = None
    energy_after: int | None = None  # 1-10

    def add_food(self, item: FoodItem, clock: ModificationClock) -> None:
        self.foods.append(item)
        self.recalculate_totals()
        self.touch(clock)

    def recalculate_totals(self) -> None:
        self.total_calories = sum(f.calories for f in self.foods)
        self.total_protein = sum(f.protein for f in self.foods)
        self.total_carbs = sum(f.carbs for f in self.foods)
        self.total_fat = sum(f.fat for f in self.foods)

    def _payload_to_dict(self) -> dict[str, Any]:
        return {
            "date": dt_to_str(self.date),
            "meal_type": self.meal_type.value,
            "foods": [f.to_dict() for f in self.foods],
            "total_calories": self.total_calories,
            "total_protein": self.total_protein,
            "total_carbs": self.total_carbs,
            "total_fat": self.total_fat,
            "notes": self.notes,
            "mood": self.mood.value if self.mood else None,
            "energy_after": self.energy_after,
        }

    @classmethod
    def _payload_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "date": datetime.fromisoformat(data["date"]),
            "meal_type": MealType(data.get("meal_type", "other")),
            "foods": [FoodItem.from_dict(f) for f in data.get("foods", [])],
            "total_calories": float(data.get("total_calories", 0.0)),
            "total_protein": float(data.get("total_protein", 0.0)),
            "total_carbs": float(data.get("total_carbs", 0.0)),
            "total_fat": float(data.get("total_fat", 0.0)),
            "notes": data.get("notes"),
            "mood": MoodLevel(data["mood"]) if data.get("mood") else None,
            "energy_after": data.get("energy_after"),
        }


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


class TaskCategory(Enum):
    GENERAL = "general"
    WORK = "work"
    HEALTH = "health"
    PERSONAL = "personal"
    LEARNING = "learning"
    RELATIONSHIPS = "relationships"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Quadrant(Enum):
    IMPORTANT = "important"
    NOT_IMPORTANT = "not_important"


@dataclass
class Task(Entity):
    entity_type: ClassVar[EntityType] = EntityType.TASKS

    title: str = ""
    description: str | None = None
    due_date: datetime | None = None
    start_date: datetime = field(default_factory=datetime.now)
    category: TaskCategory = TaskCategory.GENERAL
    priority: Priority = Priority.MEDIUM
    quadrant: Quadrant = Quadrant.IMPORTANT
    is_completed: bool = False
    completed_at: datetime | None = None
    estimated_duration: float | None = None  # seconds
    tags: list[str] = field(default_factory=list)

    def complete(self, clock: ModificationClock, when: datetime | None = None) -> None:
        self.is_completed = True
        self.completed_at = when or datetime.now()
        self.touch(clock)

    def _payload_to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "due_date": dt_to_str(self.due_date),
            "start_date": dt_to_str(self.start_date),
            "category": self.category.value,
            "priority": self.priority.value,
            "quadrant": self.quadrant.value,
            "is_completed": self.is_completed,
            "completed_at": dt_to_str(self.completed_at),
            "estimated_duration": self.estimated_duration,
            "tags": list(self.tags),
        }

    @classmethod
    def _payload_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "title": data.get("title", ""),
            "description": data.get("description"),
            "due_date": dt_from_str(data.get("due_date")),
            "start_date": dt_from_str(data.get("start_date")),
            "category": TaskCategory(data.get("category", "general")),
            "priority": Priority(data.get("priority", "medium")),
            "quadrant": Quadrant(data.get("quadrant", "important")),
            "is_completed": bool(data.get("is_completed", False)),
            "completed_at": dt_from_str(data.get("completed_at")),
            "estimated_duration": data.get("estimated_duration"),
            "tags": list(data.get("tags", [])),
        }
