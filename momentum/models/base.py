"""Base entity record shared by every synced entity type."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar

from .clock import ModificationClock


class EntityType(Enum):
    """Entity kinds the store and sync layers know about."""

    HABITS = "habits"
    MOODS = "moods"
    WORKOUTS = "workouts"
    MEALS = "meals"
    TASKS = "tasks"


def new_id() -> str:
    return str(uuid.uuid4())


def check_id(value: str) -> str:
    """Reject ids that are empty or would escape their directory."""
    if not value or value.startswith(".") or "/" in value or "\\" in value:
        raise ValueError(f"Invalid id: {value!r}")
    return value


def dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def dt_from_str(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def as_day(value: date | datetime | str) -> date:
    """Normalize a date, datetime or ISO string to a calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


@dataclass
class Entity:
    """Common sync metadata for all entities.

    Subclasses set ``entity_type`` and implement ``_payload_to_dict`` and
    ``_payload_from_dict`` for their own fields.
    """

    id: str = field(default_factory=new_id)
    updated_at: int = 0
    deleted_at: int | None = None

    entity_type: ClassVar[EntityType]

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def touch(self, clock: ModificationClock) -> int:
        """Stamp a mutation. Returns the new ``updated_at``."""
        ts = max(clock.now(), self.updated_at + 1)
        clock.observe(ts)
        self.updated_at = ts
        return ts

    def mark_deleted(self, clock: ModificationClock) -> int:
        """Tombstone the entity instead of removing it."""
        ts = self.touch(clock)
        self.deleted_at = ts
        return ts

    def restore(self, clock: ModificationClock) -> int:
        self.deleted_at = None
        return self.touch(clock)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {
            "id": self.id,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }
        data.update(self._payload_to_dict())
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entity":
        """Create from dictionary.

        Raises:
            KeyError, ValueError, TypeError: If the record is malformed.
        """
        deleted_at = data.get("deleted_at")
        return cls(
            id=check_id(str(data["id"])),
            updated_at=int(data["updated_at"]),
            deleted_at=int(deleted_at) if deleted_at is not None else None,
            **cls._payload_from_dict(data),
        )

    def content_key(self) -> str:
        """Canonical JSON used for equality checks and deterministic ties."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def _payload_to_dict(self) -> dict[str, Any]:
        return {}

    @classmethod
    def _payload_from_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {}
