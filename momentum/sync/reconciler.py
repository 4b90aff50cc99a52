"""Last-write-wins reconciliation of local and remote entity collections.

Given the local snapshot of one entity type and the server's snapshot from
the same round-trip, ``reconcile()`` produces a single converged collection
plus the work needed to get both sides there:

- ``to_upload``: local winners the server does not have in that form.
- ``to_store``: remote winners the local store does not have in that form.
- ``gc_candidates``: local tombstones past the grace period that the
  server no longer knows about, safe to delete physically.

Conflict rule for an id present on both sides:

1. Strictly greater ``updated_at`` wins.
2. On a tie, the tombstoned version wins.
3. Still tied: the larger canonical JSON wins, so the choice does not
   depend on which side is called "local". The tie is recorded as a
   ``ConflictInfo`` but never raised.

Nothing here touches storage or the network.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..models import Entity

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_GRACE_PERIOD_MS = 30 * DAY_MS


@dataclass
class ConflictInfo:
    """An ambiguous concurrent edit resolved by the deterministic tie-break."""

    entity_id: str
    updated_at: int
    resolution: str  # "local" or "remote"


@dataclass
class ReconcileResult:
    """Outcome of reconciling one entity type."""

    merged: dict[str, Entity] = field(default_factory=dict)
    to_upload: list[Entity] = field(default_factory=list)
    to_store: list[Entity] = field(default_factory=list)
    gc_candidates: list[str] = field(default_factory=list)
    conflicts: list[ConflictInfo] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_upload or self.to_store or self.gc_candidates)

    def active(self) -> list[Entity]:
        """Merged entities that are not tombstoned, ordered by id."""
        return [self.merged[k] for k in sorted(self.merged) if not self.merged[k].is_deleted]


def select_winner(a: Entity, b: Entity) -> tuple[Entity, bool]:
    """Pick the surviving version of one entity.

    Returns:
        Tuple of (winner, ambiguous). ``ambiguous`` is True when both
        versions share ``updated_at`` and tombstone state but differ in
        content.
    """
    if a.updated_at != b.updated_at:
        return (a if a.updated_at > b.updated_at else b), False

    if a.is_deleted != b.is_deleted:
        return (a if a.is_deleted else b), False

    key_a = a.content_key()
    key_b = b.content_key()
    if key_a == key_b:
        return a, False
    return (a if key_a > key_b else b), True


def _index(entities: Iterable[Entity]) -> dict[str, Entity]:
    """Index by id, collapsing accidental duplicates with the same rule."""
    indexed: dict[str, Entity] = {}
    for entity in entities:
        existing = indexed.get(entity.id)
        if existing is None:
            indexed[entity.id] = entity
        else:
            indexed[entity.id], _ = select_winner(existing, entity)
    return indexed


def is_expired_tombstone(entity: Entity, now_ms: int, grace_period_ms: int) -> bool:
    return entity.deleted_at is not None and now_ms - entity.deleted_at > grace_period_ms


def reconcile(
    local: Iterable[Entity],
    remote: Iterable[Entity],
    now_ms: int,
    grace_period_ms: int = DEFAULT_GRACE_PERIOD_MS,
) -> ReconcileResult:
    """Merge local and remote collections of one entity type.

    Args:
        local: Entities currently in the local store.
        remote: Entities returned by the server this round-trip.
        now_ms: Current time in epoch milliseconds (for tombstone expiry).
        grace_period_ms: How long tombstones are kept before collection.

    Returns:
        ReconcileResult with the merged collection and pending work.
    """
    local_by_id = _index(local)
    remote_by_id = _index(remote)
    result = ReconcileResult()

    for entity_id in sorted(local_by_id.keys() | remote_by_id.keys()):
        mine = local_by_id.get(entity_id)
        theirs = remote_by_id.get(entity_id)

        if theirs is None:
            if is_expired_tombstone(mine, now_ms, grace_period_ms):
                result.gc_candidates.append(entity_id)
            else:
                result.merged[entity_id] = mine
                result.to_upload.append(mine)
            continue

        if mine is None:
            result.merged[entity_id] = theirs
            result.to_store.append(theirs)
            continue

        winner, ambiguous = select_winner(mine, theirs)
        result.merged[entity_id] = winner
        winner_key = winner.content_key()

        if winner_key != theirs.content_key():
            result.to_upload.append(winner)
        if winner_key != mine.content_key():
            result.to_store.append(winner)

        if ambiguous:
            resolution = "local" if winner is mine else "remote"
            result.conflicts.append(
                ConflictInfo(
                    entity_id=entity_id,
                    updated_at=winner.updated_at,
                    resolution=resolution,
                )
            )
            logger.info(
                f"Ambiguous concurrent edit of {entity_id} at {winner.updated_at}, "
                f"kept {resolution} version"
            )

    logger.debug(
        f"Reconciled {len(result.merged)} entities: "
        f"upload={len(result.to_upload)}, store={len(result.to_store)}, "
        f"gc={len(result.gc_candidates)}, conflicts={len(result.conflicts)}"
    )
    return result
