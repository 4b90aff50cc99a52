"""FastAPI sync server application."""

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from .. import __version__
from ..config import Config
from ..errors import StorageFailure
from ..models import Entity, EntityType, entity_class
from ..sync.reconciler import DAY_MS
from .repository import ServerRepository

logger = logging.getLogger(__name__)


class SyncRequest(BaseModel):
    since: int | None = None
    entities: list[dict[str, Any]] = Field(default_factory=list)


class PushRequest(BaseModel):
    entities: list[dict[str, Any]] = Field(default_factory=list)


class RefreshRequest(BaseModel):
    refresh_token: str


def create_app(config: Config, repository: ServerRepository | None = None) -> FastAPI:
    """Create the sync server application.

    Args:
        config: Application configuration (``server`` section is used).
        repository: Optional pre-built repository; defaults to one rooted
            at ``config.server.data_dir``.

    Returns:
        Configured FastAPI application.
    """
    repository = repository or ServerRepository(
        config.server.data_dir,
        grace_period_ms=config.storage.tombstone_grace_days * DAY_MS,
    )

    app = FastAPI(
        title="Momentum Sync",
        description="Authoritative per-user state for Momentum clients",
        version=__version__,
    )

    app.state.config = config
    app.state.repository = repository

    def authenticate(authorization: str | None) -> str:
        """Resolve a bearer token to a user id, or reject with 401."""
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing bearer token")
        user_id = config.server.tokens.get(authorization[len("Bearer "):].strip())
        if user_id is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        return user_id

    def parse_type(name: str) -> EntityType:
        try:
            return EntityType(name)
        except ValueError:
            raise HTTPException(status_code=404, detail=f"Unknown entity type: {name}") from None

    def decode(entity_type: EntityType, records: list[dict[str, Any]]) -> list[Entity]:
        cls = entity_class(entity_type)
        entities = []
        for record in records:
            try:
                entities.append(cls.from_dict(record))
            except (ValueError, KeyError, TypeError) as e:
                raise HTTPException(
                    status_code=422, detail=f"Malformed {entity_type.value} record: {e}"
                ) from None
        return entities

    @app.post("/v1/sync/{entity_type}")
    async def sync_entities(
        entity_type: str,
        body: SyncRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        """Merge the client snapshot and return the delta since ``since``."""
        user_id = authenticate(authorization)
        kind = parse_type(entity_type)
        incoming = decode(kind, body.entities)

        try:
            entities, watermark, accepted = await repository.sync(
                user_id, kind, incoming, body.since
            )
        except StorageFailure as e:
            logger.error(f"Sync failed for {user_id}/{kind.value}: {e}")
            raise HTTPException(status_code=500, detail="Sync failed") from None

        return {
            "entities": [e.to_dict() for e in entities],
            "timestamp": watermark,
            "accepted": accepted,
        }

    @app.post("/v1/sync/{entity_type}/push")
    async def push_entities(
        entity_type: str,
        body: PushRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        """Merge uploaded entities without returning server state."""
        user_id = authenticate(authorization)
        kind = parse_type(entity_type)
        incoming = decode(kind, body.entities)

        try:
            accepted = await repository.merge(user_id, kind, incoming)
        except StorageFailure as e:
            logger.error(f"Push failed for {user_id}/{kind.value}: {e}")
            raise HTTPException(status_code=500, detail="Push failed") from None

        return {"accepted": accepted}

    @app.post("/v1/auth/refresh")
    async def refresh_token(body: RefreshRequest) -> dict[str, Any]:
        """Exchange a refresh token for its current access token."""
        access_token = config.server.refresh_tokens.get(body.refresh_token)
        if access_token is None:
            raise HTTPException(status_code=401, detail="Invalid refresh token")
        return {"access_token": access_token}

    @app.get("/v1/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    return app
