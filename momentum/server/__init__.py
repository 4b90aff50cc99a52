"""Reference sync server.

Persists authoritative per-user entity state and answers delta-sync
requests using the same last-write-wins rule as the client.
"""

from .app import create_app
from .repository import ServerRepository

__all__ = ["ServerRepository", "create_app"]
