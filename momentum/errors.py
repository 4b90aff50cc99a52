"""Error taxonomy shared by storage and sync layers."""


class MomentumError(Exception):
    """Base class for all Momentum errors."""


class StorageFailure(MomentumError):
    """Local I/O failed (disk full, permission denied, ...)."""


class EntityNotFound(MomentumError):
    """Requested entity does not exist or could not be read."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type}/{entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class TransportFailure(MomentumError):
    """Network unreachable, timeout, or non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ClientRequestError(TransportFailure):
    """4xx response (other than 401). Never retried."""


class AuthFailure(MomentumError):
    """Credentials rejected after the refresh-and-retry path."""
