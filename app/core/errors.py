"""
Error taxonomy shared by the outbound and automation features.

Persistence failures live next to the driver in app.db.helpers
(PersistenceError, DuplicateError) and are re-exported here.
"""

from app.db.helpers import DuplicateError, PersistenceError

__all__ = [
    "DuplicateError",
    "PersistenceError",
    "ProviderError",
    "ValidationError",
]


class ValidationError(ValueError):
    """Bad caller input. Mapped to HTTP 400 and never retried."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ProviderError(Exception):
    """A channel provider rejected or failed a send."""

    def __init__(self, message: str, code: str = "OUTBOUND_SEND_FAILED", provider: str = "other"):
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider
