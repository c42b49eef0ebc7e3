"""Error kinds raised by the object store.

Every failure leaves the service as one of these. ``code`` is a stable,
S3-flavoured identifier that the HTTP layer passes through as the error detail.
"""

from typing import Optional


class ObjectStoreError(Exception):
    """Base class for all object store failures."""

    default_code = "InternalError"
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFound(ObjectStoreError):
    """The entity is absent at the requested scope."""

    default_code = "NotFound"


class AlreadyExists(ObjectStoreError):
    """A create collided with a uniqueness constraint."""

    default_code = "AlreadyExists"


class InvalidInput(ObjectStoreError):
    """Malformed bucket name, key, content or content type."""

    default_code = "InvalidArgument"

    def __init__(self, message: str, *, field: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.field = field


class Conflict(ObjectStoreError):
    """The operation would break an invariant of the version chain."""

    default_code = "Conflict"


class StoreError(ObjectStoreError):
    """The backing store is unavailable or the transaction failed."""

    default_code = "InternalError"
    retryable = True
