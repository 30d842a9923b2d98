"""Tagged application errors.

Every domain error carries an ``ErrorKind``; HTTP mapping and retry
decisions look at the kind, never at the message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error taxonomy shared by services and the HTTP layer."""

    VALIDATION = "validation_error"
    BUSINESS_RULE = "business_rule"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    GONE = "gone"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal_error"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.BUSINESS_RULE: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.GONE: 410,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UNAVAILABLE: 500,
    ErrorKind.INTERNAL: 500,
}


class AppError(Exception):
    """Base application error.

    ``message`` is for logs. ``detail`` is what a client sees; it differs
    only for errors that set ``public_message``.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    default_message: str = "Internal error"
    public_message: str | None = None

    def __init__(self, message: str | None = None, *, kind: ErrorKind | None = None):
        self.message = message or self.default_message
        if kind is not None:
            self.kind = kind
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    @property
    def detail(self) -> str:
        return self.public_message or self.message


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_message = "Invalid request"


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT
    default_message = "Conflict"


class GoneError(AppError):
    """A single-use or short-lived record is missing, consumed or expired."""

    kind = ErrorKind.GONE
    default_message = "The requested session has expired or was already used"


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Insufficient permissions"


class RateLimitedError(AppError):
    kind = ErrorKind.RATE_LIMITED
    default_message = "Too many attempts. Please try again later."


class StoreError(AppError):
    """Base class for errors raised by the token store."""

    kind = ErrorKind.INTERNAL


class StoreUnavailableError(StoreError):
    """Backing store could not be reached; the only retryable error."""

    kind = ErrorKind.UNAVAILABLE
    default_message = "Token store unavailable"


class DuplicateKeyError(StoreError):
    """A write-once record already exists."""

    kind = ErrorKind.CONFLICT
    default_message = "Record already exists"
