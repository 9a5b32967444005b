"""
Error taxonomy and the tagged outcome used at the request boundary.

Core operations raise the exceptions below. Route handlers run them through
`attempt`, which turns a failure into an `Outcome` the handler can branch on
instead of nesting try/except blocks per route.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Optional

from logs import get_logger

logger = get_logger(__name__)


class CinemaError(Exception):
    """Base class for every error the service raises on purpose."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(CinemaError):
    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors: Dict[str, str] = dict(errors or {})


class NotFoundError(CinemaError):
    pass


class AuthenticationError(CinemaError):
    pass


class AuthorizationError(CinemaError):
    pass


class StorageError(CinemaError):
    """The backing store is unreachable or rejected an operation."""


SUCCESS = "success"
VALIDATION_ERROR = "validation_error"
NOT_FOUND = "not_found"
AUTH_ERROR = "auth_error"
STORAGE_ERROR = "storage_error"


@dataclass
class Outcome:
    kind: str
    data: Any = None
    message: str = ""
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.kind == SUCCESS


def classify(exc: CinemaError) -> Outcome:
    if isinstance(exc, ValidationError):
        return Outcome(VALIDATION_ERROR, message=exc.message, errors=exc.errors)
    if isinstance(exc, NotFoundError):
        return Outcome(NOT_FOUND, message=exc.message)
    if isinstance(exc, (AuthenticationError, AuthorizationError)):
        return Outcome(AUTH_ERROR, message=exc.message)
    return Outcome(STORAGE_ERROR, message=exc.message)


async def attempt(operation: Awaitable[Any], reraise_storage: bool = True) -> Outcome:
    """Await `operation` and wrap its result or its domain failure.

    Storage faults are re-raised by default so the app-level handler renders
    the generic error page; pass ``reraise_storage=False`` where the caller
    answers with its own envelope.
    """
    try:
        return Outcome(SUCCESS, data=await operation)
    except StorageError as exc:
        if reraise_storage:
            raise
        logger.error("storage fault", error=exc.message)
        return Outcome(STORAGE_ERROR, message="Storage unavailable")
    except CinemaError as exc:
        return classify(exc)
