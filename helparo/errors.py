"""
Error kinds raised by the store and action layers.

Actions catch these and turn them into ``ActionResult`` values; only the
status poller client lets its own transport errors surface.
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    VALIDATION = "validation"
    ILLEGAL_TRANSITION = "illegal_transition"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    STORE_FAILURE = "store_failure"


class HelparoError(Exception):
    kind: ErrorKind = ErrorKind.STORE_FAILURE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(HelparoError):
    kind = ErrorKind.NOT_FOUND


class Unauthenticated(HelparoError):
    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class ValidationFailure(HelparoError):
    kind = ErrorKind.VALIDATION


class StoreFailure(HelparoError):
    """The store or a remote procedure reported an error; message is relayed as is."""

    kind = ErrorKind.STORE_FAILURE


class IllegalTransition(HelparoError):
    kind = ErrorKind.ILLEGAL_TRANSITION

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move request from '{current}' to '{target}'")
        self.current = current
        self.target = target


class RateLimited(HelparoError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self, message: str = "Too many requests. Please try again in a few minutes."
    ) -> None:
        super().__init__(message)


class ConcurrentModification(HelparoError):
    """A conditional update found a different version than the one it read."""

    kind = ErrorKind.CONFLICT
