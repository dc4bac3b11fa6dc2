"""
Collaborator Errors

Every external collaborator (the vision model, the finance store) reports
failure by raising a CollaboratorError subclass carrying an ErrorKind.

DESIGN DECISION: Callers branch on `error.kind`, never on message text.
Adapters translate their library's exceptions into a kind at the boundary,
so nothing upstream depends on the wording of a third-party error.
"""

import asyncio
from enum import Enum
from typing import Awaitable, TypeVar


T = TypeVar("T")


class ErrorKind(str, Enum):
    """Classification of a collaborator failure."""
    TIMEOUT = "timeout"                    # call exceeded its time bound
    UNAVAILABLE = "unavailable"            # backend unreachable or overloaded
    INVALID_RESPONSE = "invalid_response"  # backend answered with unusable data
    NOT_FOUND = "not_found"                # referenced entity does not exist
    REJECTED = "rejected"                  # backend refused the request
    UNKNOWN = "unknown"

    @property
    def is_transient(self) -> bool:
        """Whether re-issuing the same request may succeed."""
        return self in (ErrorKind.TIMEOUT, ErrorKind.UNAVAILABLE, ErrorKind.UNKNOWN)


class CollaboratorError(Exception):
    """Base exception for external collaborator failures."""

    def __init__(self, kind: ErrorKind, message: str = ""):
        self.kind = kind
        super().__init__(message or kind.value)


class ExtractionError(CollaboratorError):
    """Receipt extraction failed."""
    pass


class PersistenceError(CollaboratorError):
    """A finance store operation failed."""
    pass


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    error_cls: type[CollaboratorError] = CollaboratorError,
) -> T:
    """
    Await a collaborator call with an upper time bound.

    Raises:
        error_cls: with ErrorKind.TIMEOUT if the bound is exceeded
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise error_cls(ErrorKind.TIMEOUT, f"Call timed out after {timeout:.0f}s")
