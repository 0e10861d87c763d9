"""
shamba.services.result — Result Pairs & Error Taxonomy
=======================================================

Every public service operation returns a :class:`Result` instead of
raising.  ``data`` holds the success payload, ``error`` a
:class:`ServiceError`; exactly one of them is meaningful.  Best-effort
writes (a post created, but a tag association rejected) put the
secondary failures in ``partial_errors`` so the caller can retry only
that step.

Store failures never escape: :func:`guarded` turns any
``SQLAlchemyError`` into an ``upstream`` error with a generic message and
logs the traceback server-side.
"""

from __future__ import annotations

import enum
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, ParamSpec, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from shamba.constants import MSG_LOGIN_REQUIRED

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class ErrorKind(enum.StrEnum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM = "upstream"


@dataclass(frozen=True, slots=True)
class ServiceError:
    """A caller-displayable failure.

    ``code`` narrows a kind to a specific reason (``event_full``,
    ``already_registered``, …) so clients can branch without parsing the
    message.
    """

    kind: ErrorKind
    message: str
    code: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    data: T | None = None
    error: ServiceError | None = None
    partial_errors: tuple[ServiceError, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls, data: T, partial_errors: tuple[ServiceError, ...] | list[ServiceError] = ()
    ) -> Result[T]:
        return cls(data=data, error=None, partial_errors=tuple(partial_errors))

    @classmethod
    def failure(cls, error: ServiceError) -> Result[T]:
        return cls(data=None, error=error)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
        }
        if self.partial_errors:
            body["partial_errors"] = [e.to_dict() for e in self.partial_errors]
        return body


# ---------------------------------------------------------------------------
# Constructors for the common kinds
# ---------------------------------------------------------------------------
def validation(message: str, **details: Any) -> Result:
    return Result.failure(ServiceError(ErrorKind.VALIDATION, message, details=details or None))


def not_found(what: str, ident: object) -> Result:
    return Result.failure(
        ServiceError(ErrorKind.NOT_FOUND, f"{what} not found.", details={"id": ident})
    )


def conflict(message: str, code: str, **details: Any) -> Result:
    return Result.failure(
        ServiceError(ErrorKind.CONFLICT, message, code=code, details=details or None)
    )


def unauthorized(message: str) -> Result:
    return Result.failure(ServiceError(ErrorKind.UNAUTHORIZED, message))


def require_user(user_id: str | None) -> Result | None:
    """Return an ``unauthorized`` failure when no identity was resolved."""
    if user_id is None or not str(user_id).strip():
        return unauthorized(MSG_LOGIN_REQUIRED)
    return None


# ---------------------------------------------------------------------------
# Upstream guard
# ---------------------------------------------------------------------------
def guarded(action: str) -> Callable[[Callable[P, Result[T]]], Callable[P, Result[T]]]:
    """Decorate a service method so store failures become ``upstream`` results.

    *action* completes the sentence "Failed to …" in the generic message.
    """

    def decorator(func: Callable[P, Result[T]]) -> Callable[P, Result[T]]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T]:
            try:
                return func(*args, **kwargs)
            except SQLAlchemyError:
                logger.exception("Store call failed during %s", action)
                return Result.failure(
                    ServiceError(
                        ErrorKind.UPSTREAM,
                        f"Failed to {action}. Please try again.",
                    )
                )

        return wrapper

    return decorator
