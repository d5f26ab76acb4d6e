"""Result envelope shared by every repository operation.

A call either succeeds with a payload or fails with a human-readable message
and an optional machine code. Callers branch on ``result.ok`` before touching
``data`` or ``error``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, Optional, TypeVar, Union

from .constants import ErrorCode


T = TypeVar("T")


@dataclass(frozen=True)
class RepoSuccess(Generic[T]):
    """Successful outcome carrying ``data``."""

    data: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class RepoError:
    """Failed outcome carrying a message and, when known, a store code."""

    error: str
    code: Optional[str] = None
    ok: Literal[False] = False


RepoResult = Union[RepoSuccess[T], RepoError]


def success(data: T) -> RepoSuccess[T]:
    return RepoSuccess(data=data)


def failure(message: str, code: ErrorCode | str | None = None) -> RepoError:
    if isinstance(code, ErrorCode):
        code = code.value
    return RepoError(error=message, code=code)


def is_ok(result: RepoResult[T]) -> bool:
    return result.ok is True


def get_error(result: RepoResult[T]) -> Optional[str]:
    """Return the failure message, or ``None`` for a success."""

    if result.ok:
        return None
    return result.error


def from_exception(error: Exception) -> RepoError:
    """Convert a store or I/O exception into a failure envelope.

    Store errors keep their code; filesystem problems surface as transient
    store errors so the caller can retry.
    """

    code = getattr(error, "code", None)
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    if code is None and isinstance(error, OSError):
        code = ErrorCode.STORE_ERROR.value
    return failure(message, code)


__all__ = [
    "RepoSuccess",
    "RepoError",
    "RepoResult",
    "success",
    "failure",
    "is_ok",
    "get_error",
    "from_exception",
]
