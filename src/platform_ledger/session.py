"""Session state as an immutable value updated by a pure reducer.

Callers own a :class:`SessionState` and replace it with ``reduce(state,
event)``; nothing here is global. The view model receives the current state
by injection and reads the acting user from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class SessionUser:
    id: str
    username: str
    role: str = ""


@dataclass(frozen=True)
class SessionState:
    user: Optional[SessionUser] = None
    users: Tuple[SessionUser, ...] = field(default_factory=tuple)
    is_authenticated: bool = False
    is_loading: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class LoginStarted:
    pass


@dataclass(frozen=True)
class LoginSucceeded:
    user: SessionUser


@dataclass(frozen=True)
class LoginFailed:
    message: str


@dataclass(frozen=True)
class LoggedOut:
    pass


@dataclass(frozen=True)
class UsersRefreshed:
    users: Tuple[SessionUser, ...]


@dataclass(frozen=True)
class UsersRefreshFailed:
    message: str


@dataclass(frozen=True)
class ErrorCleared:
    pass


SessionEvent = Union[
    LoginStarted,
    LoginSucceeded,
    LoginFailed,
    LoggedOut,
    UsersRefreshed,
    UsersRefreshFailed,
    ErrorCleared,
]


def reduce(state: SessionState, event: SessionEvent) -> SessionState:
    """Return the state that follows ``event``; ``state`` is left untouched.

    Raises:
        TypeError: If ``event`` is not a known session event.
    """

    if isinstance(event, LoginStarted):
        return replace(state, is_loading=True, error=None)
    if isinstance(event, LoginSucceeded):
        return replace(state, user=event.user, is_authenticated=True, is_loading=False, error=None)
    if isinstance(event, LoginFailed):
        return replace(state, user=None, is_authenticated=False, is_loading=False, error=event.message)
    if isinstance(event, LoggedOut):
        return SessionState()
    if isinstance(event, UsersRefreshed):
        return replace(state, users=tuple(event.users), error=None)
    if isinstance(event, UsersRefreshFailed):
        return replace(state, error=event.message)
    if isinstance(event, ErrorCleared):
        return replace(state, error=None)
    raise TypeError(f"Unsupported session event: {event!r}")


def acting_user_id(state: Optional[SessionState]) -> Optional[str]:
    """Id of the logged-in user, or ``None`` for system-generated actions."""

    if state is None or state.user is None:
        return None
    return state.user.id
