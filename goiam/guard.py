"""Resource-based authorization guard.

A pure consumer of ``SessionManager`` state. ``evaluate`` maps the
session to one of four outcomes; ``AuthGuard`` adds the optional
one-time login redirect and picks a renderer per outcome, and
``requires_resources`` wraps a callable in the same check.
"""

from __future__ import annotations

import functools
import inspect
import logging

from enum import Enum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from .session import SessionManager


logger = logging.getLogger("goiam.guard")

LOADING_TEXT = "Checking authentication..."
REDIRECTING_TEXT = "Redirecting to login..."
UNAUTHENTICATED_TEXT = "Authentication Required"
UNAUTHORIZED_TEXT = "Access Denied"


def _as_keys(required: Iterable[str] | str) -> tuple[str, ...]:
    """Resource keys as a tuple; a bare string is a single key."""
    if isinstance(required, str):
        return (required,)
    return tuple(required)


class GuardOutcome(str, Enum):
    """Result of an authorization check."""

    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"


def evaluate(
    manager: SessionManager,
    required_resources: Iterable[str] | str = (),
) -> GuardOutcome:
    """Classify the current session against ``required_resources``.

    Parameters
    ----------
    manager : SessionManager
        The session to inspect.
    required_resources : iterable of str
        Resource keys the user must hold. Empty means any user.

    Returns
    -------
    GuardOutcome
        ``LOADING`` while a profile refresh is in flight,
        ``UNAUTHENTICATED`` without a user, ``UNAUTHORIZED`` when a
        required resource is missing, otherwise ``AUTHORIZED``.
    """
    if manager.loading:
        return GuardOutcome.LOADING
    if manager.user is None:
        return GuardOutcome.UNAUTHENTICATED
    keys = _as_keys(required_resources)
    if keys and not manager.has_required_resources(keys):
        return GuardOutcome.UNAUTHORIZED
    return GuardOutcome.AUTHORIZED


class AuthGuard:
    """Protects content behind authentication and resource checks.

    Parameters
    ----------
    manager : SessionManager
        The session to guard with.
    required_resources : iterable of str
        Resource keys the user must hold.
    redirect_to_login : bool
        Start a login once when the session is unauthenticated.
    """

    def __init__(
        self,
        manager: SessionManager,
        required_resources: Iterable[str] | str = (),
        redirect_to_login: bool = False,
    ) -> None:
        """Initialize the guard."""
        self.manager = manager
        self.required_resources = _as_keys(required_resources)
        self.redirect_to_login = redirect_to_login
        self._redirected = False

    def check(self) -> GuardOutcome:
        """Evaluate the session, starting the login redirect if due."""
        outcome = evaluate(self.manager, self.required_resources)
        if outcome is GuardOutcome.UNAUTHENTICATED:
            if self.redirect_to_login and not self._redirected:
                self._redirected = True
                logger.debug("Guard redirecting unauthenticated session to login")
                self.manager.login()
        elif outcome is not GuardOutcome.LOADING:
            self._redirected = False
        return outcome

    def render(
        self,
        authorized: Callable[[], Any],
        loading: Callable[[], Any] | None = None,
        unauthenticated: Callable[[], Any] | None = None,
        unauthorized: Callable[[], Any] | None = None,
    ) -> Any:
        """Call the renderer matching the current outcome.

        Parameters
        ----------
        authorized : callable
            Produces the protected content.
        loading, unauthenticated, unauthorized : callable, optional
            Replace the default text renderers.

        Returns
        -------
        Any
            Whatever the chosen renderer returns.
        """
        outcome = self.check()
        if outcome is GuardOutcome.AUTHORIZED:
            return authorized()
        if outcome is GuardOutcome.LOADING:
            return (loading or _text(LOADING_TEXT))()
        if outcome is GuardOutcome.UNAUTHORIZED:
            return (unauthorized or _text(UNAUTHORIZED_TEXT))()
        if self.redirect_to_login:
            return _text(REDIRECTING_TEXT)()
        return (unauthenticated or _text(UNAUTHENTICATED_TEXT))()


def _text(value: str) -> Callable[[], str]:
    return lambda: value


def requires_resources(
    manager: SessionManager,
    *keys: str,
    redirect_to_login: bool = False,
    loading: Callable[[], Any] | None = None,
    unauthenticated: Callable[[], Any] | None = None,
    unauthorized: Callable[[], Any] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator running the wrapped callable only when authorized.

    Otherwise the call returns the fallback renderer's output. Works on
    plain functions and coroutine functions.

    Examples
    --------
    >>> @requires_resources(manager, "billing")
    ... def billing_page():
    ...     return "invoices"
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        guard = AuthGuard(manager, keys, redirect_to_login=redirect_to_login)
        fallbacks = {
            "loading": loading,
            "unauthenticated": unauthenticated,
            "unauthorized": unauthorized,
        }

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                if guard.check() is GuardOutcome.AUTHORIZED:
                    return await func(*args, **kwargs)
                result = guard.render(lambda: None, **fallbacks)
                if inspect.isawaitable(result):
                    return await result
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return guard.render(lambda: func(*args, **kwargs), **fallbacks)

        return wrapper

    return decorator
