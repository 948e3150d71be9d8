"""Type definitions for goiam session state.

Shared types used by the session manager, the guard and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from .models import UserProfile


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


class ProfileVariant(str, Enum):
    """Which profile endpoint the session manager reads.

    ``ME`` returns the user as ``data``; ``DASHBOARD`` wraps it as
    ``data.user`` next to client setup info in ``data.setup``.
    """

    ME = "me"
    DASHBOARD = "dashboard"


@dataclass
class Session:
    """The single client session owned by a ``SessionManager``.

    Attributes
    ----------
    client_id : str
        OAuth2 client id registered with the identity server.
    base_url : str
        Base URL of the identity server API.
    login_page_url : str
        Where the session-expired side effect navigates to.
    callback_url : str
        Redirect target handed to the identity server on login.
    token : str or None
        The opaque access token, set only after a successful verify.
    user : UserProfile or None
        The cached profile snapshot.
    cache_timestamp : datetime or None
        When ``user`` was last written; set only while ``user`` is.
    verified : bool
        Whether a verify succeeded since the last logout.
    loaded_state : bool
        Whether a profile (cached or fetched) has been resolved.
    client_available : bool
        Whether the dashboard setup reported a client id.
    error : str
        Message of the last surfaced failure, empty if none.
    """

    client_id: str = ""
    base_url: str = ""
    login_page_url: str = "/login"
    callback_url: str = ""
    token: str | None = None
    user: UserProfile | None = None
    cache_timestamp: datetime | None = None
    verified: bool = False
    loaded_state: bool = False
    client_available: bool = False
    error: str = ""

    @property
    def is_authenticated(self) -> bool:
        """Check whether an access token is held."""
        return bool(self.token)

    def clear(self) -> None:
        """Drop the token and cached profile."""
        self.token = None
        self.user = None
        self.cache_timestamp = None
        self.verified = False
        self.loaded_state = False
        self.client_available = False
