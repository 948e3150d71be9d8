"""Client-side session manager for a GoIAM identity server.

Owns the single session of a client: the PKCE login redirect, the
authorization-code exchange, a cached user profile with a staleness
policy, logout and resource-based authorization checks. Concurrent
``verify`` and ``refresh_profile`` calls share one in-flight task per
operation, so a burst of callers results in a single network request.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import json
import logging
import webbrowser

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlsplit

from pydantic import ValidationError

from .exceptions import ApiError, GoIamException, HttpError, InvalidGrantError
from .models import DashboardProfile, UserProfile, VerifyResult
from .pkce import PKCEChallenge
from .store import MemoryStore, StorageKey, create_store
from .transport import Transport
from .types import ProfileVariant, Session, SessionState


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    import httpx

    from .config import GoIamSettings
    from .store import PersistentStore


logger = logging.getLogger("goiam.session")

DEFAULT_CACHE_TTL = timedelta(minutes=5)

LOGIN_PATH = "/auth/v1/login"
VERIFY_PATH = "/auth/v1/verify"
PROFILE_PATHS = {
    ProfileVariant.ME: "/me/v1/",
    ProfileVariant.DASHBOARD: "/me/v1/dashboard",
}

_VERIFY = "verify"
_REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Navigator:
    """Navigation port used for the login redirect and session expiry.

    Tracks the current location. Absolute URLs are opened in the system
    browser unless ``open_browser`` is False; relative paths (such as
    the login page of the host application) only move ``location``.

    Parameters
    ----------
    location : str
        The initial location (default ``"/"``).
    open_browser : bool
        Whether to open absolute URLs with ``webbrowser``.
    """

    def __init__(self, location: str = "/", open_browser: bool = True) -> None:
        """Initialize the navigator."""
        self.location = location
        self.open_browser = open_browser

    def navigate(self, url: str) -> None:
        """Move to ``url``."""
        self.location = url
        if self.open_browser and url.startswith(("http://", "https://")):
            webbrowser.open(url)


class SessionManager:
    """Manages the PKCE login, token and cached profile of one session.

    Parameters
    ----------
    store : PersistentStore, optional
        Durable storage for the token, profile and pending verifier.
        Defaults to a ``MemoryStore``.
    transport : Transport, optional
        HTTP transport. Defaults to one built for ``base_url``.
    base_url : str
        Base URL of the GoIAM API.
    client_id : str, optional
        OAuth2 client id. Falls back to the stored client id.
    client_secret : str, optional
        When set, ``verify`` authenticates with HTTP Basic auth.
    login_page_url : str
        Where the session-expired side effect navigates to.
    callback_url : str
        Redirect URL handed to the identity server on login.
    navigator : Navigator, optional
        Navigation port. Defaults to a ``Navigator`` that opens the
        system browser.
    on_session_expired : callable, optional
        Called instead of navigating when a request returns 401.
        Signature: ``on_session_expired() -> None``.
    clock : callable, optional
        Returns the current aware ``datetime`` (default UTC now).
    cache_ttl : float or timedelta
        How long a cached profile is served without a refresh
        (default 5 minutes). Floats are seconds.
    profile_variant : ProfileVariant or str
        Which profile endpoint to read (default ``"me"``).
    """

    def __init__(
        self,
        store: PersistentStore | None = None,
        transport: Transport | None = None,
        *,
        base_url: str = "",
        client_id: str | None = None,
        client_secret: str | None = None,
        login_page_url: str = "/login",
        callback_url: str = "",
        navigator: Navigator | None = None,
        on_session_expired: Callable[[], None] | None = None,
        clock: Callable[[], datetime] | None = None,
        cache_ttl: float | timedelta = DEFAULT_CACHE_TTL,
        profile_variant: ProfileVariant | str = ProfileVariant.ME,
    ) -> None:
        """Initialize the manager and hydrate the session from the store."""
        self._store = store if store is not None else MemoryStore()
        self._transport = transport if transport is not None else Transport(base_url)
        base_url = (base_url or self._transport.base_url).rstrip("/")
        self._transport.base_url = base_url

        self._client_secret = client_secret or None
        self._navigator = navigator if navigator is not None else Navigator()
        self._on_session_expired = on_session_expired
        self._clock = clock or _utcnow
        self._cache_ttl = (
            cache_ttl if isinstance(cache_ttl, timedelta) else timedelta(seconds=cache_ttl)
        )
        self._profile_variant = ProfileVariant(profile_variant)

        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._generation = 0

        self._session = Session(
            base_url=base_url,
            login_page_url=login_page_url,
            callback_url=callback_url,
        )
        self._code_verifier: str | None = None
        self._hydrate(client_id)

    @classmethod
    def from_settings(
        cls,
        settings: GoIamSettings | None = None,
        *,
        store: PersistentStore | None = None,
        **kwargs: Any,
    ) -> SessionManager:
        """Build a manager from ``GoIamSettings``.

        Parameters
        ----------
        settings : GoIamSettings, optional
            Settings to use. Defaults to ``get_settings()``.
        store : PersistentStore, optional
            Overrides the store built from ``settings.store``.
        **kwargs : Any
            Passed through to the constructor (navigator, clock, ...).

        Returns
        -------
        SessionManager
            A configured manager.
        """
        if settings is None:
            from .config import get_settings

            settings = get_settings()

        client = settings.client
        if store is None:
            store = create_store(
                settings.store.backend,
                path=settings.store.path,
                service_name=settings.store.service_name,
                redis_url=settings.store.redis_url,
                prefix=settings.store.prefix,
            )
        return cls(
            store=store,
            transport=Transport(client.base_url, timeout=client.timeout),
            base_url=client.base_url,
            client_id=client.client_id or None,
            client_secret=client.client_secret or None,
            login_page_url=client.login_page_url,
            callback_url=client.callback_url,
            cache_ttl=settings.session.cache_ttl_seconds,
            profile_variant=client.profile_variant,
            **kwargs,
        )

    # ── Read-only state ──────────────────────────────────────────────

    @property
    def session(self) -> Session:
        """The live session record."""
        return self._session

    @property
    def navigator(self) -> Navigator:
        """The navigation port."""
        return self._navigator

    @property
    def token(self) -> str | None:
        """The current access token."""
        return self._session.token

    @property
    def user(self) -> UserProfile | None:
        """The cached user profile."""
        return self._session.user

    @property
    def is_authenticated(self) -> bool:
        """Whether an access token is held."""
        return self._session.is_authenticated

    @property
    def loading(self) -> bool:
        """Whether a profile refresh is in flight."""
        return self._in_flight(_REFRESH)

    @property
    def verifying(self) -> bool:
        """Whether a code exchange is in flight."""
        return self._in_flight(_VERIFY)

    @property
    def code_verifier(self) -> str | None:
        """The pending PKCE verifier, if a login is awaiting its code."""
        return self._code_verifier

    @property
    def state(self) -> SessionState:
        """The lifecycle state derived from the session fields."""
        if self.loading:
            return SessionState.REFRESHING
        if self.verifying:
            return SessionState.AUTHENTICATING
        if self._session.token:
            return SessionState.AUTHENTICATED
        if self._code_verifier:
            return SessionState.AUTHENTICATING
        return SessionState.UNAUTHENTICATED

    # ── Configuration setters ────────────────────────────────────────

    def set_base_url(self, base_url: str) -> None:
        """Point the session at another GoIAM API."""
        self._session.base_url = base_url.rstrip("/")
        self._transport.base_url = self._session.base_url

    def set_client_id(self, client_id: str) -> None:
        """Set and persist the OAuth2 client id."""
        self._session.client_id = client_id
        self._persist(StorageKey.CLIENT_ID, client_id)

    def set_login_page_url(self, url: str) -> None:
        """Set the page the session-expired side effect navigates to."""
        self._session.login_page_url = url

    def set_callback_url(self, url: str) -> None:
        """Set the redirect URL handed to the identity server."""
        self._session.callback_url = url

    # ── Operations ───────────────────────────────────────────────────

    def login(self) -> str:
        """Start a PKCE login and navigate to the authorization URL.

        A fresh verifier replaces any pending one in the store.

        Returns
        -------
        str
            The authorization URL that was navigated to.

        Raises
        ------
        EntropyUnavailable
            If no secure random bytes could be read.
        """
        pkce = PKCEChallenge.generate()
        self._code_verifier = pkce.verifier
        self._persist(StorageKey.CODE_VERIFIER, pkce.verifier)

        query = urlencode(
            {
                "client_id": self._session.client_id,
                "redirect_url": self._session.callback_url,
                "code_challenge": pkce.challenge,
                "code_challenge_method": pkce.method,
            }
        )
        url = f"{self._session.base_url}{LOGIN_PATH}?{query}"
        logger.info("Redirecting to login for client %s", self._session.client_id)
        self._navigator.navigate(url)
        return url

    async def verify(self, code: str, code_verifier: str | None = None) -> str:
        """Exchange an authorization code for an access token.

        A call made while another verify is in flight joins it and
        receives the same token or exception.

        Parameters
        ----------
        code : str
            The authorization code from the login callback.
        code_verifier : str, optional
            The PKCE verifier. Defaults to the one stored by ``login()``.

        Returns
        -------
        str
            The access token.

        Raises
        ------
        InvalidGrantError
            If the server rejects the code.
        TransportError
            If the network call fails.
        HttpError
            If the server answers without a usable envelope.
        """
        task = self._pending.get(_VERIFY)
        if task is None or task.done():
            verifier = code_verifier or self._code_verifier
            task = self._start(_VERIFY, self._exchange_code(code, verifier, self._generation))
        else:
            logger.debug("Joining in-flight verify")
        return await asyncio.shield(task)

    async def refresh_profile(self, force: bool = False) -> UserProfile | None:
        """Return the user profile, fetching it when the cache is stale.

        Parameters
        ----------
        force : bool
            Bypass the cache and always fetch.

        Returns
        -------
        UserProfile or None
            The profile, or None if the server answered 401.

        Raises
        ------
        HttpError
            For non-2xx responses other than 401 or malformed bodies.
        ApiError
            If the envelope reports ``success: false``.
        TransportError
            If the network call fails.
        """
        if not force and self._is_fresh():
            self._session.loaded_state = True
            return self._session.user

        task = self._pending.get(_REFRESH)
        if task is None or task.done():
            task = self._start(_REFRESH, self._fetch_profile(self._generation))
        else:
            logger.debug("Joining in-flight profile refresh")
        return await asyncio.shield(task)

    def logout(self) -> None:
        """Drop the session and navigate to the login page. Never raises.

        The persisted cache timestamp is backdated by the cache TTL so
        that the next refresh goes to the network.
        """
        self._generation += 1
        # In-flight tasks finish on their own; their results are dropped by generation.
        self._pending.clear()
        self._session.clear()
        self._session.error = ""
        self._code_verifier = None

        for key in (StorageKey.ACCESS_TOKEN, StorageKey.USER, StorageKey.CODE_VERIFIER):
            self._remove(key)
        backdated = self._clock() - self._cache_ttl
        self._persist(StorageKey.UPDATED_AT, backdated.isoformat())

        logger.info("Logged out")
        self._safe_navigate(self._session.login_page_url)

    def has_required_resources(self, keys: Iterable[str]) -> bool:
        """Check that the cached user holds every resource in ``keys``.

        Parameters
        ----------
        keys : iterable of str or str
            Required resource keys. A single string is one key. An empty
            requirement is satisfied by any user.

        Returns
        -------
        bool
            False when no user is cached.
        """
        user = self._session.user
        if user is None:
            return False
        if isinstance(keys, str):
            keys = (keys,)
        return user.has_resources(tuple(keys))

    async def authenticated_fetch(
        self,
        url: str,
        method: str = "GET",
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request carrying the session's bearer token.

        A 401 answer triggers the session-expired side effect; the
        response is returned either way.

        Parameters
        ----------
        url : str
            Absolute URL or path relative to the base URL.
        method : str
            HTTP method (default ``"GET"``).
        **kwargs : Any
            Passed to ``Transport.send`` (params, json, headers, ...).

        Returns
        -------
        httpx.Response
            The raw response.
        """
        response = await self._transport.send(method, url, token=self._session.token, **kwargs)
        if response.status_code == 401:
            self._handle_session_expired()
        return response

    async def close(self) -> None:
        """Release the HTTP client."""
        await self._transport.close()

    async def __aenter__(self) -> SessionManager:
        """Enter the async context."""
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        """Close the manager on exit."""
        await self.close()

    # ── Network work ─────────────────────────────────────────────────

    async def _exchange_code(self, code: str, verifier: str | None, generation: int) -> str:
        client_id = self._session.client_id
        if not verifier:
            msg = "No PKCE code verifier available; call login() first"
            self._session.error = msg
            raise InvalidGrantError(msg)

        basic_auth = (client_id, self._client_secret) if self._client_secret else None
        params = {"code": code, "code_challenge": verifier, "client_id": client_id}
        try:
            envelope = await self._transport.get(VERIFY_PATH, params=params, basic_auth=basic_auth)
            result = VerifyResult.model_validate(envelope.data)
        except ApiError as exc:
            self._session.error = exc.message
            logger.warning("Code exchange rejected: %s", exc.message)
            raise InvalidGrantError(exc.message, status_code=exc.status_code) from exc
        except ValidationError as exc:
            msg = "Verify response carried no access token"
            self._session.error = msg
            raise HttpError(msg, url=self._transport.resolve(VERIFY_PATH)) from exc
        except GoIamException as exc:
            self._session.error = exc.message
            raise

        if generation != self._generation:
            logger.debug("Discarding token from a verify that outlived logout")
            return result.access_token

        self._session.token = result.access_token
        self._session.verified = True
        self._session.error = ""
        self._persist(StorageKey.ACCESS_TOKEN, result.access_token)
        self._code_verifier = None
        self._remove(StorageKey.CODE_VERIFIER)
        logger.info("Authorization code exchanged for client %s", client_id)
        return result.access_token

    async def _fetch_profile(self, generation: int) -> UserProfile | None:
        path = PROFILE_PATHS[self._profile_variant]
        try:
            response = await self._transport.send("GET", path, token=self._session.token)
            if response.status_code == 401:
                self._handle_session_expired()
                return None
            envelope = self._transport.interpret(response)
            user = self._unwrap_profile(envelope.data, response.status_code)
        except GoIamException as exc:
            self._session.error = exc.message
            logger.warning("Profile refresh failed: %s", exc)
            raise

        if generation != self._generation:
            logger.debug("Discarding profile from a refresh that outlived logout")
            return None

        now = self._clock()
        self._session.user = user
        self._session.cache_timestamp = now
        self._session.loaded_state = True
        self._session.error = ""
        self._persist(StorageKey.USER, user.model_dump_json(by_alias=False))
        self._persist(StorageKey.UPDATED_AT, now.isoformat())
        logger.debug("Profile refreshed for user %s", user.id)
        return user

    def _unwrap_profile(self, data: Any, status_code: int) -> UserProfile:
        """Extract the user from either profile variant payload."""
        url = self._transport.resolve(PROFILE_PATHS[self._profile_variant])
        try:
            if self._profile_variant is ProfileVariant.ME:
                return UserProfile.model_validate(data)
            dashboard = DashboardProfile.model_validate(data)
        except ValidationError as exc:
            msg = "Malformed profile payload"
            raise HttpError(msg, status_code=status_code, url=url) from exc

        if dashboard.setup is not None and dashboard.setup.client_id:
            self._session.client_available = True
            if dashboard.setup.client_id != self._session.client_id:
                self.set_client_id(dashboard.setup.client_id)
        if dashboard.user is None:
            msg = "Dashboard payload contained no user"
            raise HttpError(msg, status_code=status_code, url=url)
        return dashboard.user

    # ── Helpers ──────────────────────────────────────────────────────

    def _start(self, name: str, coro: Awaitable[Any]) -> asyncio.Future[Any]:
        """Register ``coro`` as the shared in-flight task for ``name``."""
        task = asyncio.ensure_future(coro)
        self._pending[name] = task

        def _done(finished: asyncio.Future[Any]) -> None:
            if self._pending.get(name) is finished:
                del self._pending[name]
            # Mark the outcome as retrieved when every waiter was cancelled.
            if not finished.cancelled():
                finished.exception()

        task.add_done_callback(_done)
        return task

    def _in_flight(self, name: str) -> bool:
        task = self._pending.get(name)
        return task is not None and not task.done()

    def _is_fresh(self) -> bool:
        stamp = self._session.cache_timestamp
        if self._session.user is None or stamp is None:
            return False
        return self._clock() - stamp < self._cache_ttl

    def _handle_session_expired(self) -> None:
        """Send the user to the login page unless already there."""
        login_path = urlsplit(self._session.login_page_url).path
        if urlsplit(self._navigator.location).path == login_path:
            logger.debug("Session expired while on the login page; staying")
            return
        logger.info("Session expired; redirecting to %s", self._session.login_page_url)
        if self._on_session_expired is not None:
            self._on_session_expired()
        else:
            self._safe_navigate(self._session.login_page_url)

    def _safe_navigate(self, url: str) -> None:
        try:
            self._navigator.navigate(url)
        except Exception:
            logger.exception("Navigation to %s failed", url)

    def _hydrate(self, client_id: str | None) -> None:
        """Load the persisted session fields."""
        stored_client_id = self._load(StorageKey.CLIENT_ID)
        if client_id:
            self._session.client_id = client_id
            if client_id != stored_client_id:
                self._persist(StorageKey.CLIENT_ID, client_id)
        else:
            self._session.client_id = stored_client_id or ""

        self._session.token = self._load(StorageKey.ACCESS_TOKEN) or None
        self._code_verifier = self._load(StorageKey.CODE_VERIFIER) or None

        raw_user = self._load(StorageKey.USER)
        if raw_user and raw_user != "null":
            try:
                self._session.user = UserProfile.model_validate(json.loads(raw_user))
            except (ValueError, ValidationError) as exc:
                logger.warning("Ignoring unreadable cached user: %s", exc)

        raw_stamp = self._load(StorageKey.UPDATED_AT)
        if self._session.user is not None and raw_stamp:
            try:
                self._session.cache_timestamp = _parse_timestamp(raw_stamp)
            except ValueError as exc:
                logger.warning("Ignoring unreadable cache timestamp %r: %s", raw_stamp, exc)
        if self._session.cache_timestamp is None:
            self._session.user = None

    def _load(self, key: str) -> str | None:
        try:
            return self._store.get(key)
        except Exception as exc:
            logger.warning("Could not read %s from store: %s", key, exc)
            return None

    def _persist(self, key: str, value: str) -> None:
        try:
            self._store.set(key, value)
        except Exception as exc:
            logger.warning("Could not persist %s: %s", key, exc)

    def _remove(self, key: str) -> None:
        try:
            self._store.delete(key)
        except Exception as exc:
            logger.warning("Could not remove %s from store: %s", key, exc)
