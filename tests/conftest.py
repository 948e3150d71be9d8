"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import json
import os

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from goiam.config import clear_settings
from goiam.session import Navigator, SessionManager
from goiam.store import MemoryStore, reset_store
from goiam.transport import Transport
from tests.constants import BASE_URL, CALLBACK_URL, CLIENT_ID, USER_PAYLOAD


if TYPE_CHECKING:
    from collections.abc import Callable, Generator


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep config files, env vars and singletons from leaking between tests."""
    for name in list(os.environ):
        if name.startswith("GOIAM_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    reset_store()
    yield
    clear_settings()
    reset_store()


# =============================================================================
# Fake GoIAM server
# =============================================================================


class FakeIam:
    """Routes requests of an ``httpx.MockTransport`` to canned responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def route(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json_body: Any = None,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        """Answer ``method path`` with a fixed response or ``handler``."""
        if handler is None:

            def handler(_request: httpx.Request) -> httpx.Response:
                return httpx.Response(status_code, json=json_body)

        self._routes[(method.upper(), path)] = handler

    def ok(self, method: str, path: str, data: Any = None, message: str = "") -> None:
        """Answer with a successful envelope."""
        self.route(method, path, json_body={"success": True, "message": message, "data": data})

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"success": False, "message": "not found", "data": None})
        return handler(request)

    def calls(self, path: str) -> list[httpx.Request]:
        """Requests received for ``path``."""
        return [r for r in self.requests if r.url.path == path]

    def transport(self, base_url: str = BASE_URL) -> Transport:
        return Transport(base_url, transport=httpx.MockTransport(self.handle))


class FakeClock:
    """Settable clock for staleness tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def iam() -> FakeIam:
    """A fake GoIAM server with the profile and verify routes."""
    server = FakeIam()
    server.ok("GET", "/me/v1/", USER_PAYLOAD)
    server.ok("GET", "/auth/v1/verify", {"access_token": "tok-1"})
    return server


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def navigator() -> Navigator:
    """A navigator sitting on the dashboard that never opens a browser."""
    return Navigator(location="/dashboard", open_browser=False)


@pytest.fixture()
def make_manager(
    iam: FakeIam,
    store: MemoryStore,
    navigator: Navigator,
    clock: FakeClock,
) -> Callable[..., SessionManager]:
    """Build a manager wired to the fake server; keyword args override."""

    def _make(**overrides: Any) -> SessionManager:
        options: dict[str, Any] = {
            "store": store,
            "transport": iam.transport(),
            "base_url": BASE_URL,
            "client_id": CLIENT_ID,
            "callback_url": CALLBACK_URL,
            "navigator": navigator,
            "clock": clock,
        }
        options.update(overrides)
        return SessionManager(**options)

    return _make


@pytest.fixture()
def manager(make_manager: Callable[..., SessionManager]) -> SessionManager:
    return make_manager()


@pytest.fixture()
def seed_cached_user(store: MemoryStore) -> Callable[..., None]:
    """Write a token and cached profile into the store."""

    def _seed(stamp: datetime, token: str = "tok-0") -> None:
        store.set("access_token", token)
        store.set("user", json.dumps(USER_PAYLOAD))
        store.set("localStoreUpdatedAt", stamp.isoformat())

    return _seed
