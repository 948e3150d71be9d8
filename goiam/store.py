"""Pluggable persistent storage backends.

Provides the PersistentStore ABC and concrete implementations for
in-memory, JSON file, OS keyring, and Redis-backed key/value storage.
The session manager keeps its token, cached profile, cache timestamp
and pending PKCE verifier here so they survive process restarts.

The API is synchronous, mirroring browser local storage, so that
``SessionManager.logout()`` can stay synchronous.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


logger = logging.getLogger("goiam.store")


class StorageKey:
    """Keys written by the session manager."""

    CLIENT_ID = "client_id"
    ACCESS_TOKEN = "access_token"  # noqa: S105
    USER = "user"
    UPDATED_AT = "localStoreUpdatedAt"
    CODE_VERIFIER = "code_verifier"

    ALL = (CLIENT_ID, ACCESS_TOKEN, USER, UPDATED_AT, CODE_VERIFIER)


class PersistentStore(ABC):
    """Abstract base class for durable client-side key/value storage."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Load the value stored under ``key``.

        Parameters
        ----------
        key : str
            Storage key.

        Returns
        -------
        str or None
            The stored value, or None if not found.
        """

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value.

        Parameters
        ----------
        key : str
            Storage key.
        value : str
            The value to persist.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``. Missing keys are ignored.

        Parameters
        ----------
        key : str
            Storage key.
        """

    def clear(self) -> None:
        """Remove every key the session manager writes."""
        for key in StorageKey.ALL:
            self.delete(key)


class MemoryStore(PersistentStore):
    """In-memory store for tests and single-process use.

    Thread-safe via threading.Lock. Does not survive a restart.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        """Initialize the memory store."""
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        """Load a value from memory."""
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        """Save a value in memory."""
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        """Delete a value from memory."""
        with self._lock:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        """Return a copy of all stored values."""
        with self._lock:
            return dict(self._data)


class FileStore(PersistentStore):
    """JSON-file store, the default durable backend for CLI use.

    The whole store is one JSON object. Writes go to a temporary file
    in the same directory which then replaces the original, so a crash
    never leaves a half-written file behind.

    Parameters
    ----------
    path : str or Path
        Location of the JSON file (created on first write).
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the file store."""
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        """Location of the backing file."""
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        content = self._path.read_text(encoding="utf-8")
        if not content.strip():
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            msg = f"Store file {self._path} does not contain a JSON object"
            raise ValueError(msg)
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self._path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise

    def get(self, key: str) -> str | None:
        """Load a value from the file."""
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        """Save a value to the file."""
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        """Delete a value from the file."""
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


class KeyringStore(PersistentStore):
    """OS keyring-backed store for persistent native credentials.

    Requires the ``keyring`` package: ``pip install goiam[keyring]``

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "goiam").
    """

    def __init__(self, service_name: str = "goiam") -> None:
        """Initialize the keyring store."""
        try:
            import keyring as _keyring
        except ImportError:
            msg = "Install keyring for OS credential storage: pip install goiam[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring = _keyring

    def get(self, key: str) -> str | None:
        """Load a value from the OS keyring."""
        return self._keyring.get_password(self._service_name, key)

    def set(self, key: str, value: str) -> None:
        """Save a value to the OS keyring."""
        self._keyring.set_password(self._service_name, key, value)

    def delete(self, key: str) -> None:
        """Delete a value from the OS keyring."""
        from keyring.errors import PasswordDeleteError

        with contextlib.suppress(PasswordDeleteError):
            self._keyring.delete_password(self._service_name, key)


class RedisStore(PersistentStore):
    """Redis-backed store for clients running on several hosts.

    Parameters
    ----------
    redis_url : str
        Redis connection URL.
    prefix : str
        Key prefix for namespacing (default "goiam").
    client : Any, optional
        A pre-built ``redis.Redis`` client (tests, shared pools).
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "goiam",
        client: Any | None = None,
    ) -> None:
        """Initialize the Redis store."""
        if client is None:
            try:
                from redis import Redis
            except ImportError:
                msg = "Redis backend requires the 'redis' package. Install with: pip install goiam[redis]"
                raise ImportError(msg) from None
            client = Redis.from_url(redis_url, decode_responses=True)
        self._prefix = prefix
        self._redis: Any = client

    def _key(self, key: str) -> str:
        """Build a Redis key with prefix."""
        return f"{self._prefix}:session:{key}"

    def get(self, key: str) -> str | None:
        """Load a value from Redis."""
        value = self._redis.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        """Save a value to Redis."""
        self._redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        """Delete a value from Redis."""
        self._redis.delete(self._key(key))


_store_instance: PersistentStore | None = None
_store_lock = threading.Lock()


def create_store(backend: str = "memory", **kwargs: Any) -> PersistentStore:
    """Build a new store for ``backend``.

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "file", "keyring", or "redis".
    **kwargs : Any
        Backend options: ``path`` (file), ``service_name`` (keyring),
        ``redis_url`` and ``prefix`` (redis).

    Returns
    -------
    PersistentStore
        A configured store instance.
    """
    if backend == "memory":
        return MemoryStore()
    if backend == "file":
        path = kwargs.get("path") or "~/.config/goiam/session.json"
        return FileStore(path)
    if backend == "keyring":
        return KeyringStore(service_name=kwargs.get("service_name", "goiam"))
    if backend == "redis":
        return RedisStore(
            redis_url=kwargs.get("redis_url", "redis://localhost:6379/0"),
            prefix=kwargs.get("prefix", "goiam"),
        )
    msg = f"Unknown store backend: {backend}"
    raise ValueError(msg)


def get_store(backend: str = "memory", **kwargs: Any) -> PersistentStore:
    """Factory function for the process-wide store.

    Returns a singleton instance. Call ``reset_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "file", "keyring", or "redis".
    **kwargs : Any
        Additional keyword arguments passed to ``create_store``.

    Returns
    -------
    PersistentStore
        A configured store instance.
    """
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        if _store_instance is None:
            _store_instance = create_store(backend, **kwargs)
        return _store_instance


def reset_store() -> None:
    """Reset the singleton store instance."""
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        _store_instance = None
