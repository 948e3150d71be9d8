"""Logging setup for goiam.

Every module logs through a child of the ``goiam`` logger
(``goiam.session``, ``goiam.store``, ...). ``configure`` attaches a
single stderr handler to the parent, so the level and format set from
``[log]`` settings apply to the whole package. Storage and navigation
failures are logged as warnings instead of being raised.
"""

from __future__ import annotations

import logging
import sys

from typing import Any


ROOT_LOGGER = "goiam"
DEFAULT_FORMAT = "%(name)s - %(levelname)s - %(message)s"

REDACTED = "[REDACTED]"

# Matched as substrings of the lowercased key
_SENSITIVE_FRAGMENTS = (
    "secret",
    "password",
    "token",
    "authorization",
    "auth",
    "credential",
    "verifier",
    "challenge",
)

# Matched only as the whole key
_SENSITIVE_NAMES = frozenset({"code"})


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the ``goiam`` logger or one of its children.

    The stderr handler is attached on first use.

    Parameters
    ----------
    name : str, optional
        Child name, e.g. ``"session"`` for ``goiam.session``.

    Returns
    -------
    logging.Logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not any(getattr(h, "_goiam_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        handler._goiam_handler = True  # type: ignore[attr-defined]  # noqa: SLF001
        root.addHandler(handler)
        if root.level == logging.NOTSET:
            root.setLevel(logging.WARNING)
    return root.getChild(name) if name else root


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        msg = f"Unknown log level: {level!r}"
        raise ValueError(msg)
    return value


def configure(level: int | str = logging.WARNING, fmt: str | None = None) -> logging.Logger:
    """Apply a level and, optionally, a format to the goiam logger.

    Parameters
    ----------
    level : int or str
        A level number or name (``"debug"`` works too).
    fmt : str, optional
        ``logging.Formatter`` format string for the goiam handler.

    Returns
    -------
    logging.Logger
        The ``goiam`` logger.

    Raises
    ------
    ValueError
        If ``level`` names no known level.
    """
    root = get_logger()
    root.setLevel(_coerce_level(level))
    if fmt:
        for handler in root.handlers:
            if getattr(handler, "_goiam_handler", False):
                handler.setFormatter(logging.Formatter(fmt))
    return root


def enable_debug() -> None:
    """Log requests, cache decisions and store writes."""
    configure(logging.DEBUG)


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return lowered in _SENSITIVE_NAMES or any(part in lowered for part in _SENSITIVE_FRAGMENTS)


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Return a copy of ``data`` that is safe to log.

    Mappings are walked recursively and values under keys that look
    like tokens, secrets, PKCE material or authorization codes become
    ``"[REDACTED]"``. Containers nested deeper than ``max_depth`` are
    replaced by ``"[MAX_DEPTH]"``; scalars pass through.
    """
    if not isinstance(data, (dict, list, tuple)):
        return data
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    return [redact_sensitive_data(item, max_depth - 1) for item in data]
