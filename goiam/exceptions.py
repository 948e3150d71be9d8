"""goiam exception hierarchy.

All goiam-specific exceptions inherit from GoIamException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class GoIamException(Exception):
    """Base exception for all goiam errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize goiam exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (url, status_code, flow_id, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class TransportError(GoIamException):
    """The network call itself failed.

    Raised for connection errors, DNS failures, timeouts and other
    problems that prevent an HTTP response from being received.
    """

    def __init__(self, message: str, url: str | None = None, **context: Any) -> None:
        """Initialize transport error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        url : str, optional
            The URL that was being requested.
        **context : Any
            Additional context.
        """
        super().__init__(message, url=url, **context)
        self.url = url


class HttpError(GoIamException):
    """Non-2xx response without a usable envelope.

    Also raised when a response body cannot be decoded into the
    ``{success, message, data}`` envelope at all.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize HTTP error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            The HTTP status code of the response.
        url : str, optional
            The URL that was requested.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, url=url, **context)
        self.status_code = status_code
        self.url = url


class ApiError(GoIamException):
    """The server answered with an envelope reporting ``success: false``."""

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        """Initialize API error.

        Parameters
        ----------
        message : str
            The server-supplied message.
        status_code : int, optional
            The HTTP status code of the response.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class InvalidGrantError(ApiError):
    """The identity server rejected an authorization code exchange."""


class EntropyUnavailable(GoIamException):
    """The secure random source could not be read.

    Fatal for the login attempt that triggered PKCE generation.
    """


class AuthFlowError(GoIamException):
    """The native login flow failed.

    Raised when the identity server redirects back with an error or
    without an authorization code.
    """

    def __init__(self, message: str, flow_id: str | None = None, **context: Any) -> None:
        """Initialize auth flow error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        flow_id : str, optional
            The unique identifier of the login flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, flow_id=flow_id, **context)
        self.flow_id = flow_id


class AuthFlowTimeout(AuthFlowError):
    """The native login flow timed out waiting for the callback."""

    def __init__(
        self,
        message: str,
        timeout: float,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        flow_id : str, optional
            The unique identifier of the login flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout
