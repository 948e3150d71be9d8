"""Authenticated HTTP transport with envelope interpretation.

Wraps a shared ``httpx.AsyncClient``. Every GoIAM endpoint answers
with ``{success, message, data}``; ``interpret`` turns a response into
an ``Envelope`` or raises the matching typed failure.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import Any

import httpx

from pydantic import ValidationError

from .exceptions import ApiError, HttpError, TransportError
from .log import redact_sensitive_data
from .models import Envelope


logger = logging.getLogger("goiam.transport")

DEFAULT_TIMEOUT = 10.0


def _request_url(response: httpx.Response) -> str | None:
    """URL of the request behind ``response``, if one is attached."""
    try:
        return str(response.request.url)
    except RuntimeError:
        return None


class Transport:
    """HTTP transport for GoIAM endpoints.

    Parameters
    ----------
    base_url : str
        Base URL that relative request paths are joined to.
    timeout : float
        Request timeout in seconds (default ``10``).
    http_client : httpx.AsyncClient, optional
        A pre-built client to use instead of creating one.
    transport : httpx.AsyncBaseTransport, optional
        Low-level transport for the created client (e.g.
        ``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    def resolve(self, url: str) -> str:
        """Join a relative path to ``base_url``; absolute URLs pass through."""
        if url.startswith(("http://", "https://")):
            return url
        if not url.startswith("/"):
            url = f"/{url}"
        return f"{self.base_url}{url}"

    async def send(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        basic_auth: tuple[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and return the raw response.

        Parameters
        ----------
        method : str
            HTTP method.
        url : str
            Absolute URL or path relative to ``base_url``.
        token : str, optional
            Bearer token for the ``Authorization`` header.
        basic_auth : tuple of str, optional
            ``(username, password)`` for HTTP Basic auth.
        params : dict, optional
            Query parameters.
        json : Any, optional
            JSON request body.
        headers : dict, optional
            Extra request headers.
        **kwargs : Any
            Passed through to ``httpx.AsyncClient.request``.

        Returns
        -------
        httpx.Response
            The response, whatever its status code.

        Raises
        ------
        TransportError
            If no response could be obtained.
        """
        full_url = self.resolve(url)
        request_headers = dict(headers or {})
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        client = await self._get_client()
        if params:
            logger.debug("%s %s %s", method.upper(), full_url, redact_sensitive_data(params))
        else:
            logger.debug("%s %s", method.upper(), full_url)
        try:
            return await client.request(
                method.upper(),
                full_url,
                params=params,
                json=json,
                headers=request_headers,
                auth=httpx.BasicAuth(*basic_auth) if basic_auth else None,
                **kwargs,
            )
        except httpx.RequestError as exc:
            logger.warning("Request to %s failed: %s", full_url, exc)
            msg = f"Request failed: {exc}"
            raise TransportError(msg, url=full_url, method=method.upper()) from exc

    @staticmethod
    def interpret(response: httpx.Response) -> Envelope:
        """Decode a response into an envelope or raise the matching error.

        Parameters
        ----------
        response : httpx.Response
            The response to interpret.

        Returns
        -------
        Envelope
            The decoded, successful envelope.

        Raises
        ------
        HttpError
            If the body is not an envelope, or the status is non-2xx
            while the envelope claims success.
        ApiError
            If the envelope reports ``success: false``.
        """
        url = _request_url(response)
        try:
            envelope = Envelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            if response.is_success:
                msg = "Malformed response envelope"
            else:
                msg = f"HTTP {response.status_code}: {response.reason_phrase}"
            raise HttpError(msg, status_code=response.status_code, url=url) from exc

        if not envelope.success:
            message = envelope.message or f"Request failed with status {response.status_code}"
            raise ApiError(message, status_code=response.status_code)

        if not response.is_success:
            msg = f"HTTP {response.status_code}: {response.reason_phrase}"
            raise HttpError(msg, status_code=response.status_code, url=url)

        return envelope

    async def request(self, method: str, url: str, **kwargs: Any) -> Envelope:
        """Send a request and interpret its envelope."""
        response = await self.send(method, url, **kwargs)
        return self.interpret(response)

    async def get(self, url: str, **kwargs: Any) -> Envelope:
        """GET ``url`` and interpret the envelope."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Envelope:
        """POST to ``url`` and interpret the envelope."""
        return await self.request("POST", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Envelope:
        """DELETE ``url`` and interpret the envelope."""
        return await self.request("DELETE", url, **kwargs)
