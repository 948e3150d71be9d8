"""Tests for the HTTP transport and envelope interpretation."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import base64
import json

import httpx
import pytest

from goiam.exceptions import ApiError, HttpError, TransportError
from goiam.transport import Transport


def _transport(handler) -> Transport:
    return Transport("https://api.example.com/", transport=httpx.MockTransport(handler))


def _response(status_code: int, **kwargs) -> httpx.Response:
    request = httpx.Request("GET", "https://api.example.com/x")
    return httpx.Response(status_code, request=request, **kwargs)


class TestResolve:
    """Tests for URL joining."""

    def test_relative_paths(self) -> None:
        """Relative paths join the base URL."""
        transport = Transport("https://api.example.com/")
        assert transport.resolve("/me/v1/") == "https://api.example.com/me/v1/"
        assert transport.resolve("me/v1/") == "https://api.example.com/me/v1/"

    def test_absolute_urls_pass_through(self) -> None:
        """Absolute URLs are untouched."""
        transport = Transport("https://api.example.com")
        assert transport.resolve("https://other.test/a") == "https://other.test/a"


class TestInterpret:
    """Tests for Transport.interpret."""

    def test_success(self) -> None:
        """A successful envelope is returned."""
        envelope = Transport.interpret(
            _response(200, json={"success": True, "message": "ok", "data": {"a": 1}})
        )
        assert envelope.data == {"a": 1}
        assert envelope.message == "ok"

    def test_success_false(self) -> None:
        """success:false raises ApiError with the server message."""
        with pytest.raises(ApiError) as exc_info:
            Transport.interpret(_response(403, json={"success": False, "message": "forbidden"}))
        assert exc_info.value.message == "forbidden"
        assert exc_info.value.status_code == 403

    def test_success_false_without_message(self) -> None:
        """A missing message falls back to the status."""
        with pytest.raises(ApiError, match="status 400"):
            Transport.interpret(_response(400, json={"success": False}))

    def test_non_json_error(self) -> None:
        """An HTML error page raises HttpError with the status."""
        with pytest.raises(HttpError) as exc_info:
            Transport.interpret(_response(502, text="<html>Bad Gateway</html>"))
        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "HTTP 502: Bad Gateway"
        assert exc_info.value.url == "https://api.example.com/x"

    def test_malformed_envelope(self) -> None:
        """A 200 body that is not an envelope raises HttpError."""
        with pytest.raises(HttpError, match="Malformed response envelope"):
            Transport.interpret(_response(200, json=["not", "an", "envelope"]))

    def test_non_2xx_claiming_success(self) -> None:
        """A successful envelope on an error status is still an error."""
        with pytest.raises(HttpError) as exc_info:
            Transport.interpret(_response(500, json={"success": True, "data": None}))
        assert exc_info.value.status_code == 500


class TestSend:
    """Tests for request construction."""

    @pytest.mark.asyncio
    async def test_bearer_and_json(self) -> None:
        """Token and JSON body are attached."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "data": {"id": "r1"}})

        transport = _transport(handler)
        envelope = await transport.post("/resource/v1/", token="tok-1", json={"name": "r"})
        await transport.close()

        request = seen[0]
        assert envelope.data == {"id": "r1"}
        assert str(request.url) == "https://api.example.com/resource/v1/"
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"name": "r"}

    @pytest.mark.asyncio
    async def test_basic_auth_and_params(self) -> None:
        """Basic auth and query params are attached."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True})

        transport = _transport(handler)
        await transport.get("/auth/v1/verify", basic_auth=("abc", "pw"), params={"code": "c1"})

        expected = "Basic " + base64.b64encode(b"abc:pw").decode()
        assert seen[0].headers["Authorization"] == expected
        assert seen[0].url.params["code"] == "c1"
        assert "Content-Type" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_raw_body_keeps_caller_content_type(self) -> None:
        """Non-JSON bodies go out with the caller's content type only."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        transport = _transport(handler)
        await transport.send(
            "PUT",
            "/upload",
            content=b"a,b\n1,2\n",
            headers={"Content-Type": "text/csv"},
        )

        assert seen[0].headers["Content-Type"] == "text/csv"
        assert seen[0].content == b"a,b\n1,2\n"

    @pytest.mark.asyncio
    async def test_send_returns_raw_response(self) -> None:
        """send does not interpret the body."""
        transport = _transport(lambda _r: httpx.Response(401, text="nope"))
        response = await transport.send("GET", "/me/v1/")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        """Request errors become TransportError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        transport = _transport(handler)
        with pytest.raises(TransportError) as exc_info:
            await transport.delete("/resource/v1/r1", token="t")
        assert exc_info.value.url == "https://api.example.com/resource/v1/r1"
        assert isinstance(exc_info.value.__cause__, httpx.ConnectTimeout)

    @pytest.mark.asyncio
    async def test_close_recreates_client(self) -> None:
        """A closed transport lazily opens a new client."""
        transport = _transport(lambda _r: httpx.Response(200, json={"success": True}))
        await transport.get("/a")
        await transport.close()
        await transport.get("/a")
        assert transport._http_client is not None  # noqa: SLF001
        await transport.close()
