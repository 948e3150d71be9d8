"""Ephemeral localhost HTTP server capturing the GoIAM login redirect.

Used by the native login flow: the identity server redirects the
browser to ``http://127.0.0.1:<port>/verify?code=...`` and this server
records the query parameters of the first callback.
"""

# pylint: disable=logging-too-many-args,invalid-name

from __future__ import annotations

import html
import logging
import threading

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlsplit


logger = logging.getLogger("goiam.callback_server")

CALLBACK_FIELDS = ("code", "error", "error_description")

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>GoIAM - {title}</title>
<style>
  html, body {{ height: 100%; margin: 0; }}
  body {{ display: grid; place-items: center; background: #fafafa;
         font: 16px/1.5 system-ui, sans-serif; color: #222; }}
  main {{ max-width: 28rem; padding: 1.5rem 2rem; border: 1px solid #ddd;
         border-radius: 8px; background: #fff; }}
  h1 {{ font-size: 1.25rem; margin: 0 0 .5rem; }}
</style>
</head>
<body><main><h1>{title}</h1><p>{body}</p></main></body>
</html>"""


def _page(title: str, body: str) -> bytes:
    return _PAGE.format(title=title, body=html.escape(body, quote=True)).encode("utf-8")


_SIGNED_IN = _page("Signed in", "You can close this window and return to the application.")
_WAITING = _page("Waiting for sign-in…", "Finish logging in in the other browser tab.")


class _CaptureServer(HTTPServer):
    """``HTTPServer`` that keeps the first callback it receives."""

    def __init__(self, address: tuple[str, int], callback_path: str) -> None:
        super().__init__(address, _CallbackHandler)
        self.callback_path = callback_path
        self.captured: dict[str, str | None] | None = None
        self.arrived = threading.Event()
        self._lock = threading.Lock()

    def capture(self, query: str) -> dict[str, str | None] | None:
        """Record ``query`` unless a callback was already recorded.

        Returns the recorded fields, or None when this was a repeat.
        """
        params = parse_qs(query)
        fields = {name: params.get(name, [None])[0] for name in CALLBACK_FIELDS}
        with self._lock:
            if self.captured is not None:
                return None
            self.captured = fields
        self.arrived.set()
        return fields


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CaptureServer

    def do_GET(self) -> None:
        target = urlsplit(self.path)
        if target.path == "/":
            self._reply(_WAITING)
            return
        if target.path != self.server.callback_path:
            self.send_error(404)
            return

        fields = self.server.capture(target.query)
        if fields is None:
            self._reply(_SIGNED_IN)
        elif fields["error"]:
            self._reply(_page("Sign-in failed", fields["error_description"] or fields["error"]))
        elif not fields["code"]:
            self._reply(_page("Sign-in failed", "The callback carried no authorization code."))
        else:
            self._reply(_SIGNED_IN)

    def _reply(self, body: bytes) -> None:
        self.send_response(200)
        for name, value in (
            ("Content-Type", "text/html; charset=utf-8"),
            ("Content-Length", str(len(body))),
            ("Cache-Control", "no-store"),
            ("Content-Security-Policy", "default-src 'none'; style-src 'unsafe-inline'"),
            ("X-Content-Type-Options", "nosniff"),
        ):
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("Callback server: %s", format % args)


class OAuthCallbackServer:
    """Localhost server that waits for one login callback.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port to listen on; ``0`` picks a free one.
    path : str
        Callback path (default ``"/verify"``).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, path: str = "/verify") -> None:
        self._host = host
        self._port = port
        self._path = "/" + path.lstrip("/")
        self._server: _CaptureServer | None = None
        self._thread: threading.Thread | None = None
        self._actual_port = 0

    @property
    def redirect_uri(self) -> str:
        """The callback URL to hand to the identity server."""
        return f"http://{self._host}:{self._actual_port}{self._path}"

    @property
    def is_running(self) -> bool:
        """Whether the server thread is serving."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> str:
        """Start serving on a daemon thread and return ``redirect_uri``."""
        self._server = _CaptureServer((self._host, self._port), self._path)
        self._actual_port = self._server.server_port
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="goiam-callback",
            daemon=True,
        )
        self._thread.start()
        logger.debug("Callback server listening on %s", self.redirect_uri)
        return self.redirect_uri

    def wait_for_callback(self, timeout: float = 120.0) -> dict[str, str | None] | None:
        """Block until the first callback arrives.

        Parameters
        ----------
        timeout : float
            Seconds to wait (default 120).

        Returns
        -------
        dict or None
            ``code``, ``error`` and ``error_description`` of the
            callback, or None if the timeout expired.
        """
        server = self._server
        if server is None or not server.arrived.wait(timeout=timeout):
            return None
        return server.captured

    def stop(self) -> None:
        """Shut the server down and release the port."""
        server, self._server = self._server, None
        if server is not None:
            server.shutdown()
            server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._thread = None
