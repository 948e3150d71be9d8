"""Native login flow.

Runs the PKCE login round trip from a terminal or desktop process:
an ephemeral localhost server stands in for the web app's callback
page, the system browser shows the GoIAM login, and the captured code
is exchanged through the ``SessionManager``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import secrets

from typing import TYPE_CHECKING

from .callback_server import OAuthCallbackServer
from .exceptions import AuthFlowError, AuthFlowTimeout


if TYPE_CHECKING:
    from .models import UserProfile
    from .session import SessionManager


logger = logging.getLogger("goiam.flow")


class LoginFlow:
    """One interactive login through a localhost callback.

    Parameters
    ----------
    manager : SessionManager
        The session to log in.
    host : str
        Callback server bind address (default ``"127.0.0.1"``).
    port : int
        Callback server port (``0`` for auto-assign).
    timeout : float
        Seconds to wait for the callback (default ``120``).
    server : OAuthCallbackServer, optional
        A pre-built callback server (tests).
    """

    def __init__(
        self,
        manager: SessionManager,
        host: str = "127.0.0.1",
        port: int = 0,
        timeout: float = 120.0,
        server: OAuthCallbackServer | None = None,
    ) -> None:
        """Initialize the login flow."""
        self.manager = manager
        self.timeout = timeout
        self.flow_id = secrets.token_urlsafe(8)
        self._server = server if server is not None else OAuthCallbackServer(host, port)

    async def run(self) -> UserProfile | None:
        """Log in and return the freshly fetched profile.

        Returns
        -------
        UserProfile or None
            The profile after a successful login.

        Raises
        ------
        AuthFlowTimeout
            If no callback arrives within ``timeout``.
        AuthFlowError
            If the callback carries an error or no code.
        InvalidGrantError
            If the server rejects the code.
        """
        redirect_uri = self._server.start()
        try:
            self.manager.set_callback_url(redirect_uri)
            url = self.manager.login()
            logger.info("Login flow %s: open %s to sign in", self.flow_id, url)

            result = await asyncio.to_thread(self._server.wait_for_callback, self.timeout)
            if result is None:
                msg = f"Login timed out after {self.timeout}s"
                raise AuthFlowTimeout(msg, timeout=self.timeout, flow_id=self.flow_id)
            if result.get("error"):
                detail = result.get("error_description") or result["error"]
                msg = f"Identity server returned error: {detail}"
                raise AuthFlowError(msg, flow_id=self.flow_id)
            code = result.get("code")
            if not code:
                msg = "Callback carried no authorization code"
                raise AuthFlowError(msg, flow_id=self.flow_id)

            await self.manager.verify(code)
            user = await self.manager.refresh_profile(force=True)
            logger.info("Login flow %s completed", self.flow_id)
            return user
        finally:
            self._server.stop()
