"""Stateless GoIAM service client for confidential (server-side) clients.

Each call is a single request: nothing is cached and no session is
kept. Use ``SessionManager`` for the interactive login lifecycle.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from .exceptions import ApiError, HttpError, InvalidGrantError
from .models import Resource, UserProfile, VerifyResult
from .session import PROFILE_PATHS, VERIFY_PATH
from .transport import Transport
from .types import ProfileVariant


logger = logging.getLogger("goiam.service")

RESOURCE_PATH = "/resource/v1/"


class IamService:
    """One-shot calls against a GoIAM server.

    Parameters
    ----------
    base_url : str
        Base URL of the GoIAM API.
    client_id : str
        OAuth2 client id, used as the Basic auth username on verify.
    secret : str
        Client secret, used as the Basic auth password on verify.
    transport : Transport, optional
        HTTP transport. Defaults to one built for ``base_url``.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        secret: str,
        transport: Transport | None = None,
    ) -> None:
        """Initialize the service client."""
        self.client_id = client_id
        self._secret = secret
        self._transport = transport if transport is not None else Transport(base_url)
        if base_url:
            self._transport.base_url = base_url.rstrip("/")

    async def verify(self, code: str) -> str:
        """Exchange an authorization code for an access token.

        Raises
        ------
        InvalidGrantError
            If the server rejects the code.
        """
        try:
            envelope = await self._transport.get(
                VERIFY_PATH,
                params={"code": code},
                basic_auth=(self.client_id, self._secret),
            )
            return VerifyResult.model_validate(envelope.data).access_token
        except ApiError as exc:
            logger.warning("Code exchange rejected: %s", exc.message)
            raise InvalidGrantError(exc.message, status_code=exc.status_code) from exc
        except ValidationError as exc:
            msg = "Verify response carried no access token"
            raise HttpError(msg, url=self._transport.resolve(VERIFY_PATH)) from exc

    async def me(self, token: str) -> UserProfile:
        """Fetch the user the token belongs to."""
        path = PROFILE_PATHS[ProfileVariant.ME]
        envelope = await self._transport.get(path, token=token)
        try:
            return UserProfile.model_validate(envelope.data)
        except ValidationError as exc:
            msg = "Malformed profile payload"
            raise HttpError(msg, url=self._transport.resolve(path)) from exc

    async def create_resource(self, resource: Resource, token: str) -> Resource:
        """Create ``resource`` and return the server's copy of it.

        Falls back to the submitted resource when the server returns no
        data.
        """
        envelope = await self._transport.post(RESOURCE_PATH, token=token, json=resource.to_payload())
        if envelope.data is None:
            return resource
        try:
            return Resource.model_validate(envelope.data)
        except ValidationError as exc:
            msg = "Malformed resource payload"
            raise HttpError(msg, url=self._transport.resolve(RESOURCE_PATH)) from exc

    async def delete_resource(self, resource_id: str, token: str) -> None:
        """Delete the resource with ``resource_id``."""
        await self._transport.delete(f"{RESOURCE_PATH}{resource_id}", token=token)
        logger.debug("Deleted resource %s", resource_id)

    async def close(self) -> None:
        """Release the HTTP client."""
        await self._transport.close()
