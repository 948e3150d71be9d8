"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses the S256 challenge method: the challenge is the base64url-encoded
SHA-256 digest of the random verifier bytes.
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass

from .exceptions import EntropyUnavailable


def base64url(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The random verifier bytes, base64url-encoded without padding.
        Kept by the client and sent to the identity server on verify.
    challenge : str
        base64url(SHA-256(verifier bytes)), sent with the login redirect.
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @property
    def verifier_bytes(self) -> bytes:
        """The raw random bytes behind ``verifier``."""
        padding = "=" * (-len(self.verifier) % 4)
        return urlsafe_b64decode(self.verifier + padding)

    @classmethod
    def generate(cls, length: int = 32) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of random bytes for the verifier (default 32).

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.

        Raises
        ------
        EntropyUnavailable
            If the operating system's secure random source cannot be read.
        """
        try:
            raw = secrets.token_bytes(length)
        except (NotImplementedError, OSError) as exc:
            msg = "Secure random source is unavailable"
            raise EntropyUnavailable(msg, length=length) from exc
        digest = hashlib.sha256(raw).digest()
        return cls(verifier=base64url(raw), challenge=base64url(digest))

    def matches(self, verifier: str) -> bool:
        """Check whether ``verifier`` hashes to this challenge."""
        padding = "=" * (-len(verifier) % 4)
        raw = urlsafe_b64decode(verifier + padding)
        return secrets.compare_digest(base64url(hashlib.sha256(raw).digest()), self.challenge)
