"""PKCE (RFC 7636) verifier/challenge pairs for the authorize/token exchange.

A pair is generated per login attempt; the challenge travels with the
initial authorize request and the verifier with the code exchange.
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


# RFC 7636 section 4.1: 43 to 128 characters once base64url-encoded
_MIN_BYTES = 32
_MAX_BYTES = 96


def _b64url(raw: bytes) -> str:
    return urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def s256(verifier: str) -> str:
    """Compute the S256 code challenge for ``verifier``."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


@dataclass(frozen=True)
class PKCEPair:
    """Code verifier with its derived challenge.

    Attributes
    ----------
    verifier : str
        High-entropy secret kept by the client until the code exchange.
    challenge : str
        ``BASE64URL(SHA256(verifier))``.
    method : str
        Always ``"S256"``.
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, num_bytes: int = _MIN_BYTES) -> PKCEPair:
        """Create a fresh pair from ``num_bytes`` of randomness.

        Raises
        ------
        ValueError
            If ``num_bytes`` would produce a verifier outside RFC 7636 bounds.
        """
        if not _MIN_BYTES <= num_bytes <= _MAX_BYTES:
            msg = f"PKCE verifier needs {_MIN_BYTES}-{_MAX_BYTES} random bytes, got {num_bytes}"
            raise ValueError(msg)
        verifier = _b64url(secrets.token_bytes(num_bytes))
        return cls(verifier=verifier, challenge=s256(verifier))

    def authorize_params(self) -> dict[str, str]:
        """Fields added to the authorize request."""
        return {"code_challenge": self.challenge, "code_challenge_method": self.method}
