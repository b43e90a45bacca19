"""Default crypto capability.

The cache core only ever talks to the ``CryptoProvider`` protocol; this is the
implementation used when the host does not bring its own.
"""

from __future__ import annotations

import base64
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from authlib.jose import JsonWebKey, jwt
from authlib.oauth2.rfc7636 import create_s256_code_challenge

log = logging.getLogger(__name__)

# RFC 7636 allows 43-128 characters; 32 random bytes give 43 url-safe characters.
PKCE_VERIFIER_BYTES = 32

POP_KEY_SIZE = 2048


@dataclass
class PkceCodes:
    verifier: str
    challenge: str


class CryptoOps:
    """GUIDs, base64, PKCE and PoP signing backed by the standard library and authlib."""

    def __init__(self) -> None:
        # PoP keys live only as long as this object; they are never written to the cache.
        self._keys: Dict[str, JsonWebKey] = {}

    def create_new_guid(self) -> str:
        return str(uuid.uuid4())

    def base64_encode(self, value: str) -> str:
        return base64.b64encode(value.encode("utf-8")).decode("ascii")

    def base64_decode(self, value: str) -> str:
        return base64.b64decode(value.encode("ascii"), validate=True).decode("utf-8")

    def generate_pkce_codes(self) -> PkceCodes:
        verifier = secrets.token_urlsafe(PKCE_VERIFIER_BYTES)
        return PkceCodes(verifier=verifier, challenge=create_s256_code_challenge(verifier))

    def get_public_key_thumbprint(self, request: Optional[dict] = None) -> str:
        """Generate a PoP key pair and return the RFC 7638 thumbprint that identifies it."""
        key = JsonWebKey.generate_key("RSA", POP_KEY_SIZE, is_private=True)
        kid = key.thumbprint()
        self._keys[kid] = key
        log.debug("Generated PoP key kid=%s", kid)
        return kid

    def sign_jwt(self, payload: dict, kid: str) -> str:
        key = self._keys.get(kid)
        if key is None:
            raise KeyError(f"No signing key for kid={kid}")
        header = {"alg": "RS256", "typ": "pop", "kid": kid}
        return jwt.encode(header, payload, key).decode("ascii")

    def remove_key(self, kid: str) -> None:
        self._keys.pop(kid, None)
