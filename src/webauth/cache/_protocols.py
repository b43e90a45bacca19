"""Protocol definitions for collaborators consumed but not implemented by the cache core."""

from typing import Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class PkceCodes(Protocol):
    verifier: str
    challenge: str


@runtime_checkable
class CryptoProvider(Protocol):
    """Crypto capability used by the state codec and the request lifecycle."""

    def create_new_guid(self) -> str:
        raise NotImplementedError

    def base64_encode(self, value: str) -> str:
        raise NotImplementedError

    def base64_decode(self, value: str) -> str:
        raise NotImplementedError

    def generate_pkce_codes(self) -> PkceCodes:
        raise NotImplementedError

    def get_public_key_thumbprint(self, request: Optional[dict] = None) -> str:
        raise NotImplementedError

    def sign_jwt(self, payload: dict, kid: str) -> str:
        raise NotImplementedError


@runtime_checkable
class Response(Protocol):
    """Protocol for HTTP response objects (requests or httpx)."""

    status_code: int
    headers: Dict[str, str]

    def json(self) -> dict:
        raise NotImplementedError
