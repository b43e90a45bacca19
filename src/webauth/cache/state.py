"""Request state codec.

The ``state`` parameter sent on an authorization request carries two things:
the library's own state (a fresh correlation id, optionally with metadata such
as the interaction type) and the caller's opaque state. Wire format::

    base64(JSON{"id": "<guid>"[, "meta": {...}]})[|<caller state>]

The delimiter is not part of the base64 alphabet, so the first occurrence
always ends the library segment.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional

from webauth.cache.constants import RESOURCE_DELIM
from webauth.cache.errors import InvalidStateError, NoCryptoObjectError, NonceMismatchError

if TYPE_CHECKING:
    from webauth.cache._protocols import CryptoProvider

log = logging.getLogger(__name__)


@dataclass
class LibraryStateObject:
    id: str
    meta: Dict[str, str] = field(default_factory=dict)

    def to_json(self) -> str:
        data: Dict[str, object] = {"id": self.id}
        if self.meta:
            data["meta"] = self.meta
        return json.dumps(data, separators=(",", ":"))


@dataclass
class RequestStateObject:
    library_state: LibraryStateObject
    user_request_state: str = ""


def generate_library_state(crypto: "CryptoProvider", meta: Optional[Dict[str, str]] = None) -> str:
    if crypto is None:
        raise NoCryptoObjectError("A crypto object is required to generate the library state")
    library_state = LibraryStateObject(id=crypto.create_new_guid(), meta=dict(meta or {}))
    return crypto.base64_encode(library_state.to_json())


def encode_state(crypto: "CryptoProvider", user_state: Optional[str] = "", meta: Optional[Dict[str, str]] = None) -> str:
    """Build the state string for a new request, appending ``user_state`` when it is non-empty."""
    library_state = generate_library_state(crypto, meta)
    if user_state:
        return f"{library_state}{RESOURCE_DELIM}{user_state}"
    return library_state


def decode_state(crypto: "CryptoProvider", state: Optional[str]) -> RequestStateObject:
    """Split a returned state string into the library state and the caller state.

    Raises:
        NoCryptoObjectError: if no crypto object is given
        InvalidStateError: if the state is empty or its library segment cannot be decoded
    """
    if crypto is None:
        raise NoCryptoObjectError("A crypto object is required to parse the request state")
    if not state:
        raise InvalidStateError("Request state is null or empty")

    encoded_library_state, _, user_state = state.partition(RESOURCE_DELIM)
    try:
        decoded = json.loads(crypto.base64_decode(encoded_library_state))
    except Exception as e:
        raise InvalidStateError(f"Could not decode the library state: {state}") from e

    if not isinstance(decoded, dict) or not isinstance(decoded.get("id"), str) or not decoded["id"]:
        raise InvalidStateError(f"Library state has no correlation id: {state}")
    meta = decoded.get("meta")
    return RequestStateObject(
        library_state=LibraryStateObject(id=decoded["id"], meta=meta if isinstance(meta, dict) else {}),
        user_request_state=user_state,
    )


def extract_correlation_id(crypto: "CryptoProvider", state: str) -> str:
    return decode_state(crypto, state).library_state.id


def generate_nonce(crypto: "CryptoProvider") -> str:
    if crypto is None:
        raise NoCryptoObjectError("A crypto object is required to generate a nonce")
    return crypto.create_new_guid()


def validate_nonce(expected_nonce: Optional[str], returned_nonce: Optional[str]) -> None:
    """Compare nonces exactly as stored. Raises NonceMismatchError on any difference."""
    if not expected_nonce or expected_nonce != returned_nonce:
        log.warning("Nonce in the id token does not match the nonce sent with the request")
        raise NonceMismatchError("Nonce in the id token does not match the cached nonce")
