"""Exception types raised by the cache and protocol-state layers.

Storage unavailability and unrecognised cache entries are deliberately absent:
the former degrades to memory storage and the latter to a cache miss.
"""

from __future__ import annotations

from typing import Optional


class AuthCacheError(Exception):
    """Base class carrying a stable ``error_code`` alongside the message."""

    error_code = "unknown_error"

    def __init__(self, error_message: str = "", error_code: Optional[str] = None) -> None:
        if error_code is not None:
            self.error_code = error_code
        self.error_message = error_message
        super().__init__(f"{self.error_code}: {error_message}" if error_message else self.error_code)


class ClientAuthError(AuthCacheError):
    """Raised for failures detected on the client side of a flow."""


class InvalidStateError(ClientAuthError):
    error_code = "invalid_state"


class StateMismatchError(ClientAuthError):
    error_code = "state_mismatch"


class NonceMismatchError(ClientAuthError):
    error_code = "nonce_mismatch"


class NoCachedRequestError(ClientAuthError):
    error_code = "no_token_request_cache_error"


class UnparseableCachedRequestError(ClientAuthError):
    error_code = "unable_to_parse_token_request_cache_error"


class NoCryptoObjectError(ClientAuthError):
    error_code = "no_crypto_object"


class ThrottledRequestError(ClientAuthError):
    """Raised instead of issuing a network call while a request shape is throttled."""

    error_code = "request_throttled"

    def __init__(self, error_message: str = "", throttle_time: int = 0, error_codes=None) -> None:
        super().__init__(error_message)
        self.throttle_time = throttle_time
        self.error_codes = list(error_codes or [])


class ServerError(AuthCacheError):
    """Error returned by the authorization server, as found in a response."""

    def __init__(self, error_code: str, error_message: str = "", sub_error: Optional[str] = None) -> None:
        super().__init__(error_message, error_code=error_code)
        self.sub_error = sub_error
