"""Per-request bookkeeping across the round trip to the authorization server.

A request writes its state, nonce, authority and pending parameters into the
temporary namespace before control leaves the process, and those entries are
removed again once the response has been handled, whatever its outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, TypeVar, Union

from webauth.cache.constants import InteractionType
from webauth.cache.errors import NoCryptoObjectError, StateMismatchError
from webauth.cache.state import decode_state, encode_state, generate_nonce, validate_nonce

if TYPE_CHECKING:
    from webauth.cache._protocols import CryptoProvider
    from webauth.cache.cache_manager import CacheManager

log = logging.getLogger(__name__)

T = TypeVar("T")

INTERACTION_TYPE_META_KEY = "interactionType"


class RequestPhase(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass
class PendingRequest:
    state: str
    correlation_id: str
    nonce: str
    interaction_type: InteractionType
    request: Dict[str, Any] = field(default_factory=dict)
    code_challenge: Optional[str] = None
    phase: RequestPhase = RequestPhase.IDLE


class RequestLifecycleManager:
    """Opens and closes the temporary-cache scope of authorization requests.

    Requests are isolated from each other by the correlation id embedded in
    their state, so several can be in flight at once.

    ``default_authority`` is cached for requests that do not name an authority, so
    their parameters pick it up again when the response is resolved.
    """

    def __init__(
        self,
        cache_manager: "CacheManager",
        crypto: Optional["CryptoProvider"] = None,
        default_authority: str = "",
    ) -> None:
        self.cache_manager = cache_manager
        self.default_authority = default_authority
        self.crypto = crypto if crypto is not None else cache_manager.crypto
        self._pending: Dict[str, PendingRequest] = {}

    def get_pending(self, correlation_id: str) -> Optional[PendingRequest]:
        return self._pending.get(correlation_id)

    def start(
        self,
        request: Dict[str, Any],
        interaction_type: Union[InteractionType, str],
        user_state: str = "",
    ) -> PendingRequest:
        """Record a new request and return the values to send with it.

        A nonce and PKCE codes are generated unless the request already carries
        ``nonce`` and ``code_verifier``.
        """
        if self.crypto is None:
            raise NoCryptoObjectError("A crypto object is required to start a request")
        interaction_type = InteractionType(interaction_type)

        state = encode_state(self.crypto, user_state, meta={INTERACTION_TYPE_META_KEY: interaction_type.value})
        correlation_id = decode_state(self.crypto, state).library_state.id
        nonce = request.get("nonce") or generate_nonce(self.crypto)

        cached_request = dict(request, state=state, nonce=nonce, correlation_id=correlation_id)
        code_challenge = request.get("code_challenge")
        if not cached_request.get("code_verifier"):
            pkce_codes = self.crypto.generate_pkce_codes()
            cached_request["code_verifier"] = pkce_codes.verifier
            code_challenge = pkce_codes.challenge

        self.cache_manager.update_cache_entries(
            state,
            nonce,
            request.get("authority") or self.default_authority,
            login_hint=request.get("login_hint"),
        )
        self.cache_manager.cache_code_request(state, cached_request)
        if interaction_type in (InteractionType.REDIRECT, InteractionType.POPUP):
            self.cache_manager.set_interaction_in_progress(True, state=state)

        pending = PendingRequest(
            state=state,
            correlation_id=correlation_id,
            nonce=nonce,
            interaction_type=interaction_type,
            request=cached_request,
            code_challenge=code_challenge,
            phase=RequestPhase.STARTED,
        )
        self._pending[correlation_id] = pending
        log.debug("Started %s request correlation_id=%s", interaction_type.value, correlation_id)
        return pending

    def await_response(self, pending: PendingRequest) -> PendingRequest:
        pending.phase = RequestPhase.AWAITING_RESPONSE
        return pending

    def resolve(self, response_state: str) -> Dict[str, Any]:
        """Match a returned state against the cached one and return the pending request.

        Raises:
            InvalidStateError: the state cannot be decoded
            StateMismatchError: no request was started with this state, or it was altered
            NoCachedRequestError: the request parameters are gone
            UnparseableCachedRequestError: the request parameters are corrupt
        """
        decode_state(self.crypto, response_state)
        cached_state = self.cache_manager.get_temporary_cache(self.cache_manager.generate_state_key(response_state))
        if not cached_state or cached_state != response_state:
            log.warning("Returned state does not match any pending request")
            raise StateMismatchError("State returned by the server does not match the cached state")
        return self.cache_manager.get_cached_request(response_state)

    def validate_nonce(self, response_state: str, id_token_nonce: Optional[str]) -> None:
        expected = self.cache_manager.get_temporary_cache(self.cache_manager.generate_nonce_key(response_state))
        validate_nonce(expected, id_token_nonce)

    def complete(self, response_state: str) -> None:
        self._finish(response_state, RequestPhase.COMPLETED)

    def fail(self, response_state: str, error: Optional[BaseException] = None) -> None:
        if error is not None:
            log.debug("Request failed: %s", error)
        self._finish(response_state, RequestPhase.FAILED)

    def _finish(self, response_state: str, phase: RequestPhase) -> None:
        correlation_id = decode_state(self.crypto, response_state).library_state.id
        self.cache_manager.reset_request_cache(response_state)
        pending = self._pending.pop(correlation_id, None)
        if pending is not None:
            pending.phase = phase
        log.debug("Request correlation_id=%s %s", correlation_id, phase.value)

    def handle_response(
        self,
        response_state: str,
        id_token_nonce: Optional[str],
        handler: Callable[[Dict[str, Any]], T],
    ) -> T:
        """Resolve the request, check the nonce, run ``handler`` and clean up whatever happens.

        ``id_token_nonce`` is skipped when None, for responses that carry no id token.
        """
        decode_state(self.crypto, response_state)
        try:
            request = self.resolve(response_state)
            if id_token_nonce is not None:
                self.validate_nonce(response_state, id_token_nonce)
            result = handler(request)
        except Exception as e:
            self.fail(response_state, e)
            raise
        self.complete(response_state)
        return result

    def abandon(self, interaction_type: Union[InteractionType, str]) -> None:
        """Drop every pending request of one interaction type, such as a redirect the user never finished."""
        interaction_type = InteractionType(interaction_type)
        self.cache_manager.clean_request_by_interaction_type(interaction_type)
        for correlation_id, pending in list(self._pending.items()):
            if pending.interaction_type == interaction_type:
                pending.phase = RequestPhase.ABANDONED
                del self._pending[correlation_id]
