"""Turn token endpoint responses into cache entities."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from webauth.cache._clock import now_seconds
from webauth.cache.constants import AuthenticationScheme, AuthorityType
from webauth.cache.entities import (
    AccessTokenEntity,
    AccountEntity,
    AccountInfo,
    AppMetadataEntity,
    IdTokenEntity,
    RefreshTokenEntity,
)
from webauth.cache.errors import InvalidStateError, ServerError, StateMismatchError
from webauth.cache.scopes import ScopeSet
from webauth.cache.state import validate_nonce

if TYPE_CHECKING:
    from webauth.cache._protocols import CryptoProvider
    from webauth.cache.cache_manager import CacheManager

log = logging.getLogger(__name__)


@dataclass
class AuthenticationResult:
    authority: str
    unique_id: str
    tenant_id: str
    scopes: List[str]
    account: Optional[AccountInfo]
    id_token: str
    id_token_claims: Dict[str, Any]
    access_token: str
    expires_on: Optional[int]
    ext_expires_on: Optional[int] = None
    token_type: str = AuthenticationScheme.BEARER.value
    correlation_id: str = ""
    state: str = ""
    family_id: Optional[str] = None
    from_cache: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


def _b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def decode_id_token_claims(id_token: str) -> Dict[str, Any]:
    """Return the payload of a JWT without verifying it; signature checks belong to the network layer."""
    try:
        payload = id_token.split(".")[1]
        claims = json.loads(_b64url_decode(payload))
    except (IndexError, ValueError) as e:
        raise ServerError("invalid_id_token", "Could not decode the id token payload") from e
    if not isinstance(claims, dict):
        raise ServerError("invalid_id_token", "Id token payload is not a JSON object")
    return claims


def build_home_account_id(client_info: Optional[str], id_token_claims: Dict[str, Any], authority_type: str) -> str:
    """``uid.utid`` from client info when the authority sends it, otherwise the subject claim."""
    if client_info and authority_type != AuthorityType.ADFS.value:
        try:
            decoded = json.loads(_b64url_decode(client_info))
            return f"{decoded['uid']}.{decoded['utid']}"
        except (KeyError, TypeError, ValueError):
            log.debug("Client info could not be parsed, using the sub claim as home account id")
    return id_token_claims.get("sub", "")


def _response_body(response: Any) -> Dict[str, Any]:
    body = response if isinstance(response, dict) else response.json()
    if not isinstance(body, dict):
        raise ServerError("invalid_response", "Token response is not a JSON object")
    return body


def _raise_for_error(body: Dict[str, Any]) -> None:
    if body.get("error") or body.get("error_description") or body.get("suberror"):
        raise ServerError(body.get("error", ""), body.get("error_description", ""), body.get("suberror"))


class ResponseHandler:
    def __init__(
        self, client_id: str, cache_manager: "CacheManager", crypto: Optional["CryptoProvider"] = None
    ) -> None:
        self.client_id = client_id
        self.cache_manager = cache_manager
        self.crypto = crypto if crypto is not None else cache_manager.crypto

    def validate_server_response(self, state_sent: str, response: Any) -> Dict[str, Any]:
        """Check the state echoed by an authorization response, then any server error it carries.

        Raises:
            InvalidStateError: either state is missing
            StateMismatchError: the returned state differs from the one sent
            ServerError: the response is an error response
        """
        body = _response_body(response)
        returned_state = body.get("state")
        if not returned_state or not state_sent:
            raise InvalidStateError("State was not found in the request or the response")
        if unquote(returned_state) != unquote(state_sent):
            log.warning("State in the server response does not match the state sent")
            raise StateMismatchError("State returned by the server does not match the state sent")
        _raise_for_error(body)
        return body

    def handle_token_response(
        self,
        response: Any,
        request: Dict[str, Any],
        authority: str,
        nonce: Optional[str] = None,
        authority_type: str = AuthorityType.DEFAULT.value,
    ) -> AuthenticationResult:
        """Persist the entities carried by a token response and return the result handed to the caller."""
        body = _response_body(response)
        _raise_for_error(body)

        id_token = body.get("id_token", "")
        claims = decode_id_token_claims(id_token) if id_token else {}
        if nonce is not None and id_token:
            validate_nonce(nonce, claims.get("nonce"))

        environment = urlparse(authority).netloc or authority
        home_account_id = build_home_account_id(body.get("client_info"), claims, authority_type)
        tenant_id = claims.get("tid", "")
        family_id = body.get("foci")

        account: Optional[AccountEntity] = None
        if id_token:
            account = AccountEntity.create_account(
                home_account_id,
                environment,
                claims,
                client_info=body.get("client_info"),
                authority_type=authority_type,
            )
            self.cache_manager.set_account(account)
            self.cache_manager.set_id_token_credential(
                IdTokenEntity.create_id_token_entity(home_account_id, environment, id_token, self.client_id, tenant_id)
            )

        scopes = ScopeSet.from_string(body["scope"]) if body.get("scope") else ScopeSet.create(request.get("scopes"))
        token_type = body.get("token_type") or AuthenticationScheme.BEARER.value
        access_token = body.get("access_token", "")
        expires_on = ext_expires_on = None
        if access_token:
            now = now_seconds()
            expires_in = int(body.get("expires_in", 0))
            expires_on = now + expires_in
            ext_expires_on = now + int(body.get("ext_expires_in", expires_in))
            refresh_on = now + int(body["refresh_in"]) if body.get("refresh_in") else None
            self.cache_manager.set_access_token_credential(
                AccessTokenEntity.create_access_token_entity(
                    home_account_id,
                    environment,
                    access_token,
                    self.client_id,
                    tenant_id,
                    scopes,
                    expires_on,
                    ext_expires_on,
                    refresh_on=refresh_on,
                    token_type=token_type,
                    key_id=request.get("key_id"),
                )
            )

        if body.get("refresh_token"):
            self.cache_manager.set_refresh_token_credential(
                RefreshTokenEntity.create_refresh_token_entity(
                    home_account_id, environment, body["refresh_token"], self.client_id, family_id
                )
            )

        self.cache_manager.set_app_metadata(
            AppMetadataEntity(client_id=self.client_id, environment=environment, family_id=family_id)
        )

        if access_token and token_type.lower() == AuthenticationScheme.POP.value and request.get("key_id"):
            access_token = self._sign_pop_token(access_token, request)

        return AuthenticationResult(
            authority=authority,
            unique_id=claims.get("oid") or claims.get("sub", ""),
            tenant_id=tenant_id,
            scopes=scopes.as_list(),
            account=account.get_account_info() if account else None,
            id_token=id_token,
            id_token_claims=claims,
            access_token=access_token,
            expires_on=expires_on,
            ext_expires_on=ext_expires_on,
            token_type=token_type,
            correlation_id=request.get("correlation_id", ""),
            state=request.get("state", ""),
            family_id=family_id,
        )

    def _sign_pop_token(self, access_token: str, request: Dict[str, Any]) -> str:
        """Bind the access token to the request's PoP key, as a JWS the resource server can verify."""
        resource_url = urlparse(request.get("resource_request_uri", ""))
        payload = {
            "at": access_token,
            "ts": now_seconds(),
            "m": request.get("resource_request_method"),
            "u": resource_url.netloc or None,
            "p": resource_url.path or None,
            "nonce": self.crypto.create_new_guid(),
        }
        return self.crypto.sign_jwt({k: v for k, v in payload.items() if v is not None}, request["key_id"])
