"""Cache entity records, their key grammar and the guards used to admit them on read.

Every entity is persisted as a JSON object with camelCase field names. A value
read back from storage only becomes an entity if the matching ``is_*_entity``
predicate accepts it; anything else is treated as if the key were absent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from webauth.cache._clock import now_seconds
from webauth.cache.constants import (
    APP_METADATA,
    AUTHORITY_METADATA_CACHE_KEY,
    AUTHORITY_METADATA_REFRESH_TIME_SECONDS,
    CACHE_KEY_SEPARATOR,
    SERVER_TELEM_CACHE_KEY,
    THROTTLING_PREFIX,
    AuthenticationScheme,
    AuthorityType,
    CredentialType,
)
from webauth.cache.scopes import ScopeSet

log = logging.getLogger(__name__)

E = TypeVar("E", bound="CacheEntity")


def _camel(name: str) -> str:
    first, *rest = name.split("_")
    return first + "".join(part.title() for part in rest)


class CacheEntity:
    """Mixin giving dataclass entities their camelCase JSON form."""

    def to_dict(self) -> Dict[str, Any]:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls: Type[E], data: Dict[str, Any]) -> E:
        known = {_camel(f.name): f.name for f in fields(cls)}
        return cls(**{known[k]: v for k, v in data.items() if k in known})


def parse_json_object(value: Optional[str]) -> Optional[dict]:
    """Parse a stored string into a dict, or None when it is missing or not a JSON object."""
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except ValueError:
        log.debug("Cache value is not JSON, treating it as absent")
        return None
    return parsed if isinstance(parsed, dict) else None


def _has_str_fields(data: dict, *names: str) -> bool:
    return all(isinstance(data.get(name), str) for name in names)


# Key grammar


def generate_account_cache_key(home_account_id: str, environment: str, realm: str) -> str:
    return CACHE_KEY_SEPARATOR.join([home_account_id or "", environment or "", realm or ""]).lower()


def generate_credential_cache_key(
    home_account_id: str,
    environment: str,
    credential_type: Union[CredentialType, str],
    client_id: str,
    realm: Optional[str] = None,
    target: Optional[str] = None,
    family_id: Optional[str] = None,
    token_type: Optional[str] = None,
) -> str:
    """Build the key shared by every credential of the same shape.

    Slot order is fixed and empty slots stay in place, so two credentials with the
    same identity, type, realm, target and scheme always land on the same key.
    """
    credential_type = CredentialType(credential_type).value
    client_or_family_id = client_id
    if credential_type == CredentialType.REFRESH_TOKEN.value and family_id:
        client_or_family_id = family_id
    parts = [
        home_account_id or "",
        environment or "",
        credential_type,
        client_or_family_id or "",
        realm or "",
        target or "",
    ]
    if token_type and token_type.lower() != AuthenticationScheme.BEARER.value.lower():
        parts.append(token_type)
    return CACHE_KEY_SEPARATOR.join(parts).lower()


def generate_app_metadata_key(environment: str, client_id: str) -> str:
    return CACHE_KEY_SEPARATOR.join([APP_METADATA, environment, client_id]).lower()


def generate_authority_metadata_key(client_id: str, authority_host: str) -> str:
    return CACHE_KEY_SEPARATOR.join([AUTHORITY_METADATA_CACHE_KEY, client_id, authority_host]).lower()


def generate_server_telemetry_key(client_id: str) -> str:
    return CACHE_KEY_SEPARATOR.join([SERVER_TELEM_CACHE_KEY, client_id]).lower()


def credential_type_from_key(key: str) -> Optional[CredentialType]:
    """Cheap pre-filter used while enumerating keys, before any JSON is parsed."""
    lowered = key.lower()
    # Longest marker first so the scheme-bound access token isn't mistaken for a plain one.
    for credential_type in (
        CredentialType.ACCESS_TOKEN_WITH_AUTH_SCHEME,
        CredentialType.ACCESS_TOKEN,
        CredentialType.ID_TOKEN,
        CredentialType.REFRESH_TOKEN,
    ):
        if f"{CACHE_KEY_SEPARATOR}{credential_type.value.lower()}{CACHE_KEY_SEPARATOR}" in lowered:
            return credential_type
    return None


# Public account view


@dataclass
class AccountInfo:
    home_account_id: str
    environment: str
    tenant_id: str
    username: str
    local_account_id: str
    name: Optional[str] = None
    id_token_claims: Optional[dict] = None


# Accounts


@dataclass
class AccountEntity(CacheEntity):
    home_account_id: str
    environment: str
    realm: str
    local_account_id: str
    username: str
    authority_type: str = AuthorityType.DEFAULT.value
    name: Optional[str] = None
    client_info: Optional[str] = None
    last_modification_time: Optional[str] = None
    id_token_claims: Optional[dict] = None

    def generate_account_key(self) -> str:
        return generate_account_cache_key(self.home_account_id, self.environment, self.realm)

    def get_account_info(self) -> AccountInfo:
        return AccountInfo(
            home_account_id=self.home_account_id,
            environment=self.environment,
            tenant_id=self.realm,
            username=self.username,
            local_account_id=self.local_account_id,
            name=self.name,
            id_token_claims=self.id_token_claims,
        )

    @classmethod
    def create_account(
        cls,
        home_account_id: str,
        environment: str,
        id_token_claims: dict,
        *,
        client_info: Optional[str] = None,
        authority_type: str = AuthorityType.DEFAULT.value,
    ) -> "AccountEntity":
        realm = id_token_claims.get("tid", "")
        # B2C tokens carry the user id in "sub" and often no "oid".
        local_account_id = id_token_claims.get("oid") or id_token_claims.get("sub") or ""
        username = id_token_claims.get("preferred_username") or ""
        if not username:
            emails = id_token_claims.get("emails")
            username = emails[0] if isinstance(emails, list) and emails else ""
        return cls(
            home_account_id=home_account_id,
            environment=environment,
            realm=realm,
            local_account_id=local_account_id,
            username=username,
            authority_type=authority_type,
            name=id_token_claims.get("name"),
            client_info=client_info,
            last_modification_time=str(now_seconds()),
            id_token_claims=id_token_claims,
        )


def is_account_entity(data: Optional[dict]) -> bool:
    if not isinstance(data, dict):
        return False
    return _has_str_fields(data, "homeAccountId", "environment", "realm", "localAccountId", "username", "authorityType")


# Credentials


@dataclass
class CredentialEntity(CacheEntity):
    home_account_id: str
    environment: str
    credential_type: str
    client_id: str
    secret: str
    realm: Optional[str] = None
    target: Optional[str] = None
    family_id: Optional[str] = None
    cached_at: Optional[str] = None
    expires_on: Optional[str] = None
    extended_expires_on: Optional[str] = None
    refresh_on: Optional[str] = None
    token_type: Optional[str] = None
    key_id: Optional[str] = None
    user_assertion_hash: Optional[str] = None

    def generate_credential_key(self) -> str:
        return generate_credential_cache_key(
            self.home_account_id,
            self.environment,
            self.credential_type,
            self.client_id,
            self.realm,
            self.target,
            self.family_id,
            self.token_type,
        )

    def generate_account_id(self) -> str:
        return CACHE_KEY_SEPARATOR.join([self.home_account_id, self.environment]).lower()


@dataclass
class IdTokenEntity(CredentialEntity):
    @classmethod
    def create_id_token_entity(
        cls,
        home_account_id: str,
        environment: str,
        id_token: str,
        client_id: str,
        tenant_id: str,
        user_assertion_hash: Optional[str] = None,
    ) -> "IdTokenEntity":
        return cls(
            home_account_id=home_account_id,
            environment=environment,
            credential_type=CredentialType.ID_TOKEN.value,
            client_id=client_id,
            secret=id_token,
            realm=tenant_id,
            user_assertion_hash=user_assertion_hash,
        )


def is_id_token_entity(data: Optional[dict]) -> bool:
    if not isinstance(data, dict):
        return False
    return (
        _has_str_fields(data, "homeAccountId", "environment", "credentialType", "realm", "clientId", "secret")
        and data["credentialType"] == CredentialType.ID_TOKEN.value
    )


@dataclass
class AccessTokenEntity(CredentialEntity):
    @classmethod
    def create_access_token_entity(
        cls,
        home_account_id: str,
        environment: str,
        access_token: str,
        client_id: str,
        tenant_id: str,
        scopes: Union[str, List[str], ScopeSet],
        expires_on: int,
        ext_expires_on: int,
        refresh_on: Optional[int] = None,
        token_type: str = AuthenticationScheme.BEARER.value,
        user_assertion_hash: Optional[str] = None,
        key_id: Optional[str] = None,
    ) -> "AccessTokenEntity":
        """Build an access token entity. ``expires_on``/``ext_expires_on``/``refresh_on`` are absolute epoch seconds."""
        scope_set = scopes if isinstance(scopes, ScopeSet) else ScopeSet.create(scopes)
        is_bearer = (token_type or AuthenticationScheme.BEARER.value).lower() == AuthenticationScheme.BEARER.value.lower()
        return cls(
            home_account_id=home_account_id,
            environment=environment,
            credential_type=(
                CredentialType.ACCESS_TOKEN.value if is_bearer else CredentialType.ACCESS_TOKEN_WITH_AUTH_SCHEME.value
            ),
            client_id=client_id,
            secret=access_token,
            realm=tenant_id,
            target=scope_set.print_scopes(),
            cached_at=str(now_seconds()),
            expires_on=str(int(expires_on)),
            extended_expires_on=str(int(ext_expires_on)),
            refresh_on=str(int(refresh_on)) if refresh_on is not None else None,
            token_type=token_type,
            key_id=key_id if not is_bearer else None,
            user_assertion_hash=user_assertion_hash,
        )

    @property
    def scope_set(self) -> ScopeSet:
        return ScopeSet.from_string(self.target or "")

    def remaining_lifetime(self, now: Optional[int] = None) -> int:
        now = now_seconds() if now is None else now
        return int(self.expires_on or 0) - now

    def is_expired(self, offset_seconds: int = 0, now: Optional[int] = None) -> bool:
        """A token expiring exactly at ``now + offset_seconds`` counts as expired."""
        return self.remaining_lifetime(now) <= offset_seconds

    def should_refresh(self, now: Optional[int] = None) -> bool:
        if not self.refresh_on:
            return False
        now = now_seconds() if now is None else now
        return int(self.refresh_on) <= now


def is_access_token_entity(data: Optional[dict]) -> bool:
    if not isinstance(data, dict):
        return False
    if not _has_str_fields(
        data, "homeAccountId", "environment", "credentialType", "realm", "clientId", "secret", "target"
    ):
        return False
    if data["credentialType"] not in (
        CredentialType.ACCESS_TOKEN.value,
        CredentialType.ACCESS_TOKEN_WITH_AUTH_SCHEME.value,
    ):
        return False
    try:
        int(data.get("expiresOn"))
    except (TypeError, ValueError):
        return False
    return True


@dataclass
class RefreshTokenEntity(CredentialEntity):
    @classmethod
    def create_refresh_token_entity(
        cls,
        home_account_id: str,
        environment: str,
        refresh_token: str,
        client_id: str,
        family_id: Optional[str] = None,
        user_assertion_hash: Optional[str] = None,
    ) -> "RefreshTokenEntity":
        return cls(
            home_account_id=home_account_id,
            environment=environment,
            credential_type=CredentialType.REFRESH_TOKEN.value,
            client_id=client_id,
            secret=refresh_token,
            family_id=family_id,
            user_assertion_hash=user_assertion_hash,
        )


def is_refresh_token_entity(data: Optional[dict]) -> bool:
    if not isinstance(data, dict):
        return False
    return (
        _has_str_fields(data, "homeAccountId", "environment", "credentialType", "clientId", "secret")
        and data["credentialType"] == CredentialType.REFRESH_TOKEN.value
    )


# App and authority metadata


@dataclass
class AppMetadataEntity(CacheEntity):
    client_id: str
    environment: str
    family_id: Optional[str] = None

    def generate_app_metadata_key(self) -> str:
        return generate_app_metadata_key(self.environment, self.client_id)


def is_app_metadata_entity(key: str, data: Optional[dict]) -> bool:
    if not isinstance(data, dict) or not key:
        return False
    return APP_METADATA in key.lower() and _has_str_fields(data, "clientId", "environment")


@dataclass
class AuthorityMetadataEntity(CacheEntity):
    aliases: List[str] = field(default_factory=list)
    preferred_cache: str = ""
    preferred_network: str = ""
    canonical_authority: str = ""
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    end_session_endpoint: Optional[str] = None
    issuer: str = ""
    aliases_from_network: bool = False
    endpoints_from_network: bool = False
    expires_at: int = field(default_factory=lambda: now_seconds() + AUTHORITY_METADATA_REFRESH_TIME_SECONDS)

    def update_canonical_authority(self, authority: str) -> None:
        self.canonical_authority = authority

    def reset_expires_at(self) -> None:
        self.expires_at = now_seconds() + AUTHORITY_METADATA_REFRESH_TIME_SECONDS

    def is_expired(self) -> bool:
        return self.expires_at <= now_seconds()

    def update_endpoint_metadata(self, metadata: dict, from_network: bool) -> None:
        self.authorization_endpoint = metadata["authorization_endpoint"]
        self.token_endpoint = metadata["token_endpoint"]
        self.end_session_endpoint = metadata.get("end_session_endpoint")
        self.issuer = metadata["issuer"]
        self.endpoints_from_network = from_network

    def update_cloud_discovery_metadata(self, metadata: dict, from_network: bool) -> None:
        self.aliases = list(metadata["aliases"])
        self.preferred_cache = metadata["preferred_cache"]
        self.preferred_network = metadata["preferred_network"]
        self.aliases_from_network = from_network


def is_authority_metadata_entity(key: str, entity: Any) -> bool:
    if not key or not key.startswith(AUTHORITY_METADATA_CACHE_KEY):
        return False
    if not isinstance(entity, AuthorityMetadataEntity):
        return False
    return isinstance(entity.aliases, list) and bool(entity.canonical_authority) and bool(entity.token_endpoint)


# Telemetry and throttling


@dataclass
class ServerTelemetryEntity(CacheEntity):
    # Flat list of (apiId, correlationId) pairs, one pair per recorded error.
    failed_requests: List[Union[int, str]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cache_hits: int = 0


def is_server_telemetry_entity(key: str, data: Optional[dict]) -> bool:
    if not isinstance(data, dict) or not key or not key.startswith(SERVER_TELEM_CACHE_KEY):
        return False
    return (
        isinstance(data.get("failedRequests"), list)
        and isinstance(data.get("errors"), list)
        and isinstance(data.get("cacheHits"), int)
    )


@dataclass
class ThrottlingEntity(CacheEntity):
    throttle_time: int
    error: Optional[str] = None
    error_codes: Optional[List[str]] = None
    error_message: Optional[str] = None
    sub_error: Optional[str] = None


def is_throttling_entity(key: str, data: Optional[dict]) -> bool:
    if not isinstance(data, dict) or not key or not key.startswith(THROTTLING_PREFIX):
        return False
    return isinstance(data.get("throttleTime"), int)


@dataclass
class CredentialCache:
    id_tokens: Dict[str, IdTokenEntity] = field(default_factory=dict)
    access_tokens: Dict[str, AccessTokenEntity] = field(default_factory=dict)
    refresh_tokens: Dict[str, RefreshTokenEntity] = field(default_factory=dict)
