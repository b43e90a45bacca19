"""Cache manager: the only component that knows how entities map onto storage keys.

Two storages are in play. Entities live in the configured location. Temporary,
per-request entries live in session storage when the configured location is
durable or session scoped, and in memory otherwise, so that an abandoned flow
never outlives the user's session.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from requests.cookies import RequestsCookieJar

from webauth.cache import CACHE_PREFIX
from webauth.cache._clock import now_seconds
from webauth.cache.config import DURABLE_LOCATIONS, CacheLocation, CacheOptions
from webauth.cache.constants import (
    INTERACTION_IN_PROGRESS_VALUE,
    AuthenticationScheme,
    CredentialType,
    InteractionType,
    PersistentCacheKeys,
    TemporaryCacheKeys,
)
from webauth.cache.entities import (
    AccessTokenEntity,
    AccountEntity,
    AccountInfo,
    AppMetadataEntity,
    AuthorityMetadataEntity,
    CredentialCache,
    CredentialEntity,
    IdTokenEntity,
    RefreshTokenEntity,
    ServerTelemetryEntity,
    ThrottlingEntity,
    credential_type_from_key,
    generate_app_metadata_key,
    is_access_token_entity,
    is_account_entity,
    is_app_metadata_entity,
    is_authority_metadata_entity,
    is_id_token_entity,
    is_refresh_token_entity,
    is_server_telemetry_entity,
    is_throttling_entity,
    parse_json_object,
)
from webauth.cache.errors import NoCachedRequestError, UnparseableCachedRequestError
from webauth.cache.internal.cookies import CookieMirror
from webauth.cache.internal.storage import MemoryStorage, StorageBackend, create_storage
from webauth.cache.scopes import ScopeSet
from webauth.cache.state import decode_state

if TYPE_CHECKING:
    from webauth.cache._protocols import CryptoProvider

log = logging.getLogger(__name__)

_ENTITY_PREFIX = f"{CACHE_PREFIX}."


class CacheManager:
    def __init__(
        self,
        client_id: str,
        options: Optional[CacheOptions] = None,
        crypto: Optional["CryptoProvider"] = None,
        *,
        cookie_jar: Optional[RequestsCookieJar] = None,
    ) -> None:
        self.client_id = client_id
        self.options = options or CacheOptions()
        self.crypto = crypto
        self.browser_storage = create_storage(
            self.options.cache_location,
            cache_path=self.options.cache_path,
            session_cache_path=self.options.session_cache_path,
        )
        self.temporary_cache_storage = self._setup_temporary_cache_storage()
        self.cookies: Optional[CookieMirror] = None
        if self.options.store_auth_state_in_cookie:
            self.cookies = CookieMirror(
                f"{CACHE_PREFIX}.{client_id}",
                cookie_jar,
                secure=self.options.secure_cookies,
                cookie_life_days=self.options.cookie_life_days,
            )
        # Endpoint metadata is re-resolved every session, so it never reaches the storage backends.
        self._authority_metadata: Dict[str, AuthorityMetadataEntity] = {}
        self._migrate_cache_entries()

    def _setup_temporary_cache_storage(self) -> StorageBackend:
        if self.options.cache_location in DURABLE_LOCATIONS:
            return create_storage(CacheLocation.SESSION, session_cache_path=self.options.session_cache_path)
        if self.options.cache_location == CacheLocation.SESSION and not isinstance(
            self.browser_storage, MemoryStorage
        ):
            return self.browser_storage
        return MemoryStorage()

    @property
    def uses_durable_storage(self) -> bool:
        return self.options.cache_location in DURABLE_LOCATIONS and not isinstance(
            self.browser_storage, MemoryStorage
        )

    def _migrate_cache_entries(self) -> None:
        """Copy values written by the single-account cache format into the temporary namespace.

        The legacy keys are left in place so an older library version sharing the storage keeps working.
        """
        for legacy_key in PersistentCacheKeys:
            value = self.browser_storage.get_item(f"{CACHE_PREFIX}.{legacy_key.value}")
            if value is None:
                continue
            log.info("Migrating legacy cache entry %s", legacy_key.value)
            self.set_temporary_cache(legacy_key.value, value, generate_key=True)

    # Raw item access

    def set_item(self, key: str, value: str) -> None:
        self.browser_storage.set_item(key, value)

    def get_item(self, key: str) -> Optional[str]:
        return self.browser_storage.get_item(key)

    def remove_item(self, key: str) -> None:
        self.browser_storage.remove_item(key)
        self.temporary_cache_storage.remove_item(key)
        if self.cookies is not None:
            self.cookies.clear_item_cookie(key)

    def contains_key(self, key: str) -> bool:
        return self.browser_storage.contains_key(key) or self.temporary_cache_storage.contains_key(key)

    def get_keys(self) -> List[str]:
        """Every library-owned key across both storages. Host keys sharing the medium are not listed."""
        keys = [k for k in self.browser_storage.get_keys() if k.startswith(_ENTITY_PREFIX)]
        if self.temporary_cache_storage is not self.browser_storage:
            keys.extend(
                k
                for k in self.temporary_cache_storage.get_keys()
                if k.startswith(_ENTITY_PREFIX) and k not in keys
            )
        return keys

    def clear(self) -> None:
        """Remove every library-prefixed entry, the cookie mirror and the authority metadata map."""
        for key in self.browser_storage.get_keys():
            if key.startswith(_ENTITY_PREFIX):
                self.browser_storage.remove_item(key)
        if self.temporary_cache_storage is not self.browser_storage:
            for key in self.temporary_cache_storage.get_keys():
                if key.startswith(_ENTITY_PREFIX):
                    self.temporary_cache_storage.remove_item(key)
        if self.cookies is not None:
            self.cookies.clear_namespace_cookies()
        self._authority_metadata.clear()
        log.debug("Cleared all cache entries for client_id=%s", self.client_id)

    # Entity keys

    @staticmethod
    def entity_storage_key(key: str) -> str:
        return key if key.startswith(_ENTITY_PREFIX) else f"{_ENTITY_PREFIX}{key}"

    @staticmethod
    def _strip_prefix(key: str) -> str:
        return key[len(_ENTITY_PREFIX) :] if key.startswith(_ENTITY_PREFIX) else key

    def _get_json(self, key: str) -> Optional[dict]:
        return parse_json_object(self.get_item(self.entity_storage_key(key)))

    def _set_entity(self, key: str, entity) -> None:
        self.set_item(self.entity_storage_key(key), entity.to_json())

    # Accounts

    def get_account(self, account_key: str) -> Optional[AccountEntity]:
        data = self._get_json(account_key)
        if not is_account_entity(data):
            return None
        return AccountEntity.from_dict(data)

    def set_account(self, account: AccountEntity) -> None:
        self._set_entity(account.generate_account_key(), account)

    def get_accounts_filtered_by(
        self,
        home_account_id: Optional[str] = None,
        environment: Optional[str] = None,
        realm: Optional[str] = None,
    ) -> Dict[str, AccountEntity]:
        """Return every cached account matching all of the given criteria, keyed by storage key."""
        matches: Dict[str, AccountEntity] = {}
        for key in self.browser_storage.get_keys():
            if not key.startswith(_ENTITY_PREFIX):
                continue
            account = self.get_account(key)
            if account is None:
                continue
            if home_account_id and account.home_account_id.lower() != home_account_id.lower():
                continue
            if environment and account.environment.lower() != environment.lower():
                continue
            if realm and account.realm.lower() != realm.lower():
                continue
            matches[key] = account
        return matches

    def get_all_accounts(self) -> List[AccountInfo]:
        return [account.get_account_info() for account in self.get_accounts_filtered_by().values()]

    def remove_account(self, home_account_id: str) -> None:
        """Remove every account with this home account id and every credential bound to it."""
        removed = 0
        for key in list(self.get_accounts_filtered_by(home_account_id=home_account_id)):
            self.browser_storage.remove_item(key)
            removed += 1
        credentials = self.get_credentials_filtered_by(home_account_id=home_account_id)
        for credential_map in (credentials.id_tokens, credentials.access_tokens, credentials.refresh_tokens):
            for key in credential_map:
                self.browser_storage.remove_item(key)
                removed += 1
        log.info("Removed %d cache entries for account", removed)

    def remove_all_accounts(self) -> None:
        for account in list(self.get_accounts_filtered_by().values()):
            self.remove_account(account.home_account_id)

    # Credentials

    def get_id_token_credential(self, key: str) -> Optional[IdTokenEntity]:
        data = self._get_json(key)
        if not is_id_token_entity(data):
            return None
        return IdTokenEntity.from_dict(data)

    def set_id_token_credential(self, id_token: IdTokenEntity) -> None:
        self._set_entity(id_token.generate_credential_key(), id_token)

    def get_access_token_credential(self, key: str) -> Optional[AccessTokenEntity]:
        data = self._get_json(key)
        if not is_access_token_entity(data):
            return None
        return AccessTokenEntity.from_dict(data)

    def set_access_token_credential(self, access_token: AccessTokenEntity) -> None:
        self._set_entity(access_token.generate_credential_key(), access_token)

    def get_refresh_token_credential(self, key: str) -> Optional[RefreshTokenEntity]:
        data = self._get_json(key)
        if not is_refresh_token_entity(data):
            return None
        return RefreshTokenEntity.from_dict(data)

    def set_refresh_token_credential(self, refresh_token: RefreshTokenEntity) -> None:
        self._set_entity(refresh_token.generate_credential_key(), refresh_token)

    def remove_credential(self, credential: CredentialEntity) -> None:
        self.browser_storage.remove_item(self.entity_storage_key(credential.generate_credential_key()))

    def get_credentials_filtered_by(
        self,
        home_account_id: Optional[str] = None,
        environment: Optional[str] = None,
        credential_type: Optional[Union[CredentialType, str]] = None,
        client_id: Optional[str] = None,
        family_id: Optional[str] = None,
        realm: Optional[str] = None,
        target: Optional[ScopeSet] = None,
        token_type: Optional[str] = None,
        key_id: Optional[str] = None,
    ) -> CredentialCache:
        """Enumerate credentials, parsing each key at most once. Unparseable entries are skipped."""
        wanted_type = CredentialType(credential_type) if credential_type else None
        result = CredentialCache()
        for key in self.browser_storage.get_keys():
            if not key.startswith(_ENTITY_PREFIX):
                continue
            key_type = credential_type_from_key(key)
            if key_type is None or (wanted_type and key_type != wanted_type):
                continue
            if key_type == CredentialType.ID_TOKEN:
                credential = self.get_id_token_credential(key)
            elif key_type == CredentialType.REFRESH_TOKEN:
                credential = self.get_refresh_token_credential(key)
            else:
                credential = self.get_access_token_credential(key)
            if credential is None:
                continue
            if home_account_id and credential.home_account_id.lower() != home_account_id.lower():
                continue
            if environment and credential.environment.lower() != environment.lower():
                continue
            if client_id and credential.client_id != client_id:
                continue
            if family_id and credential.family_id != family_id:
                continue
            if realm and (credential.realm or "").lower() != realm.lower():
                continue
            if target is not None and not ScopeSet.from_string(credential.target or "").contains_scope_set(target):
                continue
            if token_type and (credential.token_type or AuthenticationScheme.BEARER.value).lower() != token_type.lower():
                continue
            if key_id and credential.key_id != key_id:
                continue

            if isinstance(credential, IdTokenEntity):
                result.id_tokens[key] = credential
            elif isinstance(credential, RefreshTokenEntity):
                result.refresh_tokens[key] = credential
            else:
                result.access_tokens[key] = credential
        return result

    def read_access_token(
        self,
        client_id: str,
        account: AccountInfo,
        scopes: Union[ScopeSet, List[str], str],
        authentication_scheme: str = AuthenticationScheme.BEARER.value,
        *,
        realm: Optional[str] = None,
        key_id: Optional[str] = None,
        offset_seconds: Optional[int] = None,
    ) -> Optional[AccessTokenEntity]:
        """Select the cached access token that satisfies a request, or None when a network call is needed.

        Candidates must match client, account, realm and scheme, cover every requested
        scope and outlive ``now + offset_seconds``. Among several, an exact scope match
        wins, then the longest remaining lifetime, then the narrowest target.
        """
        requested = scopes if isinstance(scopes, ScopeSet) else ScopeSet.create(scopes)
        offset = self.options.token_renewal_offset_seconds if offset_seconds is None else offset_seconds
        is_bearer = authentication_scheme.lower() == AuthenticationScheme.BEARER.value.lower()
        credentials = self.get_credentials_filtered_by(
            home_account_id=account.home_account_id,
            environment=account.environment,
            credential_type=(
                CredentialType.ACCESS_TOKEN if is_bearer else CredentialType.ACCESS_TOKEN_WITH_AUTH_SCHEME
            ),
            client_id=client_id,
            realm=realm or account.tenant_id,
            target=requested,
            token_type=authentication_scheme,
            key_id=key_id,
        )
        now = now_seconds()
        candidates = [
            (key, token) for key, token in credentials.access_tokens.items() if not token.is_expired(offset, now)
        ]
        if not candidates:
            log.debug("No cached access token satisfies the request")
            return None

        def rank(item):
            key, token = item
            return (token.scope_set != requested, -token.remaining_lifetime(now), len(token.scope_set), key)

        key, token = min(candidates, key=rank)
        log.debug("Using cached access token key=%s", key)
        return token

    def read_id_token(self, client_id: str, account: AccountInfo) -> Optional[IdTokenEntity]:
        id_tokens = self.get_credentials_filtered_by(
            home_account_id=account.home_account_id,
            environment=account.environment,
            credential_type=CredentialType.ID_TOKEN,
            client_id=client_id,
            realm=account.tenant_id,
        ).id_tokens
        if len(id_tokens) > 1:
            log.debug("Multiple id tokens match the account, using the first")
        return next(iter(id_tokens.values()), None)

    def read_refresh_token(
        self, client_id: str, account: AccountInfo, family: bool = False
    ) -> Optional[RefreshTokenEntity]:
        """Return the account's refresh token; with ``family`` only a family (FOCI) token qualifies."""
        refresh_tokens = self.get_credentials_filtered_by(
            home_account_id=account.home_account_id,
            environment=account.environment,
            credential_type=CredentialType.REFRESH_TOKEN,
            client_id=None if family else client_id,
            family_id="1" if family else None,
        ).refresh_tokens
        return next(iter(refresh_tokens.values()), None)

    # App metadata

    def get_app_metadata(self, key: str) -> Optional[AppMetadataEntity]:
        data = self._get_json(key)
        if not is_app_metadata_entity(self._strip_prefix(key), data):
            return None
        return AppMetadataEntity.from_dict(data)

    def set_app_metadata(self, app_metadata: AppMetadataEntity) -> None:
        self._set_entity(app_metadata.generate_app_metadata_key(), app_metadata)

    def read_app_metadata(self, environment: str, client_id: str) -> Optional[AppMetadataEntity]:
        return self.get_app_metadata(generate_app_metadata_key(environment, client_id))

    def is_app_metadata_foci(self, environment: str, client_id: str) -> bool:
        app_metadata = self.read_app_metadata(environment, client_id)
        return bool(app_metadata and app_metadata.family_id)

    def remove_app_metadata(self) -> None:
        for key in self.browser_storage.get_keys():
            if key.startswith(_ENTITY_PREFIX) and self.get_app_metadata(key) is not None:
                self.browser_storage.remove_item(key)

    # Server telemetry and throttling

    def get_server_telemetry(self, key: str) -> Optional[ServerTelemetryEntity]:
        data = self._get_json(key)
        if not is_server_telemetry_entity(self._strip_prefix(key), data):
            return None
        return ServerTelemetryEntity.from_dict(data)

    def set_server_telemetry(self, key: str, value: ServerTelemetryEntity) -> None:
        self._set_entity(key, value)

    def get_throttling_cache(self, key: str) -> Optional[ThrottlingEntity]:
        data = self._get_json(key)
        if not is_throttling_entity(self._strip_prefix(key), data):
            return None
        return ThrottlingEntity.from_dict(data)

    def set_throttling_cache(self, key: str, value: ThrottlingEntity) -> None:
        self._set_entity(key, value)

    # Authority metadata, memory only

    def get_authority_metadata(self, key: str) -> Optional[AuthorityMetadataEntity]:
        value = self._authority_metadata.get(key)
        if value is None or not is_authority_metadata_entity(key, value):
            return None
        return value

    def set_authority_metadata(self, key: str, entity: AuthorityMetadataEntity) -> None:
        self._authority_metadata[key] = entity

    def get_authority_metadata_keys(self) -> List[str]:
        return list(self._authority_metadata)

    # Temporary cache

    def generate_cache_key(self, key: str) -> str:
        if key.startswith(_ENTITY_PREFIX):
            return key
        return f"{CACHE_PREFIX}.{self.client_id}.{key}"

    def set_temporary_cache(self, cache_key: str, value: str, generate_key: bool = False) -> None:
        key = self.generate_cache_key(cache_key) if generate_key else cache_key
        self.temporary_cache_storage.set_item(key, value)
        if self.cookies is not None:
            log.debug("Mirroring temporary cache key=%s to cookie", key)
            self.cookies.set_item_cookie(key, value)

    def get_temporary_cache(self, cache_key: str, generate_key: bool = False) -> Optional[str]:
        """Look a temporary value up in the cookie mirror, then temporary storage, then durable storage."""
        key = self.generate_cache_key(cache_key) if generate_key else cache_key
        if self.cookies is not None:
            cookie_value = self.cookies.get_item_cookie(key)
            if cookie_value:
                return cookie_value

        value = self.temporary_cache_storage.get_item(key)
        if value is None and self.uses_durable_storage:
            value = self.browser_storage.get_item(key)
            if value is not None:
                log.debug("Temporary cache key=%s found in durable storage, copying it to temporary storage", key)
                self.temporary_cache_storage.set_item(key, value)
        return value

    def _library_state_id(self, state: str) -> str:
        return decode_state(self.crypto, state).library_state.id

    def generate_state_key(self, state: str) -> str:
        return self.generate_cache_key(f"{TemporaryCacheKeys.REQUEST_STATE.value}.{self._library_state_id(state)}")

    def generate_nonce_key(self, state: str) -> str:
        return self.generate_cache_key(f"{TemporaryCacheKeys.NONCE_IDTOKEN.value}.{self._library_state_id(state)}")

    def generate_authority_key(self, state: str) -> str:
        return self.generate_cache_key(f"{TemporaryCacheKeys.AUTHORITY.value}.{self._library_state_id(state)}")

    def generate_request_params_key(self, state: str) -> str:
        return self.generate_cache_key(
            f"{TemporaryCacheKeys.REQUEST_PARAMS.value}.{self._library_state_id(state)}"
        )

    def update_cache_entries(
        self,
        state: str,
        nonce: str,
        authority: str,
        login_hint: Optional[str] = None,
        account: Optional[AccountInfo] = None,
    ) -> None:
        """Record the state, nonce and authority of a request that is about to leave the process.

        The per-client ``acquireToken.account`` entry is only written while no interactive
        request holds the interaction.
        """
        self.set_temporary_cache(self.generate_state_key(state), state)
        self.set_temporary_cache(self.generate_nonce_key(state), nonce)
        self.set_temporary_cache(self.generate_authority_key(state), authority)
        if account is None and not login_hint:
            return
        if self.get_interaction_holders():
            log.debug("An interaction is in progress, not replacing its account hint")
            return
        if account is not None:
            self.set_temporary_cache(
                self.generate_cache_key(TemporaryCacheKeys.ACQUIRE_TOKEN_ACCOUNT.value),
                json.dumps(asdict(account)),
            )
        else:
            self.set_temporary_cache(
                self.generate_cache_key(TemporaryCacheKeys.ACQUIRE_TOKEN_ACCOUNT.value),
                json.dumps({"username": login_hint}),
            )

    def get_interaction_holders(self) -> List[str]:
        """Correlation ids of the interactive requests that marked the interaction in progress."""
        stored = self.temporary_cache_storage.get_item(
            self.generate_cache_key(TemporaryCacheKeys.INTERACTION_HOLDERS.value)
        )
        if not stored:
            return []
        try:
            holders = json.loads(stored)
        except ValueError:
            log.debug("Interaction holder list is corrupt, ignoring it")
            return []
        return [h for h in holders if isinstance(h, str)] if isinstance(holders, list) else []

    def _set_interaction_holders(self, holders: List[str]) -> None:
        self.set_temporary_cache(
            self.generate_cache_key(TemporaryCacheKeys.INTERACTION_HOLDERS.value), json.dumps(holders)
        )

    def reset_request_cache(self, state: str) -> None:
        """Remove every temporary entry belonging to ``state``.

        The per-client flow singletons and the interaction status are removed too, unless
        another interactive request still holds the interaction.
        """
        self.remove_item(self.generate_state_key(state))
        self.remove_item(self.generate_nonce_key(state))
        self.remove_item(self.generate_authority_key(state))
        self.remove_item(self.generate_request_params_key(state))

        holders = self.get_interaction_holders()
        correlation_id = self._library_state_id(state)
        if correlation_id in holders:
            holders.remove(correlation_id)
            if holders:
                self._set_interaction_holders(holders)
        if holders:
            log.debug("Leaving per-client request entries held by %d other request(s)", len(holders))
            return
        for singleton in (
            TemporaryCacheKeys.ORIGIN_URI,
            TemporaryCacheKeys.URL_HASH,
            TemporaryCacheKeys.CORRELATION_ID,
            TemporaryCacheKeys.ACQUIRE_TOKEN_ACCOUNT,
        ):
            self.remove_item(self.generate_cache_key(singleton.value))
        self.set_interaction_in_progress(False)

    def clean_request_by_state(self, state_string: str) -> None:
        if not state_string:
            return
        state_key = self.generate_state_key(state_string)
        cached_state = self.temporary_cache_storage.get_item(state_key)
        log.info("Cleaning temporary cache for request state")
        self.reset_request_cache(cached_state or state_string)

    def clean_request_by_interaction_type(self, interaction_type: Union[InteractionType, str]) -> None:
        """Reset every pending request recorded with this interaction type.

        Requests of other interaction types keep their entries, so a stale redirect can be
        swept without disturbing a popup that is still open.
        """
        interaction_type = InteractionType(interaction_type).value
        state_prefix = self.generate_cache_key(TemporaryCacheKeys.REQUEST_STATE.value)
        for key in self.temporary_cache_storage.get_keys():
            if not key.startswith(state_prefix):
                continue
            state_value = self.temporary_cache_storage.get_item(key)
            if not state_value:
                continue
            try:
                library_state = decode_state(self.crypto, state_value).library_state
            except Exception:
                log.debug("Skipping unparseable request state under key=%s", key, exc_info=True)
                continue
            if library_state.meta.get("interactionType") == interaction_type:
                log.info("Cleaning stale %s request", interaction_type)
                self.reset_request_cache(state_value)

    def cache_code_request(self, state: str, request: dict) -> None:
        """Store the pending token request, including its PKCE verifier, for the round trip."""
        encoded = self.crypto.base64_encode(json.dumps(request))
        self.set_temporary_cache(self.generate_request_params_key(state), encoded)

    def get_cached_request(self, state: str) -> dict:
        """Read back the request stored by ``cache_code_request``.

        Raises:
            NoCachedRequestError: nothing was stored for this state
            UnparseableCachedRequestError: the stored value is corrupt or truncated
        """
        encoded = self.get_temporary_cache(self.generate_request_params_key(state))
        if not encoded:
            raise NoCachedRequestError("No token request found in cache")
        try:
            request = json.loads(self.crypto.base64_decode(encoded))
        except Exception as e:
            raise UnparseableCachedRequestError(f"Cached token request could not be parsed: {e}") from e
        if not isinstance(request, dict):
            raise UnparseableCachedRequestError("Cached token request is not a JSON object")
        self.remove_item(self.generate_request_params_key(state))

        if not request.get("authority"):
            cached_authority = self.get_cached_authority(state)
            if not cached_authority:
                raise NoCachedRequestError("No cached authority found for the request")
            request["authority"] = cached_authority
        return request

    def get_cached_authority(self, state: str) -> Optional[str]:
        return self.get_temporary_cache(self.generate_authority_key(state))

    def is_interaction_in_progress(self) -> bool:
        key = self.generate_cache_key(TemporaryCacheKeys.INTERACTION_STATUS_KEY.value)
        return self.temporary_cache_storage.get_item(key) == INTERACTION_IN_PROGRESS_VALUE

    def set_interaction_in_progress(self, in_progress: bool, state: Optional[str] = None) -> None:
        """Set or clear the interaction status.

        Passing the ``state`` of the request that starts the interaction records it as a
        holder, so resetting another request leaves the status in place. Clearing the status
        drops every holder.
        """
        key = self.generate_cache_key(TemporaryCacheKeys.INTERACTION_STATUS_KEY.value)
        if in_progress:
            self.set_temporary_cache(key, INTERACTION_IN_PROGRESS_VALUE)
            if state:
                holders = self.get_interaction_holders()
                correlation_id = self._library_state_id(state)
                if correlation_id not in holders:
                    self._set_interaction_holders(holders + [correlation_id])
        else:
            self.remove_item(key)
            self.remove_item(self.generate_cache_key(TemporaryCacheKeys.INTERACTION_HOLDERS.value))
