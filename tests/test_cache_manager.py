import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from requests.cookies import RequestsCookieJar

from webauth.cache._clock import now_seconds
from webauth.cache.cache_manager import CacheManager
from webauth.cache.config import CacheLocation, CacheOptions
from webauth.cache.constants import InteractionType
from webauth.cache.crypto import CryptoOps
from webauth.cache.entities import (
    AccessTokenEntity,
    AccountEntity,
    AppMetadataEntity,
    AuthorityMetadataEntity,
    IdTokenEntity,
    RefreshTokenEntity,
    ServerTelemetryEntity,
    ThrottlingEntity,
    generate_authority_metadata_key,
)
from webauth.cache.errors import NoCachedRequestError, UnparseableCachedRequestError
from webauth.cache.internal.storage import FileStorage, MemoryStorage, SessionStorage
from webauth.cache.state import decode_state, encode_state

CLIENT_ID = "client-id"
ENV = "login.microsoftonline.com"
HOME = "uid.utid"


def _memory_manager(**kwargs) -> CacheManager:
    return CacheManager(CLIENT_ID, CacheOptions(cache_location=CacheLocation.MEMORY, **kwargs), CryptoOps())


def _account(home=HOME, realm="tenant1") -> AccountEntity:
    return AccountEntity.create_account(
        home, ENV, {"tid": realm, "oid": f"oid-{home}", "preferred_username": f"{home}@example.com"}
    )


def _access_token(scopes, expires_in=1000, home=HOME, realm="tenant1", client_id=CLIENT_ID, **kwargs):
    expires_on = now_seconds() + expires_in
    return AccessTokenEntity.create_access_token_entity(
        home, ENV, f"at-{scopes}", client_id, realm, scopes, expires_on, expires_on, **kwargs
    )


class AccessTokenSelectionTest(unittest.TestCase):
    def setUp(self):
        self.manager = _memory_manager()
        self.account = _account()
        self.manager.set_account(self.account)
        self.info = self.account.get_account_info()

    def test_superset_hit_and_missing_scope_miss(self):
        self.manager.set_access_token_credential(_access_token("openid profile"))

        hit = self.manager.read_access_token(CLIENT_ID, self.info, ["openid"])
        self.assertIsNotNone(hit)
        self.assertEqual(hit.target, "openid profile")
        self.assertIsNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid", "mail"]))

    def test_scopes_are_case_insensitive(self):
        self.manager.set_access_token_credential(_access_token("User.Read"))
        self.assertIsNotNone(self.manager.read_access_token(CLIENT_ID, self.info, "user.read"))

    def test_token_within_renewal_offset_is_not_returned(self):
        self.manager.set_access_token_credential(_access_token("openid", expires_in=200))
        self.assertIsNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"]))
        self.assertIsNotNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"], offset_seconds=0))

    def test_token_expiring_now_is_expired(self):
        token = _access_token("openid")
        self.manager.set_access_token_credential(token)
        with mock.patch("webauth.cache.cache_manager.now_seconds", return_value=int(token.expires_on)):
            self.assertIsNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"], offset_seconds=0))

    def test_exact_match_wins_over_longer_lived_superset(self):
        self.manager.set_access_token_credential(_access_token("openid profile mail", expires_in=5000))
        self.manager.set_access_token_credential(_access_token("openid profile", expires_in=1000))

        token = self.manager.read_access_token(CLIENT_ID, self.info, ["openid", "profile"])
        self.assertEqual(token.target, "openid profile")

    def test_longest_lifetime_among_supersets(self):
        self.manager.set_access_token_credential(_access_token("openid mail", expires_in=1000))
        self.manager.set_access_token_credential(_access_token("openid profile", expires_in=3000))

        token = self.manager.read_access_token(CLIENT_ID, self.info, ["openid"])
        self.assertEqual(token.target, "openid profile")

    def test_other_client_and_realm_are_ignored(self):
        self.manager.set_access_token_credential(_access_token("openid", client_id="other-client"))
        self.manager.set_access_token_credential(_access_token("openid", realm="tenant2"))
        self.assertIsNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"]))
        self.assertIsNotNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"], realm="tenant2"))

    def test_pop_token_needs_matching_scheme(self):
        self.manager.set_access_token_credential(_access_token("openid", token_type="pop", key_id="kid-1"))
        self.assertIsNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"]))
        self.assertIsNotNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"], "pop", key_id="kid-1"))
        self.assertIsNone(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"], "pop", key_id="kid-2"))

    def test_corrupt_entry_does_not_abort_selection(self):
        good = _access_token("openid profile")
        self.manager.set_access_token_credential(good)
        bad_key = "webauth.uid.utid-login.microsoftonline.com-accesstoken-client-id-tenant1-openid"
        self.manager.set_item(bad_key, '{"homeAccountId": "uid.utid", "credentialType": "AccessTo')

        self.assertIsNone(self.manager.get_access_token_credential(bad_key))
        self.assertEqual(self.manager.read_access_token(CLIENT_ID, self.info, ["openid"]).secret, good.secret)


class EntityReadWriteTest(unittest.TestCase):
    def setUp(self):
        self.manager = _memory_manager()

    def test_entities_are_stored_under_prefixed_keys(self):
        account = _account()
        self.manager.set_account(account)
        self.assertIn("webauth.uid.utid-login.microsoftonline.com-tenant1", self.manager.get_keys())
        self.assertEqual(self.manager.get_account(account.generate_account_key()), account)

    def test_credentials_read_after_write(self):
        id_token = IdTokenEntity.create_id_token_entity(HOME, ENV, "id-token", CLIENT_ID, "tenant1")
        refresh_token = RefreshTokenEntity.create_refresh_token_entity(HOME, ENV, "rt", CLIENT_ID)
        self.manager.set_id_token_credential(id_token)
        self.manager.set_refresh_token_credential(refresh_token)

        self.assertEqual(self.manager.get_id_token_credential(id_token.generate_credential_key()), id_token)
        self.assertEqual(
            self.manager.get_refresh_token_credential(refresh_token.generate_credential_key()), refresh_token
        )
        self.assertIsNone(self.manager.get_access_token_credential(id_token.generate_credential_key()))

    def test_same_shape_overwrites(self):
        self.manager.set_access_token_credential(_access_token("openid", expires_in=1000))
        self.manager.set_access_token_credential(_access_token("openid", expires_in=2000))
        self.assertEqual(len(self.manager.get_credentials_filtered_by().access_tokens), 1)

    def test_remove_credential(self):
        token = _access_token("openid")
        self.manager.set_access_token_credential(token)
        self.manager.remove_credential(token)
        self.assertIsNone(self.manager.get_access_token_credential(token.generate_credential_key()))

    def test_non_json_value_reads_as_absent(self):
        self.manager.set_item("webauth.uid.utid-login.microsoftonline.com-tenant1", "not json")
        self.assertIsNone(self.manager.get_account("uid.utid-login.microsoftonline.com-tenant1"))
        self.assertEqual(self.manager.get_all_accounts(), [])

    def test_app_metadata(self):
        self.manager.set_app_metadata(AppMetadataEntity(client_id=CLIENT_ID, environment=ENV, family_id="1"))
        self.assertEqual(self.manager.read_app_metadata(ENV, CLIENT_ID).family_id, "1")
        self.assertTrue(self.manager.is_app_metadata_foci(ENV, CLIENT_ID))
        self.assertFalse(self.manager.is_app_metadata_foci(ENV, "other"))

        self.manager.remove_app_metadata()
        self.assertIsNone(self.manager.read_app_metadata(ENV, CLIENT_ID))

    def test_server_telemetry_and_throttling(self):
        self.manager.set_server_telemetry("server-telemetry-client-id", ServerTelemetryEntity(cache_hits=2))
        self.manager.set_throttling_cache("throttling.abc", ThrottlingEntity(throttle_time=123, error="e"))

        self.assertEqual(self.manager.get_server_telemetry("server-telemetry-client-id").cache_hits, 2)
        self.assertEqual(self.manager.get_throttling_cache("throttling.abc").throttle_time, 123)
        self.assertIsNone(self.manager.get_throttling_cache("server-telemetry-client-id"))

    def test_authority_metadata_is_memory_only(self):
        key = generate_authority_metadata_key(CLIENT_ID, ENV)
        entity = AuthorityMetadataEntity(
            aliases=[ENV], canonical_authority=f"https://{ENV}/common/", token_endpoint=f"https://{ENV}/token"
        )
        self.manager.set_authority_metadata(key, entity)

        self.assertIs(self.manager.get_authority_metadata(key), entity)
        self.assertEqual(self.manager.get_authority_metadata_keys(), [key])
        self.assertEqual(self.manager.get_keys(), [])

        self.manager.clear()
        self.assertIsNone(self.manager.get_authority_metadata(key))


class AccountQueryTest(unittest.TestCase):
    def setUp(self):
        self.manager = _memory_manager()
        for home in ("uid1.utid", "uid2.utid"):
            self.manager.set_account(_account(home))
            self.manager.set_id_token_credential(
                IdTokenEntity.create_id_token_entity(home, ENV, f"idt-{home}", CLIENT_ID, "tenant1")
            )
            self.manager.set_access_token_credential(_access_token("openid", home=home))
            self.manager.set_refresh_token_credential(
                RefreshTokenEntity.create_refresh_token_entity(home, ENV, f"rt-{home}", CLIENT_ID, "1")
            )

    def test_get_all_accounts(self):
        accounts = self.manager.get_all_accounts()
        self.assertEqual(sorted(a.home_account_id for a in accounts), ["uid1.utid", "uid2.utid"])
        self.assertEqual(accounts[0].id_token_claims["tid"], "tenant1")

    def test_filter_accounts(self):
        self.assertEqual(len(self.manager.get_accounts_filtered_by(home_account_id="uid1.utid")), 1)
        self.assertEqual(len(self.manager.get_accounts_filtered_by(realm="TENANT1")), 2)
        self.assertEqual(len(self.manager.get_accounts_filtered_by(environment="other.example.com")), 0)

    def test_home_account_id_matches_case_insensitively(self):
        self.assertEqual(len(self.manager.get_accounts_filtered_by(home_account_id="UID1.UTID")), 1)
        credentials = self.manager.get_credentials_filtered_by(home_account_id="Uid1.Utid")
        self.assertEqual(len(credentials.access_tokens), 1)

    def test_remove_account_ignores_home_account_id_case(self):
        self.manager.set_account(_account("Uid3.Utid"))
        self.manager.set_access_token_credential(_access_token("openid", home="Uid3.Utid"))

        self.manager.remove_account("uid3.utid")

        self.assertEqual(sorted(a.home_account_id for a in self.manager.get_all_accounts()), ["uid1.utid", "uid2.utid"])
        self.assertEqual(len(self.manager.get_credentials_filtered_by(home_account_id="uid3.utid").access_tokens), 0)

    def test_read_id_and_refresh_tokens(self):
        info = _account("uid1.utid").get_account_info()
        self.assertEqual(self.manager.read_id_token(CLIENT_ID, info).secret, "idt-uid1.utid")
        self.assertEqual(self.manager.read_refresh_token(CLIENT_ID, info).secret, "rt-uid1.utid")
        self.assertEqual(self.manager.read_refresh_token("another-app", info, family=True).secret, "rt-uid1.utid")
        self.assertIsNone(self.manager.read_refresh_token("another-app", info))

    def test_remove_account_cascades_to_that_account_only(self):
        self.manager.remove_account("uid1.utid")

        self.assertEqual([a.home_account_id for a in self.manager.get_all_accounts()], ["uid2.utid"])
        credentials = self.manager.get_credentials_filtered_by()
        for credential_map in (credentials.id_tokens, credentials.access_tokens, credentials.refresh_tokens):
            self.assertEqual([c.home_account_id for c in credential_map.values()], ["uid2.utid"])

    def test_remove_all_accounts(self):
        self.manager.remove_all_accounts()
        self.assertEqual(self.manager.get_keys(), [])


class RawItemTest(unittest.TestCase):
    def test_get_keys_and_clear_only_touch_prefixed_keys(self):
        manager = _memory_manager()
        manager.set_item("host.key", "mine")
        manager.set_account(_account())
        manager.set_temporary_cache("interaction.status", "x", generate_key=True)

        self.assertNotIn("host.key", manager.get_keys())
        self.assertIn("webauth.client-id.interaction.status", manager.get_keys())

        manager.clear()
        self.assertEqual(manager.get_keys(), [])
        self.assertEqual(manager.get_item("host.key"), "mine")

    def test_contains_and_remove_item(self):
        manager = _memory_manager()
        manager.set_temporary_cache("webauth.client-id.x", "1")
        self.assertTrue(manager.contains_key("webauth.client-id.x"))
        manager.remove_item("webauth.client-id.x")
        self.assertFalse(manager.contains_key("webauth.client-id.x"))


class StorageSelectionTest(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.tmp = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def _options(self, location, **kwargs) -> CacheOptions:
        return CacheOptions(
            cache_location=location,
            cache_path=self.tmp / "storage.json",
            session_cache_path=self.tmp / "session.json",
            **kwargs,
        )

    def test_durable_location_keeps_temporary_entries_in_session_storage(self):
        manager = CacheManager(CLIENT_ID, self._options(CacheLocation.FILE), CryptoOps())
        self.assertIsInstance(manager.browser_storage, FileStorage)
        self.assertIsInstance(manager.temporary_cache_storage, SessionStorage)

    def test_session_location_shares_one_storage(self):
        manager = CacheManager(CLIENT_ID, self._options(CacheLocation.SESSION), CryptoOps())
        self.assertIs(manager.temporary_cache_storage, manager.browser_storage)

    def test_memory_location(self):
        manager = CacheManager(CLIENT_ID, self._options(CacheLocation.MEMORY), CryptoOps())
        self.assertIsInstance(manager.browser_storage, MemoryStorage)
        self.assertIsInstance(manager.temporary_cache_storage, MemoryStorage)

    def test_probe_failure_falls_back_to_memory(self):
        with mock.patch.object(FileStorage, "probe", side_effect=OSError("no space left on device")):
            manager = CacheManager(CLIENT_ID, self._options(CacheLocation.FILE), CryptoOps())
        self.assertIsInstance(manager.browser_storage, MemoryStorage)
        manager.set_account(_account())
        self.assertEqual(len(manager.get_all_accounts()), 1)

    def test_temporary_value_found_in_durable_storage(self):
        manager = CacheManager(CLIENT_ID, self._options(CacheLocation.FILE), CryptoOps())
        manager.browser_storage.set_item("webauth.client-id.request.origin", "https://app.example.com")

        self.assertEqual(
            manager.get_temporary_cache("request.origin", generate_key=True), "https://app.example.com"
        )
        self.assertEqual(
            manager.temporary_cache_storage.get_item("webauth.client-id.request.origin"), "https://app.example.com"
        )

    def test_migration_copies_legacy_keys_and_keeps_them(self):
        FileStorage(self.tmp / "storage.json").set_item("webauth.idtoken", "legacy-id-token")
        FileStorage(self.tmp / "storage.json").set_item("webauth.error.description", "legacy-error")

        manager = CacheManager(CLIENT_ID, self._options(CacheLocation.FILE), CryptoOps())

        self.assertEqual(manager.get_temporary_cache("idtoken", generate_key=True), "legacy-id-token")
        self.assertEqual(manager.get_temporary_cache("error.description", generate_key=True), "legacy-error")
        self.assertEqual(manager.get_item("webauth.idtoken"), "legacy-id-token")

        # A second construction over the same storage is a no-op.
        CacheManager(CLIENT_ID, self._options(CacheLocation.FILE), CryptoOps())
        self.assertEqual(manager.get_temporary_cache("idtoken", generate_key=True), "legacy-id-token")


class CookieMirrorIntegrationTest(unittest.TestCase):
    def setUp(self):
        self.jar = RequestsCookieJar()
        self.manager = CacheManager(
            CLIENT_ID,
            CacheOptions(cache_location=CacheLocation.MEMORY, store_auth_state_in_cookie=True),
            CryptoOps(),
            cookie_jar=self.jar,
        )

    def test_temporary_writes_are_mirrored(self):
        self.manager.set_temporary_cache("request.origin", "https://app.example.com", generate_key=True)
        self.assertEqual([c.name for c in self.jar], ["webauth.client-id.request.origin"])

    def test_cookie_is_read_first(self):
        self.manager.set_temporary_cache("request.origin", "from-storage", generate_key=True)
        self.jar.set("webauth.client-id.request.origin", "from-cookie", path="/")
        self.assertEqual(self.manager.get_temporary_cache("request.origin", generate_key=True), "from-cookie")

    def test_remove_item_clears_cookie(self):
        self.manager.set_temporary_cache("request.origin", "x", generate_key=True)
        self.manager.remove_item("webauth.client-id.request.origin")
        self.assertEqual(list(self.jar), [])

    def test_clear_removes_namespace_cookies_only(self):
        self.manager.set_temporary_cache("request.origin", "x", generate_key=True)
        self.jar.set("host-session", "keep", path="/")
        self.manager.clear()
        self.assertEqual([c.name for c in self.jar], ["host-session"])


class TemporaryCacheTest(unittest.TestCase):
    def setUp(self):
        self.crypto = CryptoOps()
        self.manager = CacheManager(CLIENT_ID, CacheOptions(cache_location=CacheLocation.MEMORY), self.crypto)

    def _state(self, interaction_type=InteractionType.REDIRECT, user_state=""):
        return encode_state(self.crypto, user_state, meta={"interactionType": interaction_type.value})

    def test_generate_cache_key(self):
        self.assertEqual(self.manager.generate_cache_key("request.origin"), "webauth.client-id.request.origin")
        self.assertEqual(self.manager.generate_cache_key("webauth.already.prefixed"), "webauth.already.prefixed")

    def test_keys_are_derived_from_the_correlation_id(self):
        state = self._state(user_state="user")
        correlation_id = decode_state(self.crypto, state).library_state.id

        self.assertEqual(self.manager.generate_state_key(state), f"webauth.client-id.request.state.{correlation_id}")
        self.assertEqual(self.manager.generate_nonce_key(state), f"webauth.client-id.nonce.id_token.{correlation_id}")
        self.assertEqual(self.manager.generate_authority_key(state), f"webauth.client-id.authority.{correlation_id}")
        self.assertEqual(
            self.manager.generate_request_params_key(state), f"webauth.client-id.request.params.{correlation_id}"
        )

    def test_update_cache_entries_and_reset(self):
        state = self._state()
        self.manager.update_cache_entries(state, "nonce-1", "https://login.example.com/common/", login_hint="a@b.c")
        self.manager.set_interaction_in_progress(True)

        self.assertEqual(self.manager.get_temporary_cache(self.manager.generate_state_key(state)), state)
        self.assertEqual(self.manager.get_temporary_cache(self.manager.generate_nonce_key(state)), "nonce-1")
        self.assertEqual(
            json.loads(self.manager.get_temporary_cache("acquireToken.account", generate_key=True)),
            {"username": "a@b.c"},
        )
        self.assertTrue(self.manager.is_interaction_in_progress())

        self.manager.reset_request_cache(state)

        self.assertEqual(self.manager.temporary_cache_storage.get_keys(), [])
        self.assertFalse(self.manager.is_interaction_in_progress())

    def test_reset_keeps_interaction_held_by_another_request(self):
        redirect_state = self._state(InteractionType.REDIRECT)
        popup_state = self._state(InteractionType.POPUP)
        self.manager.update_cache_entries(popup_state, "nonce", "https://login.example.com/common/", login_hint="a@b.c")
        self.manager.set_interaction_in_progress(True, state=popup_state)
        self.manager.update_cache_entries(redirect_state, "nonce", "https://login.example.com/common/", login_hint="x@y.z")
        self.manager.set_interaction_in_progress(True, state=redirect_state)

        self.manager.reset_request_cache(redirect_state)

        self.assertTrue(self.manager.is_interaction_in_progress())
        self.assertEqual(
            json.loads(self.manager.get_temporary_cache("acquireToken.account", generate_key=True)),
            {"username": "a@b.c"},
        )
        popup_id = decode_state(self.crypto, popup_state).library_state.id
        self.assertEqual(self.manager.get_interaction_holders(), [popup_id])

        self.manager.reset_request_cache(popup_state)

        self.assertFalse(self.manager.is_interaction_in_progress())
        self.assertEqual(self.manager.temporary_cache_storage.get_keys(), [])

    def test_reset_of_unrelated_state_keeps_interaction(self):
        popup_state = self._state(InteractionType.POPUP)
        self.manager.set_interaction_in_progress(True, state=popup_state)

        self.manager.reset_request_cache(self._state(InteractionType.SILENT))

        self.assertTrue(self.manager.is_interaction_in_progress())

    def test_clean_request_by_state(self):
        state = self._state()
        self.manager.update_cache_entries(state, "nonce", "https://login.example.com/common/")
        self.manager.clean_request_by_state(state)
        self.assertEqual(self.manager.temporary_cache_storage.get_keys(), [])

    def test_clean_by_interaction_type_leaves_other_types(self):
        redirect_state = self._state(InteractionType.REDIRECT)
        popup_state = self._state(InteractionType.POPUP)
        for state in (redirect_state, popup_state):
            self.manager.update_cache_entries(state, "nonce", "https://login.example.com/common/")
            self.manager.cache_code_request(state, {"scopes": ["openid"]})

        self.manager.clean_request_by_interaction_type(InteractionType.REDIRECT)

        self.assertIsNone(self.manager.get_temporary_cache(self.manager.generate_state_key(redirect_state)))
        self.assertEqual(self.manager.get_temporary_cache(self.manager.generate_state_key(popup_state)), popup_state)
        self.assertEqual(self.manager.get_temporary_cache(self.manager.generate_nonce_key(popup_state)), "nonce")
        self.assertEqual(self.manager.get_cached_request(popup_state)["scopes"], ["openid"])

    def test_cached_request_round_trip(self):
        state = self._state()
        request = {"authority": "https://login.example.com/tenant1/", "code_verifier": "verifier", "scopes": ["openid"]}
        self.manager.cache_code_request(state, request)
        self.assertEqual(self.manager.get_cached_request(state), request)

    def test_cached_authority_used_when_request_has_none(self):
        state = self._state()
        self.manager.update_cache_entries(state, "nonce", "https://login.example.com/tenant1/")
        self.manager.cache_code_request(state, {"scopes": ["openid"]})

        request = self.manager.get_cached_request(state)

        self.assertEqual(request["authority"], "https://login.example.com/tenant1/")
        self.assertEqual(self.manager.get_cached_authority(state), "https://login.example.com/tenant1/")

    def test_missing_cached_request(self):
        with self.assertRaises(NoCachedRequestError):
            self.manager.get_cached_request(self._state())

    def test_corrupt_cached_request(self):
        state = self._state()
        self.manager.set_temporary_cache(self.manager.generate_request_params_key(state), "eyJzY29wZXMiOl")
        with self.assertRaises(UnparseableCachedRequestError):
            self.manager.get_cached_request(state)

    def test_no_authority_anywhere(self):
        state = self._state()
        self.manager.cache_code_request(state, {"scopes": ["openid"]})
        with self.assertRaises(NoCachedRequestError):
            self.manager.get_cached_request(state)


if __name__ == "__main__":
    unittest.main()
