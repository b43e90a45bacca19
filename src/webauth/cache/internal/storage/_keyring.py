from __future__ import annotations

import contextlib
import json
import logging
from pathlib import Path
from typing import Iterator, List, Optional

from filelock import FileLock

from webauth.cache import DEFAULT_CACHE_PATH
from webauth.cache.internal.storage._base import StorageBackend

log = logging.getLogger(__name__)

SERVICE_NAME = "webauth-cache"

# Keyring has no enumeration API, so the set of stored keys is kept under this entry.
INDEX_KEY = "__index__"

# Serialises index updates between processes sharing the keyring.
DEFAULT_INDEX_LOCK_PATH = DEFAULT_CACHE_PATH.parent / "keyring-index.lock"
LOCK_TIMEOUT_SECONDS = 10

_KEYRING_MISSING = object()  # sentinel: import attempted but unavailable


class KeyringStorage(StorageBackend):
    """Storage backed by the system keyring, one password entry per key."""

    def __init__(self, service_name: str = SERVICE_NAME, lock_path: Path = DEFAULT_INDEX_LOCK_PATH) -> None:
        self.service_name = service_name
        self.lock_path = Path(lock_path)
        self._index_lock = FileLock(str(self.lock_path), timeout=LOCK_TIMEOUT_SECONDS)
        self._keyring_module = None  # not yet resolved

    def _keyring(self):
        """Return the keyring module if usable, else None. Result is cached."""
        if self._keyring_module is _KEYRING_MISSING:
            return None
        if self._keyring_module is not None:
            return self._keyring_module
        try:
            import keyring

            backend_name = type(keyring.get_keyring()).__name__
            if "fail" in backend_name.lower():
                raise RuntimeError(f"keyring backend {backend_name} cannot store secrets")
        except Exception:
            log.debug("System keyring is not usable", exc_info=True)
            self._keyring_module = _KEYRING_MISSING
            return None
        self._keyring_module = keyring
        return keyring

    @contextlib.contextmanager
    def _locked_index(self) -> Iterator[None]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with self._index_lock:
            yield

    def _load_index(self, kr) -> List[str]:
        stored = kr.get_password(self.service_name, INDEX_KEY)
        if not stored:
            return []
        try:
            index = json.loads(stored)
        except ValueError:
            log.debug("Keyring key index is corrupt, starting a new one")
            return []
        return [k for k in index if isinstance(k, str)] if isinstance(index, list) else []

    def _save_index(self, kr, index: List[str]) -> None:
        kr.set_password(self.service_name, INDEX_KEY, json.dumps(index))

    def get_item(self, key: str) -> Optional[str]:
        kr = self._keyring()
        if kr is None:
            return None
        try:
            return kr.get_password(self.service_name, key)
        except Exception:
            log.debug("Failed to read key=%s from keyring", key, exc_info=True)
            return None

    def set_item(self, key: str, value: str) -> None:
        kr = self._keyring()
        if kr is None:
            return
        try:
            kr.set_password(self.service_name, key, value)
            with self._locked_index():
                index = self._load_index(kr)
                if key not in index:
                    index.append(key)
                    self._save_index(kr, index)
        except Exception:
            log.debug("Failed to write key=%s to keyring", key, exc_info=True)

    def remove_item(self, key: str) -> None:
        kr = self._keyring()
        if kr is None:
            return
        try:
            with self._locked_index():
                index = self._load_index(kr)
                if key in index:
                    index.remove(key)
                    self._save_index(kr, index)
            kr.delete_password(self.service_name, key)
        except Exception:
            log.debug("Failed to remove key=%s from keyring", key, exc_info=True)

    def get_keys(self) -> List[str]:
        kr = self._keyring()
        if kr is None:
            return []
        try:
            return self._load_index(kr)
        except Exception:
            log.debug("Failed to read key index from keyring", exc_info=True)
            return []

    def probe(self) -> None:
        if self._keyring() is None:
            raise RuntimeError("No usable keyring backend available")
        super().probe()
