from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator, List, Optional

from filelock import FileLock

from webauth.cache import DEFAULT_CACHE_PATH
from webauth.cache.internal.storage._base import StorageBackend

log = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 10


class FileStorage(StorageBackend):
    """Storage backed by a JSON object in a file on disk.

    The file is re-read on every call so that writes made by other processes
    sharing the file are seen by the next read. Writers hold a lock file next to
    the storage file for the whole read-modify-write cycle and replace the file
    atomically, so readers never see a partially written object.
    """

    def __init__(self, path: Path = DEFAULT_CACHE_PATH) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock = FileLock(str(self.lock_path), timeout=LOCK_TIMEOUT_SECONDS)

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            yield

    def _load_all(self) -> dict:
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except Exception:
            log.debug("Failed to read storage file %s", self.path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            log.debug("Storage file %s does not hold a JSON object, ignoring it", self.path)
            return {}
        return data

    def _save_all(self, data: dict) -> None:
        # mkstemp creates the file with mode 0600
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    def get_item(self, key: str) -> Optional[str]:
        value = self._load_all().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        try:
            with self._locked():
                data = self._load_all()
                data[key] = value
                self._save_all(data)
        except Exception:
            log.debug("Failed to write key=%s to storage file %s", key, self.path, exc_info=True)

    def remove_item(self, key: str) -> None:
        try:
            with self._locked():
                data = self._load_all()
                if key in data:
                    del data[key]
                    self._save_all(data)
        except Exception:
            log.debug("Failed to remove key=%s from storage file %s", key, self.path, exc_info=True)

    def contains_key(self, key: str) -> bool:
        return key in self._load_all()

    def get_keys(self) -> List[str]:
        return list(self._load_all())

    def clear(self) -> None:
        if not self.path.exists():
            return
        with self._locked():
            self._save_all({})

    def probe(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        super().probe()
