"""Key-value storage backends the cache manager persists into.

All keyring imports are lazy so the module works when keyring is not installed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from webauth.cache import DEFAULT_CACHE_PATH, DEFAULT_SESSION_CACHE_PATH
from webauth.cache.config import CacheLocation
from webauth.cache.internal.storage._base import StorageBackend
from webauth.cache.internal.storage._file import FileStorage
from webauth.cache.internal.storage._keyring import KeyringStorage
from webauth.cache.internal.storage._memory import MemoryStorage

log = logging.getLogger(__name__)


class SessionStorage(FileStorage):
    """File storage under the user's runtime directory, which does not outlive the login session."""

    def __init__(self, path: Path = DEFAULT_SESSION_CACHE_PATH) -> None:
        super().__init__(path)


def create_storage(
    location: Union[CacheLocation, str],
    *,
    cache_path: Optional[Path] = None,
    session_cache_path: Optional[Path] = None,
) -> StorageBackend:
    """Return a usable StorageBackend for the given location.

    Locations:
      file    – JSON file in the user cache directory (durable)
      keyring – system keyring (durable)
      session – JSON file in the user runtime directory
      memory  – process memory

    Any location that is unknown, or whose backend fails its probe, falls back
    to memory for the lifetime of the returned object.
    """
    if location == CacheLocation.FILE:
        candidate: StorageBackend = FileStorage(cache_path or DEFAULT_CACHE_PATH)
    elif location == CacheLocation.KEYRING:
        candidate = KeyringStorage()
    elif location == CacheLocation.SESSION:
        candidate = SessionStorage(session_cache_path or DEFAULT_SESSION_CACHE_PATH)
    elif location == CacheLocation.MEMORY:
        return MemoryStorage()
    else:
        log.debug("Unknown cache location %r, using memory storage", location)
        return MemoryStorage()

    try:
        candidate.probe()
    except Exception:
        log.debug("%s storage is unavailable, falling back to memory storage", location, exc_info=True)
        return MemoryStorage()
    return candidate


__all__ = [
    "StorageBackend",
    "FileStorage",
    "KeyringStorage",
    "MemoryStorage",
    "SessionStorage",
    "create_storage",
]
