from __future__ import annotations

from typing import Dict, List, Optional

from webauth.cache.internal.storage._base import StorageBackend


class MemoryStorage(StorageBackend):
    """Process-lifetime storage. Always available, used as the fallback for every other backend."""

    def __init__(self) -> None:
        self._cache: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._cache.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._cache[key] = value

    def remove_item(self, key: str) -> None:
        self._cache.pop(key, None)

    def contains_key(self, key: str) -> bool:
        return key in self._cache

    def get_keys(self) -> List[str]:
        return list(self._cache)

    def clear(self) -> None:
        self._cache.clear()

    def probe(self) -> None:
        pass
