from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

# Written and removed again by probe() to prove the medium accepts writes.
PROBE_KEY = "webauth.storage.probe"


class StorageBackend(ABC):
    """Abstract string key-value medium. Knows nothing about cache entities."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored string, or None."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a string under key, replacing any existing value."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""

    @abstractmethod
    def get_keys(self) -> List[str]:
        """Return every key currently stored, in no particular order."""

    def contains_key(self, key: str) -> bool:
        return self.get_item(key) is not None

    def clear(self) -> None:
        for key in self.get_keys():
            self.remove_item(key)

    def probe(self) -> None:
        """Raise if the medium cannot be used. Called once before the backend is selected."""
        self.set_item(PROBE_KEY, PROBE_KEY)
        if self.get_item(PROBE_KEY) != PROBE_KEY:
            raise RuntimeError(f"{type(self).__name__} did not return a value written to it")
        self.remove_item(PROBE_KEY)
