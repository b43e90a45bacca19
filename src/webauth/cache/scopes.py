"""Case-insensitive scope sets and their canonical string form."""

from __future__ import annotations

from typing import Iterable, Union

OPENID_SCOPE = "openid"
PROFILE_SCOPE = "profile"
OFFLINE_ACCESS_SCOPE = "offline_access"
OIDC_DEFAULT_SCOPES = (OPENID_SCOPE, PROFILE_SCOPE, OFFLINE_ACCESS_SCOPE)


class ScopeSet:
    """Set of scopes compared case-insensitively, whitespace trimmed, empties dropped."""

    def __init__(self, scopes: Iterable[str]) -> None:
        self.scopes = {s.strip().lower() for s in scopes if s and s.strip()}

    @classmethod
    def from_string(cls, scope_string: str) -> "ScopeSet":
        return cls((scope_string or "").split(" "))

    @classmethod
    def create(cls, scopes: Union[str, Iterable[str], None]) -> "ScopeSet":
        if scopes is None:
            return cls([])
        if isinstance(scopes, str):
            return cls.from_string(scopes)
        return cls(scopes)

    def contains_scope_set(self, other: "ScopeSet") -> bool:
        return other.scopes.issubset(self.scopes)

    def contains_only_oidc_scopes(self) -> bool:
        return bool(self.scopes) and self.scopes.issubset(OIDC_DEFAULT_SCOPES)

    def without_oidc_scopes(self) -> "ScopeSet":
        return ScopeSet(self.scopes.difference(OIDC_DEFAULT_SCOPES))

    def union(self, other: "ScopeSet") -> "ScopeSet":
        return ScopeSet(self.scopes | other.scopes)

    def print_scopes(self) -> str:
        """Canonical form: sorted and space-joined. Used as the credential ``target``."""
        return " ".join(sorted(self.scopes))

    def as_list(self):
        return sorted(self.scopes)

    def __len__(self) -> int:
        return len(self.scopes)

    def __eq__(self, other) -> bool:
        return isinstance(other, ScopeSet) and self.scopes == other.scopes

    def __hash__(self) -> int:
        return hash(frozenset(self.scopes))

    def __repr__(self) -> str:
        return f"ScopeSet({self.print_scopes()!r})"
