import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union

from webauth.cache import DEFAULT_CACHE_PATH, DEFAULT_CONFIG_FILE_PATH, DEFAULT_SESSION_CACHE_PATH
from webauth.cache.constants import DEFAULT_TOKEN_RENEWAL_OFFSET_SECONDS


class CacheLocation(str, Enum):
    FILE = "file"
    KEYRING = "keyring"
    SESSION = "session"
    MEMORY = "memory"


DURABLE_LOCATIONS = (CacheLocation.FILE, CacheLocation.KEYRING)


@dataclass
class CacheOptions:
    # Kept as a plain string when unrecognised; storage selection downgrades it to memory.
    cache_location: Union[CacheLocation, str] = CacheLocation.SESSION
    store_auth_state_in_cookie: bool = False
    secure_cookies: bool = False
    cookie_life_days: int = 1
    token_renewal_offset_seconds: int = DEFAULT_TOKEN_RENEWAL_OFFSET_SECONDS
    cache_path: Path = field(default_factory=lambda: DEFAULT_CACHE_PATH)
    session_cache_path: Path = field(default_factory=lambda: DEFAULT_SESSION_CACHE_PATH)


def parse_cache_location(value: Union[CacheLocation, str]) -> Union[CacheLocation, str]:
    try:
        return CacheLocation(value)
    except ValueError:
        return value


def load_cache_options(path: Union[str, Path] = DEFAULT_CONFIG_FILE_PATH) -> CacheOptions:
    """Load cache options from a JSON file. Returns defaults if the file doesn't exist."""
    expanded = Path(path).expanduser()
    if not expanded.exists():
        return CacheOptions()

    data = json.loads(expanded.read_text())

    options = CacheOptions(
        cache_location=parse_cache_location(data.get("cacheLocation", CacheLocation.SESSION)),
        store_auth_state_in_cookie=bool(data.get("storeAuthStateInCookie", False)),
        secure_cookies=bool(data.get("secureCookies", False)),
        cookie_life_days=int(data.get("cookieLifeDays", 1)),
        token_renewal_offset_seconds=int(
            data.get("tokenRenewalOffsetSeconds", DEFAULT_TOKEN_RENEWAL_OFFSET_SECONDS)
        ),
    )
    if data.get("cachePath"):
        options.cache_path = Path(data["cachePath"]).expanduser()
    if data.get("sessionCachePath"):
        options.session_cache_path = Path(data["sessionCachePath"]).expanduser()
    return options
