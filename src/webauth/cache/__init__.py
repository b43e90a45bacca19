import logging
import os
import tempfile
from logging import NullHandler
from pathlib import Path

logging.getLogger(__name__).addHandler(NullHandler())

try:
    from ._version import __version__
except ImportError:
    __version__ = "0.0.0"

CACHE_PREFIX = "webauth"

DEFAULT_CONFIG_FILE_PATH = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "webauth" / "cache.json"

DEFAULT_CACHE_PATH = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache")) / "webauth-cache" / "storage.json"

# XDG_RUNTIME_DIR is removed when the user's last session ends
DEFAULT_SESSION_CACHE_PATH = (
    Path(os.environ.get("XDG_RUNTIME_DIR", tempfile.gettempdir())) / "webauth-cache" / "session.json"
)

from webauth.cache.cache_manager import CacheManager  # noqa: E402
from webauth.cache.config import CacheLocation, CacheOptions, load_cache_options  # noqa: E402
from webauth.cache.lifecycle import RequestLifecycleManager  # noqa: E402
from webauth.cache.throttling import ThrottlingGate  # noqa: E402

__all__ = [
    "CACHE_PREFIX",
    "CacheLocation",
    "CacheManager",
    "CacheOptions",
    "RequestLifecycleManager",
    "ThrottlingGate",
    "load_cache_options",
]
