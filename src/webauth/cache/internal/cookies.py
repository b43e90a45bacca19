"""Write-through mirror of temporary cache entries into a cookie jar.

Used when a flow has to survive a full top-level navigation in a host whose
storage cannot be trusted to persist.
"""

from __future__ import annotations

import logging
import time
from email.utils import formatdate
from typing import Optional
from urllib.parse import quote, unquote

from requests.cookies import RequestsCookieJar

log = logging.getLogger(__name__)

COOKIE_LIFE_MULTIPLIER = 24 * 60 * 60

# Characters encodeURIComponent leaves untouched on top of quote()'s own safe set.
_URI_COMPONENT_SAFE = "!*'()"


def encode_cookie_name(name: str) -> str:
    return quote(name, safe=_URI_COMPONENT_SAFE)


def get_cookie_expiration_time(cookie_life_days: int, now: Optional[float] = None) -> str:
    """Return the RFC 1123 GMT date ``cookie_life_days`` from now."""
    now = time.time() if now is None else now
    return formatdate(now + cookie_life_days * COOKIE_LIFE_MULTIPLIER, usegmt=True)


class CookieMirror:
    def __init__(
        self,
        namespace: str,
        jar: Optional[RequestsCookieJar] = None,
        *,
        secure: bool = False,
        cookie_life_days: Optional[int] = None,
    ) -> None:
        self.namespace = namespace
        self.jar = jar if jar is not None else RequestsCookieJar()
        self.secure = secure
        self.cookie_life_days = cookie_life_days

    def set_item_cookie(self, name: str, value: str, cookie_life_days: Optional[int] = None) -> None:
        life_days = cookie_life_days if cookie_life_days is not None else self.cookie_life_days
        expires = int(time.time() + life_days * COOKIE_LIFE_MULTIPLIER) if life_days else None
        self.jar.set(
            encode_cookie_name(name),
            value,
            path="/",
            expires=expires,
            secure=self.secure,
            rest={"SameSite": "Lax"},
        )

    def get_item_cookie(self, name: str) -> Optional[str]:
        encoded = encode_cookie_name(name)
        for cookie in self.jar:
            if cookie.name == encoded:
                return cookie.value
        return None

    def clear_item_cookie(self, name: str) -> None:
        encoded = encode_cookie_name(name)
        for cookie in list(self.jar):
            if cookie.name == encoded:
                self.jar.clear(cookie.domain, cookie.path, cookie.name)

    def clear_namespace_cookies(self) -> None:
        """Remove every cookie in this client's namespace, leaving foreign cookies alone."""
        prefix = encode_cookie_name(self.namespace)
        removed = 0
        for cookie in list(self.jar):
            if cookie.name.startswith(prefix):
                self.jar.clear(cookie.domain, cookie.path, cookie.name)
                removed += 1
        if removed:
            log.debug("Cleared %d cookies under %s", removed, unquote(prefix))
