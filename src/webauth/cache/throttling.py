"""Client-side throttling of request shapes the server has asked us to back off from."""

from __future__ import annotations

import hashlib
import json
import logging
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, List, Optional, Union

from webauth.cache._clock import now_seconds
from webauth.cache.constants import (
    DEFAULT_MAX_THROTTLE_TIME_SECONDS,
    DEFAULT_THROTTLE_TIME_SECONDS,
    THROTTLING_PREFIX,
)
from webauth.cache.entities import ThrottlingEntity
from webauth.cache.errors import ThrottledRequestError
from webauth.cache.scopes import ScopeSet

if TYPE_CHECKING:
    from webauth.cache._protocols import Response
    from webauth.cache.cache_manager import CacheManager

log = logging.getLogger(__name__)

RETRY_AFTER_HEADER = "Retry-After"


def _header(response: Any, name: str) -> Optional[str]:
    headers = getattr(response, "headers", None) or {}
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def parse_retry_after(value: Optional[str], now: Optional[int] = None) -> int:
    """Seconds to wait according to a Retry-After header, which is either delta-seconds or an HTTP date."""
    if not value:
        return 0
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        log.debug("Ignoring unparseable Retry-After header %r", value)
        return 0
    now = now_seconds() if now is None else now
    return max(int(retry_at.timestamp()) - now, 0)


def calculate_throttle_time(duration_seconds: int, now: Optional[int] = None) -> int:
    """Absolute epoch second until which to throttle, bounded by the maximum throttle time."""
    now = now_seconds() if now is None else now
    duration = duration_seconds if duration_seconds and duration_seconds > 0 else DEFAULT_THROTTLE_TIME_SECONDS
    return now + min(duration, DEFAULT_MAX_THROTTLE_TIME_SECONDS)


class ThrottlingGate:
    def __init__(self, cache_manager: "CacheManager") -> None:
        self.cache_manager = cache_manager

    @staticmethod
    def generate_throttling_key(
        client_id: str,
        authority: str,
        scopes: Union[ScopeSet, List[str], str],
        grant_type: Optional[str] = None,
        home_account_id: Optional[str] = None,
    ) -> str:
        scope_set = scopes if isinstance(scopes, ScopeSet) else ScopeSet.create(scopes)
        shape = {
            "clientId": client_id,
            "authority": authority,
            "scopes": scope_set.print_scopes(),
            "grantType": grant_type or "",
            "homeAccountId": home_account_id or "",
        }
        canonical = json.dumps(shape, sort_keys=True, separators=(",", ":"))
        return f"{THROTTLING_PREFIX}.{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"

    def _active_entry(self, key: str) -> Optional[ThrottlingEntity]:
        entity = self.cache_manager.get_throttling_cache(key)
        if entity is None or entity.throttle_time <= now_seconds():
            return None
        return entity

    def should_throttle(self, key: str) -> bool:
        return self._active_entry(key) is not None

    def get_throttled_error(self, key: str) -> Optional[ThrottledRequestError]:
        entity = self._active_entry(key)
        if entity is None:
            return None
        message = entity.error_message or entity.error or "Request is throttled"
        return ThrottledRequestError(message, entity.throttle_time, entity.error_codes)

    def record_throttle(
        self,
        key: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        duration_seconds: int = DEFAULT_THROTTLE_TIME_SECONDS,
        *,
        error_codes: Optional[List[str]] = None,
        sub_error: Optional[str] = None,
    ) -> ThrottlingEntity:
        entity = ThrottlingEntity(
            throttle_time=calculate_throttle_time(duration_seconds),
            error=error_code,
            error_codes=[str(c) for c in error_codes] if error_codes else None,
            error_message=error_message,
            sub_error=sub_error,
        )
        self.cache_manager.set_throttling_cache(key, entity)
        log.debug("Throttling %s until %d", key, entity.throttle_time)
        return entity

    def remove_throttle(self, key: str) -> None:
        self.cache_manager.remove_item(self.cache_manager.entity_storage_key(key))

    def pre_process(self, key: str) -> None:
        """Raise ThrottledRequestError while the request shape behind ``key`` is throttled."""
        error = self.get_throttled_error(key)
        if error is not None:
            log.warning("Request blocked by client-side throttling until %d", error.throttle_time)
            raise error

    def post_process(self, key: str, response: "Response") -> bool:
        """Record a throttle entry for a 429/5xx response, or any non-2xx response with Retry-After.

        Returns True when an entry was recorded.
        """
        status = response.status_code
        retry_after = _header(response, RETRY_AFTER_HEADER)
        server_unavailable = status == 429 or 500 <= status < 600
        asked_to_retry_later = retry_after is not None and not 200 <= status < 300
        if not (server_unavailable or asked_to_retry_later):
            return False

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        self.record_throttle(
            key,
            body.get("error"),
            body.get("error_description"),
            parse_retry_after(retry_after),
            error_codes=body.get("error_codes"),
            sub_error=body.get("suberror"),
        )
        return True
