"""Bookkeeping for the last-request telemetry the network layer reports to the server."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Union

from webauth.cache.constants import SERVER_TELEM_MAX_CACHED_ERRORS
from webauth.cache.entities import ServerTelemetryEntity, generate_server_telemetry_key
from webauth.cache.errors import AuthCacheError, ServerError

if TYPE_CHECKING:
    from webauth.cache.cache_manager import CacheManager

log = logging.getLogger(__name__)

UNKNOWN_ERROR = "unknown_error"


def _error_string(error: Union[BaseException, str, None]) -> str:
    if isinstance(error, ServerError) and error.sub_error:
        return error.sub_error
    if isinstance(error, AuthCacheError):
        return error.error_code
    if error:
        return str(error)
    return UNKNOWN_ERROR


class ServerTelemetryRecorder:
    def __init__(self, cache_manager: "CacheManager", client_id: str) -> None:
        self.cache_manager = cache_manager
        self.client_id = client_id
        self.telemetry_cache_key = generate_server_telemetry_key(client_id)

    def get_last_request(self) -> ServerTelemetryEntity:
        return self.cache_manager.get_server_telemetry(self.telemetry_cache_key) or ServerTelemetryEntity()

    def increment_cache_hits(self) -> int:
        last_request = self.get_last_request()
        last_request.cache_hits += 1
        self.cache_manager.set_server_telemetry(self.telemetry_cache_key, last_request)
        return last_request.cache_hits

    def cache_failed_request(
        self, api_id: Union[int, str], correlation_id: str, error: Union[BaseException, str, None]
    ) -> None:
        """Remember a failed request, dropping the oldest one once the bound is reached."""
        last_request = self.get_last_request()
        if len(last_request.errors) >= SERVER_TELEM_MAX_CACHED_ERRORS:
            del last_request.failed_requests[:2]
            del last_request.errors[0]
        last_request.failed_requests.extend([api_id, correlation_id])
        last_request.errors.append(_error_string(error))
        self.cache_manager.set_server_telemetry(self.telemetry_cache_key, last_request)

    def flush(self) -> Optional[ServerTelemetryEntity]:
        """Hand the recorded telemetry to the caller and clear it. Returns None when nothing is recorded."""
        last_request = self.cache_manager.get_server_telemetry(self.telemetry_cache_key)
        if last_request is None:
            return None
        self.cache_manager.remove_item(self.cache_manager.entity_storage_key(self.telemetry_cache_key))
        log.debug(
            "Flushed telemetry: %d failed requests, %d cache hits", len(last_request.errors), last_request.cache_hits
        )
        return last_request
