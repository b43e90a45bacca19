"""String constants that form the cache's compatibility surface."""

from enum import Enum

# Separates the encoded library state from the caller's state. Not part of the base64 alphabet.
RESOURCE_DELIM = "|"

CACHE_KEY_SEPARATOR = "-"

AUTHORITY_METADATA_CACHE_KEY = "authority-metadata"
APP_METADATA = "appmetadata"
SERVER_TELEM_CACHE_KEY = "server-telemetry"
THROTTLING_PREFIX = "throttling"

# Seconds before expiry at which an access token is no longer handed out.
DEFAULT_TOKEN_RENEWAL_OFFSET_SECONDS = 300

AUTHORITY_METADATA_REFRESH_TIME_SECONDS = 24 * 60 * 60

DEFAULT_THROTTLE_TIME_SECONDS = 60
DEFAULT_MAX_THROTTLE_TIME_SECONDS = 3600

SERVER_TELEM_MAX_CACHED_ERRORS = 50

INTERACTION_IN_PROGRESS_VALUE = "interaction_in_progress"


class CredentialType(str, Enum):
    ID_TOKEN = "IdToken"
    ACCESS_TOKEN = "AccessToken"
    ACCESS_TOKEN_WITH_AUTH_SCHEME = "AccessToken_With_AuthScheme"
    REFRESH_TOKEN = "RefreshToken"


class AuthenticationScheme(str, Enum):
    BEARER = "Bearer"
    POP = "pop"


class AuthorityType(str, Enum):
    DEFAULT = "MSSTS"
    ADFS = "ADFS"
    B2C = "B2C"


class InteractionType(str, Enum):
    REDIRECT = "redirect"
    POPUP = "popup"
    SILENT = "silent"


class PersistentCacheKeys(str, Enum):
    """Single-value keys written by the pre-multi-account cache format."""

    ID_TOKEN = "idtoken"
    CLIENT_INFO = "client.info"
    ERROR = "error"
    ERROR_DESC = "error.description"


class TemporaryCacheKeys(str, Enum):
    AUTHORITY = "authority"
    ACQUIRE_TOKEN_ACCOUNT = "acquireToken.account"
    SESSION_STATE = "session.state"
    REQUEST_STATE = "request.state"
    NONCE_IDTOKEN = "nonce.id_token"
    ORIGIN_URI = "request.origin"
    URL_HASH = "urlHash"
    REQUEST_PARAMS = "request.params"
    INTERACTION_STATUS_KEY = "interaction.status"
    CORRELATION_ID = "request.correlationId"
    # JSON list of correlation ids of the interactive requests still holding the interaction
    INTERACTION_HOLDERS = "interaction.holders"
