# =============================================================================
# Tinyphone Events -- Constants
# =============================================================================

from ._version import __version__

CLIENT_VERSION = __version__
USER_AGENT = f"tinyphone-events/{CLIENT_VERSION}"

# -- Endpoint ------------------------------------------------------------------

DEFAULT_BASE_URL = "http://localhost:6060"
EVENTS_PATH = "/events"
ENV_PREFIX = "TINYPHONE_"

# -- Timing (seconds) --------------------------------------------------------

DEFAULT_TIMEOUT_SECONDS = 30.0
RECONNECT_DELAY = 5.0
CLOSE_TIMEOUT = 10.0

# -- Messages ------------------------------------------------------------------

MAX_MESSAGE_SIZE = 1_048_576  # 1 MB
DEFAULT_QUEUE_SIZE = 1000

# Field the server puts in its greeting. The misspelling is the server's.
WELCOME_MARKER = "subcription"

TYPE_ACCOUNT = "ACCOUNT"
TYPE_CALL = "CALL"

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
