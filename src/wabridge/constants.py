from __future__ import annotations

from enum import IntEnum

PN_SERVER = "s.whatsapp.net"
LID_SERVER = "lid"
GROUP_SERVER = "g.us"

NOT_CONNECTED = "Not connected to WhatsApp"
LOGGED_OUT_ERROR = "Logged out. Delete sessions/ folder and restart to re-link."

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"

# Reference values for the bridge's bounded/timed behaviour.
DEFAULT_PORT = 3001
DEFAULT_RECONNECT_DELAY_S = 3.0
DEFAULT_LID_SAVE_DEBOUNCE_S = 2.0
DEFAULT_MESSAGE_STORE_SIZE = 5000
MAX_RETRANSMIT_ATTEMPTS = 5

# Session directory layout for identity mappings.
LID_MAP_FILENAME = "lid_map.json"
LEGACY_MAPPING_PREFIX = "lid-mapping-"
LEGACY_REVERSE_SUFFIX = "_reverse.json"


class DisconnectReason(IntEnum):
    """Close status codes, numbered the way Baileys numbers them."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515
