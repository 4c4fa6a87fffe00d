# Table lobby protocol constants (wire keys and message kinds)

JSONRPC_VERSION = "2.0"

# Notification envelope keys
K_JSONRPC = "jsonrpc"
K_RESULT = "result"
K_FROM = "from"
K_DATA = "data"

# Message discriminator
K_KIND = "cpMsg"

# Table keys
K_OWNER = "ownerPeerId"
K_TABLE_ID = "tableId"
K_TABLE_NAME = "tableName"
K_REQUIRED = "requiredSlots"
K_JOINED = "joinedPeers"
K_INFO = "tableInfo"

# Table message body
K_MESSAGE = "message"

# Message kinds
M_NEW_TABLE = "newtable"
M_JOIN_REQUEST = "jointablerequest"
M_JOIN_TABLE = "jointable"
M_TABLE_MSG = "tablemsg"
M_LEAVE_TABLE = "leavetable"

TABLE_KINDS = frozenset({M_NEW_TABLE, M_JOIN_REQUEST, M_JOIN_TABLE, M_LEAVE_TABLE})
KNOWN_KINDS = TABLE_KINDS | {M_TABLE_MSG}

# Local-only event (never on the wire)
E_JOIN_TIMEOUT = "jointabletimeout"

# A required slot that any peer may fill
WILDCARD = "*"

# Defaults
DEFAULT_MAX_CAPTURED_TABLES = 99
DEFAULT_MAX_CAPTURES_PER_PEER = 5
DEFAULT_BEACON_INTERVAL_MS = 5000
DEFAULT_JOIN_TIMEOUT_MS = 20000
DEFAULT_ANNOUNCE_PERIOD_S = 60.0

# Direct sends held back while a recipient's path is unknown
PENDING_SENDS_PER_PEER = 8
PENDING_SEND_TTL_S = 30.0
