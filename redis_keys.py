ROOM_SPARKS_KEY = "{namespace}:rooms:{server_instance}:{room}" # set of spark ids in a room on one server
SPARK_ROOMS_KEY = "{namespace}:sparks:{spark_id}" # set of room names a spark belongs to
FORWARD_CHANNEL = "{namespace}:forward" # pub/sub channel carrying forwarded payloads

SERVER_INSTANCE = "{address}_{identifier}"

# Scan patterns. Literal segments must be passed through escape_pattern first.
ALL_ROOM_KEYS_PATTERN = "{namespace}:rooms:*:*"
ROOM_KEYS_PATTERN = "{namespace}:rooms:*:{room}"
INSTANCE_ROOM_KEYS_PATTERN = "{namespace}:rooms:{server_instance}:*"
ALL_SPARK_KEYS_PATTERN = "{namespace}:sparks:*"
NAMESPACE_PATTERN = "{namespace}:*"

_GLOB_SPECIAL = "\\*?[]"


def escape_pattern(value: str) -> str:
    """Escape glob characters so a name matches only itself in SCAN MATCH."""
    return "".join("\\" + c if c in _GLOB_SPECIAL else c for c in value)


def room_from_key(key: str) -> str:
    return key.rsplit(":", 1)[-1]
