import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

# Address other instances use to reach this one; falls back to HOST:PORT
SERVER_ADDRESS = os.getenv("SERVER_ADDRESS", None)

ROOMS_NAMESPACE = os.getenv("ROOMS_NAMESPACE", "room_manager")
ROOMS_IDENTIFIER = os.getenv("ROOMS_IDENTIFIER", None)

# Seconds
DEFAULT_ROOM_REFRESH_INTERVAL = 300
DEFAULT_HEARTBEAT_INTERVAL = 60

ROOM_REFRESH_INTERVAL = float(os.getenv("ROOM_REFRESH_INTERVAL", DEFAULT_ROOM_REFRESH_INTERVAL))
HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL))

# Key TTLs are this factor greater than how often we refresh them
TTL_REFRESH_DRIFT_FACTOR = 1.2

DEFAULT_KEYS_MATCH_SCAN_COUNT = 100
ALL_SPARKS_SCAN_COUNT = 5000
MEMBERS_SSCAN_COUNT = 10000
MAX_SPARK_FORWARDS_PER_BATCH = 50000
