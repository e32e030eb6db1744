import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Rooms live for ROOM_TIMEOUT_SECONDS after the last create/join
ROOM_TIMEOUT_SECONDS = float(os.getenv("ROOM_TIMEOUT_SECONDS", 5 * 60))
ROOM_ID_MIN = int(os.getenv("ROOM_ID_MIN", 1000))
ROOM_ID_MAX = int(os.getenv("ROOM_ID_MAX", 9999))

OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 256))
WS_MAX_SIZE = int(os.getenv("WS_MAX_SIZE", 1024 * 1024))

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", None)
