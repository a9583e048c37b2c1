import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

ROOM_CAPACITY = int(os.getenv("ROOM_CAPACITY", 2))

# Idle reaper: sweep every 5 minutes, evict after 30 minutes without activity
REAP_INTERVAL_SECONDS = float(os.getenv("REAP_INTERVAL_SECONDS", 300))
IDLE_TIMEOUT_SECONDS = float(os.getenv("IDLE_TIMEOUT_SECONDS", 1800))

# WebSocket close codes
CLOSE_IDLE_TIMEOUT = 4000
CLOSE_GOING_AWAY = 1001
