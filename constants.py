import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

if REDIS_PASSWORD:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}")
else:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}")

# Room record, message log and participant set live for a day after the last write
CHAT_ROOM_TTL_SECONDS = int(os.getenv("CHAT_ROOM_TTL_SECONDS", 24 * 60 * 60))
# Online set expires as a whole after this much silence
CHAT_ONLINE_TTL_SECONDS = int(os.getenv("CHAT_ONLINE_TTL_SECONDS", 5 * 60))
CHAT_MAX_MESSAGES = int(os.getenv("CHAT_MAX_MESSAGES", 1000))
CHAT_DEFAULT_HISTORY = int(os.getenv("CHAT_DEFAULT_HISTORY", 100))

CHAT_RATE_LIMIT_ENABLED = os.getenv("CHAT_RATE_LIMIT_ENABLED", "false").lower() in ("1", "true", "yes")
CHAT_RATE_LIMIT_MAX_MESSAGES = int(os.getenv("CHAT_RATE_LIMIT_MAX_MESSAGES", 5))
CHAT_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("CHAT_RATE_LIMIT_WINDOW_SECONDS", 1))

SYSTEM_WALLET = "system"
SYSTEM_USERNAME = "System"
WELCOME_MESSAGE = "Welcome to the live chat! 🔴"
FAREWELL_MESSAGE = "Stream ended. Chat will be available for 24 hours."
