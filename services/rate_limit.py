import redis

from backend import RedisBackend
from constants import (
    CHAT_RATE_LIMIT_ENABLED,
    CHAT_RATE_LIMIT_MAX_MESSAGES,
    CHAT_RATE_LIMIT_WINDOW_SECONDS,
)
from logging_config import get_logger

logger = get_logger(__name__)


class AllowAllPolicy:
    """Send policy used while rate limiting is switched off."""

    def can_send(self, wallet_address: str, room_id: str) -> bool:
        return True


class RedisRateLimitPolicy:
    """Fixed-window message counter per wallet and room."""

    def __init__(self, backend: RedisBackend, max_messages: int = CHAT_RATE_LIMIT_MAX_MESSAGES,
                 window_seconds: int = CHAT_RATE_LIMIT_WINDOW_SECONDS):
        self.backend = backend
        self.max_messages = max_messages
        self.window_seconds = window_seconds

    def can_send(self, wallet_address: str, room_id: str) -> bool:
        try:
            count = self.backend.incr_rate(room_id, wallet_address, self.window_seconds)
        except redis.RedisError as e:
            # Chat is best effort: a broken counter does not block the sender
            logger.error(f"Rate limit check failed for {wallet_address} in room {room_id}: {e}", exc_info=True)
            return True
        if count > self.max_messages:
            logger.warning(f"Rate limit exceeded for {wallet_address} in room {room_id}: {count}/{self.max_messages}")
            return False
        return True


def build_send_policy(backend: RedisBackend, enabled: bool = CHAT_RATE_LIMIT_ENABLED):
    if enabled:
        logger.info(f"Chat rate limiting enabled: {CHAT_RATE_LIMIT_MAX_MESSAGES} messages per {CHAT_RATE_LIMIT_WINDOW_SECONDS}s")
        return RedisRateLimitPolicy(backend)
    logger.info("Chat rate limiting disabled")
    return AllowAllPolicy()
