import json
from functools import lru_cache
from typing import Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_URL
from redis_keys import (
    REDIS_ROOM_KEY,
    REDIS_MESSAGES_KEY,
    REDIS_PARTICIPANTS_KEY,
    REDIS_ONLINE_KEY,
    REDIS_ROOM_CHANNEL,
    REDIS_RATE_LIMIT_KEY,
)
from logging_config import get_logger

logger = get_logger(__name__)


def create_redis_client(url: str = REDIS_URL) -> redis.Redis:
    """Build a Redis client. The connection is opened lazily on the first command."""
    return redis.Redis.from_url(url, decode_responses=True)


class RedisBackend:
    """Store primitives for the chat keys of a room.

    Redis errors propagate to the caller; the service layer decides how to degrade.
    """

    def __init__(self, redis_client: redis.Redis, pubsub_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client
        # Publishing may go through a dedicated connection; default to the main one
        self.pubsub_client = pubsub_client or redis_client

    # Room record

    def set_room(self, room_id: str, room_data: dict, ttl: int):
        key = REDIS_ROOM_KEY.format(slug=room_id)
        self.redis_client.set(key, json.dumps(room_data), ex=ttl)
        logger.debug(f"Stored room record {key} with TTL {ttl} seconds")

    def get_room(self, room_id: str) -> Optional[dict]:
        key = REDIS_ROOM_KEY.format(slug=room_id)
        room_data = self.redis_client.get(key)
        if not room_data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return json.loads(room_data)

    def expire_room(self, room_id: str, ttl: int) -> bool:
        key = REDIS_ROOM_KEY.format(slug=room_id)
        return bool(self.redis_client.expire(key, ttl))

    # Message log

    def push_message(self, room_id: str, message_data: dict, max_len: int, ttl: int):
        key = REDIS_MESSAGES_KEY.format(slug=room_id)
        self.redis_client.lpush(key, json.dumps(message_data))
        self.redis_client.ltrim(key, 0, max_len - 1)
        self.redis_client.expire(key, ttl)
        logger.debug(f"Pushed message {message_data.get('id')} to {key}")

    def get_messages(self, room_id: str, limit: int) -> list:
        """Raw message payloads, newest first."""
        if limit <= 0:
            return []
        key = REDIS_MESSAGES_KEY.format(slug=room_id)
        return self.redis_client.lrange(key, 0, limit - 1)

    def count_messages(self, room_id: str) -> int:
        return self.redis_client.llen(REDIS_MESSAGES_KEY.format(slug=room_id))

    # Participants

    def add_participant(self, room_id: str, wallet_address: str, ttl: int) -> bool:
        key = REDIS_PARTICIPANTS_KEY.format(slug=room_id)
        added = self.redis_client.sadd(key, wallet_address)
        self.redis_client.expire(key, ttl)
        if added:
            logger.debug(f"Wallet {wallet_address} joined participants of room {room_id}")
        return bool(added)

    def count_participants(self, room_id: str) -> int:
        return self.redis_client.scard(REDIS_PARTICIPANTS_KEY.format(slug=room_id))

    # Online presence

    def add_online(self, room_id: str, wallet_address: str, ttl: int) -> bool:
        key = REDIS_ONLINE_KEY.format(slug=room_id)
        added = self.redis_client.sadd(key, wallet_address)
        # TTL applies to the whole set, not to the member
        self.redis_client.expire(key, ttl)
        return bool(added)

    def remove_online(self, room_id: str, wallet_address: str) -> bool:
        key = REDIS_ONLINE_KEY.format(slug=room_id)
        return bool(self.redis_client.srem(key, wallet_address))

    def count_online(self, room_id: str) -> int:
        return self.redis_client.scard(REDIS_ONLINE_KEY.format(slug=room_id))

    # Pub/sub

    def get_room_channel_name(self, room_id: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    def publish_message(self, room_id: str, event: dict) -> int:
        """Publish an event to the room's channel and return the number of receivers."""
        channel = self.get_room_channel_name(room_id)
        subscribers = self.pubsub_client.publish(channel, json.dumps(event))
        logger.debug(f"Published event to room {room_id} channel {channel}, {subscribers} subscribers")
        return subscribers

    # Rate limiting

    def incr_rate(self, room_id: str, wallet_address: str, window: int) -> int:
        key = REDIS_RATE_LIMIT_KEY.format(slug=room_id, wallet=wallet_address)
        count = self.redis_client.incr(key)
        # A counter left without expiry (first EXPIRE failed) gets one on the next hit
        if count == 1 or self.redis_client.ttl(key) == -1:
            self.redis_client.expire(key, window)
        return count

    def ping(self) -> bool:
        return bool(self.redis_client.ping())


@lru_cache(maxsize=1)
def get_redis_backend() -> RedisBackend:
    logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
    return RedisBackend(create_redis_client(), pubsub_client=create_redis_client())
