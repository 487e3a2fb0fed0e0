"""
Live chat for broadcast rooms on top of Redis.

A room owns four keys (record, capped message list, participant set, online set)
plus a pub/sub channel. Every key carries a TTL so an abandoned room cleans itself
up without a sweeper. The components below issue one Redis primitive at a time;
nothing here is atomic across keys.
"""
import random
import string
import time
from dataclasses import dataclass
from typing import Optional

import redis
from pydantic import ValidationError

from backend import RedisBackend
from constants import (
    CHAT_ROOM_TTL_SECONDS,
    CHAT_ONLINE_TTL_SECONDS,
    CHAT_MAX_MESSAGES,
    CHAT_DEFAULT_HISTORY,
    SYSTEM_WALLET,
    SYSTEM_USERNAME,
    WELCOME_MESSAGE,
    FAREWELL_MESSAGE,
)
from schemas.chat import ChatRoom, ChatMessage, ChatEvent, MessageType, RoomStats
from services.rate_limit import AllowAllPolicy
from logging_config import get_logger

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_message_id(timestamp: int) -> str:
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"msg_{timestamp}_{suffix}"


def short_wallet(wallet_address: str) -> str:
    return f"{wallet_address[:4]}...{wallet_address[-4:]}"


class RoomRegistry:
    def __init__(self, backend: RedisBackend, ttl: int = CHAT_ROOM_TTL_SECONDS):
        self.backend = backend
        self.ttl = ttl

    def create_room(self, stream_id: str, room_id: str) -> ChatRoom:
        # Overwrites any existing record for the same room id
        room = ChatRoom(room_id=room_id, stream_id=stream_id, is_active=True,
                        created_at=now_ms(), participant_count=0)
        self.backend.set_room(room_id, room.model_dump(by_alias=True), self.ttl)
        return room

    def get_room(self, room_id: str) -> Optional[ChatRoom]:
        data = self.backend.get_room(room_id)
        if data is None:
            return None
        return ChatRoom.model_validate(data)

    def end_room(self, room_id: str) -> Optional[ChatRoom]:
        room = self.get_room(room_id)
        if room is None:
            return None
        room.is_active = False
        self.backend.set_room(room_id, room.model_dump(by_alias=True), self.ttl)
        return room

    def is_room_active(self, room_id: str) -> bool:
        room = self.get_room(room_id)
        return room is not None and room.is_active

    def touch(self, room_id: str) -> bool:
        return self.backend.expire_room(room_id, self.ttl)


class MessageLog:
    def __init__(self, backend: RedisBackend, max_messages: int = CHAT_MAX_MESSAGES,
                 ttl: int = CHAT_ROOM_TTL_SECONDS):
        self.backend = backend
        self.max_messages = max_messages
        self.ttl = ttl

    def append(self, room_id: str, wallet_address: str, username: str, text: str,
               type: MessageType = MessageType.NORMAL) -> ChatMessage:
        timestamp = now_ms()
        message = ChatMessage(
            id=generate_message_id(timestamp),
            room_id=room_id,
            wallet_address=wallet_address,
            username=username,
            message=text,
            timestamp=timestamp,
            type=type,
        )
        self.backend.push_message(room_id, message.model_dump(mode="json", by_alias=True),
                                  self.max_messages, self.ttl)
        # Sending is an implicit join
        self.backend.add_participant(room_id, wallet_address, self.ttl)
        return message

    def recent(self, room_id: str, limit: int = CHAT_DEFAULT_HISTORY) -> list[ChatMessage]:
        """Up to `limit` newest messages, oldest first. Corrupt entries are dropped."""
        messages = []
        for raw in self.backend.get_messages(room_id, limit):
            try:
                messages.append(ChatMessage.model_validate_json(raw))
            except ValidationError as e:
                logger.warning(f"Skipping malformed message in room {room_id}: {e.error_count()} errors")
        messages.reverse()
        return messages

    def count(self, room_id: str) -> int:
        return self.backend.count_messages(room_id)


class PresenceTracker:
    def __init__(self, backend: RedisBackend, online_ttl: int = CHAT_ONLINE_TTL_SECONDS):
        self.backend = backend
        self.online_ttl = online_ttl

    def set_online(self, room_id: str, wallet_address: str):
        # Every call pushes back the expiry of the whole online set
        self.backend.add_online(room_id, wallet_address, self.online_ttl)

    def set_offline(self, room_id: str, wallet_address: str):
        self.backend.remove_online(room_id, wallet_address)

    def online_count(self, room_id: str) -> int:
        return self.backend.count_online(room_id)

    def participant_count(self, room_id: str) -> int:
        return self.backend.count_participants(room_id)


class EventBroadcaster:
    def __init__(self, backend: RedisBackend):
        self.backend = backend

    def publish(self, room_id: str, message: ChatMessage) -> bool:
        """Fire and forget. Listeners that are not subscribed right now miss the event."""
        event = ChatEvent(type="message", data=message)
        try:
            self.backend.publish_message(room_id, event.model_dump(mode="json", by_alias=True))
        except redis.RedisError as e:
            # The message is already in the log; clients catch up by polling
            logger.error(f"Failed to publish message {message.id} to room {room_id}: {e}", exc_info=True)
            return False
        return True


class StatsAggregator:
    def __init__(self, registry: RoomRegistry, message_log: MessageLog, presence: PresenceTracker):
        self.registry = registry
        self.message_log = message_log
        self.presence = presence

    def room_stats(self, room_id: str) -> RoomStats:
        # Four separate reads, so the result is only an approximation under concurrent writes
        try:
            is_active = self.registry.is_room_active(room_id)
        except ValueError as e:
            logger.warning(f"Unreadable room record for {room_id}: {e}")
            is_active = False
        return RoomStats(
            participant_count=self.presence.participant_count(room_id),
            message_count=self.message_log.count(room_id),
            is_active=is_active,
            online_count=self.presence.online_count(room_id),
        )


@dataclass
class SendResult:
    message: Optional[ChatMessage] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.message is not None


class LiveChatService:
    """Public surface of the live chat.

    No method raises on a Redis failure: the caller gets False, None, an empty
    list or zeroed stats instead, and the error is logged.
    """

    def __init__(self, backend: RedisBackend, send_policy=None,
                 room_ttl: int = CHAT_ROOM_TTL_SECONDS,
                 online_ttl: int = CHAT_ONLINE_TTL_SECONDS,
                 max_messages: int = CHAT_MAX_MESSAGES):
        self.backend = backend
        self.send_policy = send_policy or AllowAllPolicy()
        self.rooms = RoomRegistry(backend, ttl=room_ttl)
        self.message_log = MessageLog(backend, max_messages=max_messages, ttl=room_ttl)
        self.presence = PresenceTracker(backend, online_ttl=online_ttl)
        self.broadcaster = EventBroadcaster(backend)
        self.stats = StatsAggregator(self.rooms, self.message_log, self.presence)

    def create_chat_room(self, stream_id: str, room_id: str) -> bool:
        logger.info(f"Creating chat room {room_id} for stream {stream_id}")
        try:
            self.rooms.create_room(stream_id, room_id)
        except redis.RedisError as e:
            logger.error(f"Error creating chat room {room_id}: {e}", exc_info=True)
            return False
        logger.info(f"Created chat room {room_id} successfully")
        return True

    def end_chat_room(self, room_id: str, archive: bool = False) -> bool:
        if archive:
            farewell = self.add_message(room_id, SYSTEM_WALLET, SYSTEM_USERNAME, FAREWELL_MESSAGE,
                                        MessageType.SYSTEM, check_policy=False)
            if farewell is None:
                return False
        try:
            room = self.rooms.end_room(room_id)
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Error ending chat room {room_id}: {e}", exc_info=True)
            return False
        if room is None:
            logger.info(f"Chat room {room_id} has no record to end (archived: {archive})")
        else:
            logger.info(f"Ended chat room {room_id}, archived: {archive}")
        return True

    def is_room_active(self, room_id: str) -> bool:
        try:
            return self.rooms.is_room_active(room_id)
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Error checking room status for {room_id}: {e}", exc_info=True)
            return False

    def add_message(self, room_id: str, wallet_address: str, username: str, text: str,
                    type: MessageType = MessageType.NORMAL, check_policy: bool = True) -> Optional[ChatMessage]:
        if check_policy and not self.can_send(wallet_address, room_id):
            logger.warning(f"Message from {wallet_address} to room {room_id} rejected by send policy")
            return None
        try:
            message = self.message_log.append(room_id, wallet_address, username, text, type)
        except redis.RedisError as e:
            logger.error(f"Error adding message to room {room_id}: {e}", exc_info=True)
            return None

        try:
            self.rooms.touch(room_id)
        except redis.RedisError as e:
            logger.warning(f"Could not refresh TTL of room {room_id}: {e}")

        # Persist first, notify second
        self.broadcaster.publish(room_id, message)
        logger.debug(f"Message {message.id} added to room {room_id}")
        return message

    def can_send(self, wallet_address: str, room_id: str) -> bool:
        return self.send_policy.can_send(wallet_address, room_id)

    def get_messages(self, room_id: str, limit: int = CHAT_DEFAULT_HISTORY) -> list[ChatMessage]:
        try:
            messages = self.message_log.recent(room_id, limit)
        except redis.RedisError as e:
            logger.error(f"Error getting messages for room {room_id}: {e}", exc_info=True)
            return []
        logger.debug(f"Retrieved {len(messages)} messages for room {room_id}")
        return messages

    def get_room_stats(self, room_id: str) -> RoomStats:
        try:
            stats = self.stats.room_stats(room_id)
        except redis.RedisError as e:
            logger.error(f"Error getting stats for room {room_id}: {e}", exc_info=True)
            return RoomStats()
        logger.debug(f"Room stats for {room_id}: {stats}")
        return stats

    def set_user_online(self, room_id: str, wallet_address: str):
        try:
            self.presence.set_online(room_id, wallet_address)
        except redis.RedisError as e:
            logger.error(f"Error setting {wallet_address} online in room {room_id}: {e}", exc_info=True)

    def set_user_offline(self, room_id: str, wallet_address: str):
        try:
            self.presence.set_offline(room_id, wallet_address)
        except redis.RedisError as e:
            logger.error(f"Error setting {wallet_address} offline in room {room_id}: {e}", exc_info=True)

    # Flows used by the HTTP layer

    def create_chat_room_with_welcome(self, stream_id: str, room_id: str) -> bool:
        if not self.create_chat_room(stream_id, room_id):
            return False
        welcome = self.add_message(room_id, SYSTEM_WALLET, SYSTEM_USERNAME, WELCOME_MESSAGE,
                                   MessageType.SYSTEM, check_policy=False)
        if welcome is None:
            logger.warning(f"Chat room {room_id} created without welcome message")
        return True

    def join_chat_room(self, room_id: str, wallet_address: Optional[str] = None,
                       limit: int = CHAT_DEFAULT_HISTORY) -> tuple[list[ChatMessage], RoomStats]:
        messages = self.get_messages(room_id, limit)
        stats = self.get_room_stats(room_id)
        if wallet_address:
            self.set_user_online(room_id, wallet_address)
        return messages, stats

    def send_message(self, room_id: str, wallet_address: str, text: str,
                     type: MessageType = MessageType.NORMAL) -> SendResult:
        text = (text or "").strip()
        if not room_id or not wallet_address or not text:
            return SendResult(error="invalid")
        try:
            message_type = MessageType(type or MessageType.NORMAL)
        except ValueError:
            return SendResult(error="invalid")

        if not self.can_send(wallet_address, room_id):
            return SendResult(error="rate_limited")

        message = self.add_message(room_id, wallet_address, short_wallet(wallet_address), text,
                                   message_type, check_policy=False)
        if message is None:
            return SendResult(error="failed")

        self.set_user_online(room_id, wallet_address)
        return SendResult(message=message)

    def health(self) -> bool:
        try:
            return self.backend.ping()
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
