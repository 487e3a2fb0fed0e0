from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # Stored payloads and HTTP bodies use camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageType(str, Enum):
    NORMAL = "normal"
    SYSTEM = "system"
    MODERATOR = "moderator"


class ChatRoom(CamelModel):
    room_id: str
    stream_id: str
    is_active: bool = True
    created_at: int
    participant_count: int = 0


class ChatMessage(CamelModel):
    id: str
    room_id: str
    wallet_address: str
    username: str
    message: str
    timestamp: int
    type: MessageType = MessageType.NORMAL


class RoomStats(CamelModel):
    participant_count: int = 0
    message_count: int = 0
    is_active: bool = False
    online_count: int = 0


class ChatEvent(CamelModel):
    type: str = "message"
    data: ChatMessage


class CreateChatRoomRequest(CamelModel):
    stream_id: Optional[str] = None
    room_id: Optional[str] = None


class JoinChatRequest(CamelModel):
    room_id: Optional[str] = None
    wallet_address: Optional[str] = None


class JoinChatResponse(CamelModel):
    success: bool = True
    messages: list[ChatMessage]
    stats: RoomStats


class SendMessageRequest(CamelModel):
    room_id: Optional[str] = None
    wallet_address: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = MessageType.NORMAL.value


class SendMessageResponse(CamelModel):
    success: bool = True
    message: ChatMessage


class OnlineRequest(CamelModel):
    room_id: Optional[str] = None
    wallet_address: Optional[str] = None


class StatsResponse(CamelModel):
    success: bool = True
    stats: RoomStats


class MessagesResponse(CamelModel):
    success: bool = True
    messages: list[ChatMessage]
