from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from backend import get_redis_backend
from constants import CHAT_DEFAULT_HISTORY, CHAT_MAX_MESSAGES
from schemas.chat import (
    CreateChatRoomRequest,
    JoinChatRequest,
    JoinChatResponse,
    SendMessageRequest,
    SendMessageResponse,
    OnlineRequest,
    StatsResponse,
    MessagesResponse,
)
from services.live_chat import LiveChatService
from services.rate_limit import build_send_policy
from logging_config import get_logger

logger = get_logger(__name__)

chat_router = APIRouter(prefix="/api/chat", tags=["chat"])


@lru_cache(maxsize=1)
def get_chat_service() -> LiveChatService:
    backend = get_redis_backend()
    return LiveChatService(backend, send_policy=build_send_policy(backend))


@chat_router.post("/room")
def create_chat_room(body: CreateChatRoomRequest, request: Request,
                     chat_service: LiveChatService = Depends(get_chat_service)):
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Chat room creation request from {client_host}: stream={body.stream_id}, room={body.room_id}")
    if not body.stream_id or not body.room_id:
        raise HTTPException(status_code=400, detail="Stream ID and Room ID are required")

    if not chat_service.create_chat_room_with_welcome(body.stream_id, body.room_id):
        raise HTTPException(status_code=500, detail="Failed to create chat room")

    return {"success": True, "message": "Chat room created successfully"}


@chat_router.delete("/room")
def end_chat_room(
    room_id: Optional[str] = Query(None, alias="roomId"),
    archive: bool = Query(False),
    chat_service: LiveChatService = Depends(get_chat_service),
):
    if not room_id:
        raise HTTPException(status_code=400, detail="Room ID is required")

    if not chat_service.end_chat_room(room_id, archive):
        raise HTTPException(status_code=500, detail="Failed to end chat room")

    return {"success": True, "message": "Chat room ended successfully"}


@chat_router.post("/join", response_model=JoinChatResponse, response_model_by_alias=True)
def join_chat_room(body: JoinChatRequest, chat_service: LiveChatService = Depends(get_chat_service)):
    if not body.room_id:
        raise HTTPException(status_code=400, detail="Room ID is required")

    messages, stats = chat_service.join_chat_room(body.room_id, body.wallet_address)
    logger.info(f"Wallet {body.wallet_address or 'anonymous'} joined room {body.room_id} ({len(messages)} messages)")
    return JoinChatResponse(messages=messages, stats=stats)


@chat_router.post("/send", response_model=SendMessageResponse, response_model_by_alias=True)
def send_message(body: SendMessageRequest, chat_service: LiveChatService = Depends(get_chat_service)):
    result = chat_service.send_message(body.room_id, body.wallet_address, body.message, body.type)

    if result.error == "invalid":
        raise HTTPException(status_code=400, detail="Missing required fields")
    if result.error == "rate_limited":
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please slow down.")
    if not result.ok:
        raise HTTPException(status_code=400, detail="Failed to send message")

    logger.debug(f"Message {result.message.id} sent to room {body.room_id}")
    return SendMessageResponse(message=result.message)


@chat_router.post("/online")
def set_user_online(body: OnlineRequest, chat_service: LiveChatService = Depends(get_chat_service)):
    if not body.room_id or not body.wallet_address:
        raise HTTPException(status_code=400, detail="Room ID and wallet address are required")

    chat_service.set_user_online(body.room_id, body.wallet_address)
    return {"success": True}


@chat_router.delete("/online")
def set_user_offline(
    room_id: Optional[str] = Query(None, alias="roomId"),
    wallet_address: Optional[str] = Query(None, alias="walletAddress"),
    chat_service: LiveChatService = Depends(get_chat_service),
):
    if not room_id or not wallet_address:
        raise HTTPException(status_code=400, detail="Room ID and wallet address are required")

    chat_service.set_user_offline(room_id, wallet_address)
    return {"success": True}


@chat_router.get("/stats", response_model=StatsResponse, response_model_by_alias=True)
def get_room_stats(
    room_id: Optional[str] = Query(None, alias="roomId"),
    chat_service: LiveChatService = Depends(get_chat_service),
):
    if not room_id:
        raise HTTPException(status_code=400, detail="Room ID is required")

    return StatsResponse(stats=chat_service.get_room_stats(room_id))


@chat_router.get("/messages", response_model=MessagesResponse, response_model_by_alias=True)
def get_messages(
    room_id: Optional[str] = Query(None, alias="roomId"),
    limit: int = Query(CHAT_DEFAULT_HISTORY, ge=1, le=CHAT_MAX_MESSAGES),
    chat_service: LiveChatService = Depends(get_chat_service),
):
    if not room_id:
        raise HTTPException(status_code=400, detail="Room ID is required")

    return MessagesResponse(messages=chat_service.get_messages(room_id, limit))


@chat_router.get("/health")
def health(chat_service: LiveChatService = Depends(get_chat_service)):
    healthy = chat_service.health()
    payload = {
        "success": healthy,
        "redis": healthy,
        "timestamp": datetime.now().isoformat(),
    }
    if not healthy:
        payload["error"] = "Health check failed"
        return JSONResponse(status_code=503, content=payload)
    return payload
