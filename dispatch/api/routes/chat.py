"""
Ride chat (REST)
================

GET  /api/v1/rides/{ride_id}/chat/messages -- message history (parties only)
POST /api/v1/rides/{ride_id}/chat/messages -- append a message (parties only)

Clients poll the GET endpoint; the Socket.IO relay pushes the same
messages in real time.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from dispatch.api.auth import Principal, get_current_user
from dispatch.api.dependencies import get_chat_service
from dispatch.api.middleware import limiter
from dispatch.api.schemas import ChatMessageRequest, MessageResponse, UserSummary
from dispatch.config import settings
from dispatch.services.chat import ChatService

router = APIRouter(prefix="/rides", tags=["chat"])


def message_response(message, sender) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        chat_id=message.chat_id,
        sender=UserSummary.model_validate(sender),
        content=message.content,
        sent_at=message.sent_at,
    )


@router.get(
    "/{ride_id}/chat/messages",
    response_model=list[MessageResponse],
    summary="Chat history for a ride",
)
@limiter.limit(settings.rate_limit)
async def list_messages(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    rows = await chat.messages(ride_id, principal.user_id)
    return [message_response(m, u) for m, u in rows]


@router.post(
    "/{ride_id}/chat/messages",
    status_code=201,
    response_model=MessageResponse,
    summary="Send a chat message",
)
@limiter.limit(settings.rate_limit)
async def post_message(
    request: Request,
    ride_id: int,
    body: ChatMessageRequest,
    principal: Principal = Depends(get_current_user),
    chat: ChatService = Depends(get_chat_service),
):
    message, sender = await chat.post(ride_id, principal.user_id, body.content)
    return message_response(message, sender)
