"""
Socket.IO chat relay
====================

Best-effort real-time delivery of ride chat messages, mounted over the
FastAPI app at ``/socket.io`` (see ``main.py``).

Events (client -> server)
-------------------------
* ``connect``       -- ``auth={"token": <bearer JWT>}``; refused without a valid token
* ``join_chat``     -- ``{"rideId"}``; enters the ride's room
* ``leave_chat``    -- ``{"rideId"}``
* ``chat_message``  -- ``{"rideId", "content"}``; persisted, then broadcast as
  ``chat_message`` to the room

Party membership is re-checked against the store on every join and send,
never cached from the connect step.  Rejections come back as an
``{"error": ...}`` acknowledgement.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import socketio

from dispatch.api.auth import decode_token
from dispatch.api.schemas import MessageResponse, UserSummary
from dispatch.domain.errors import DispatchError
from dispatch.infrastructure.database import async_session_factory
from dispatch.services.chat import ChatService

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")

# Swapped out in tests
session_factory = async_session_factory


def room_for(ride_id: int) -> str:
    return f"ride:{ride_id}"


def _ride_id(data: Any) -> Optional[int]:
    if not isinstance(data, dict):
        return None
    try:
        return int(data.get("rideId"))
    except (TypeError, ValueError):
        return None


async def _user_id(sid: str) -> Optional[int]:
    try:
        session = await sio.get_session(sid)
    except KeyError:
        return None
    return session.get("user_id")


@sio.event
async def connect(sid, environ, auth=None):
    token = auth.get("token") if isinstance(auth, dict) else None
    if not token:
        raise socketio.exceptions.ConnectionRefusedError("authentication required")
    try:
        principal = decode_token(token)
    except DispatchError as exc:
        raise socketio.exceptions.ConnectionRefusedError(exc.message)
    await sio.save_session(
        sid, {"user_id": principal.user_id, "role": principal.role.value}
    )
    logger.info("Socket %s connected as user %s", sid, principal.user_id)


@sio.event
async def disconnect(sid):
    logger.debug("Socket %s disconnected", sid)


@sio.on("join_chat")
async def join_chat(sid, data):
    user_id = await _user_id(sid)
    ride_id = _ride_id(data)
    if user_id is None:
        return {"error": "not authenticated"}
    if ride_id is None:
        return {"error": "rideId is required"}
    try:
        async with session_factory() as session:
            await ChatService(session).check_access(ride_id, user_id)
    except DispatchError as exc:
        logger.info("User %s refused chat for ride %s: %s", user_id, ride_id, exc.message)
        return {"error": exc.message}
    await sio.enter_room(sid, room_for(ride_id))
    return {"ok": True, "room": room_for(ride_id)}


@sio.on("leave_chat")
async def leave_chat(sid, data):
    ride_id = _ride_id(data)
    if ride_id is None:
        return {"error": "rideId is required"}
    await sio.leave_room(sid, room_for(ride_id))
    return {"ok": True}


@sio.on("chat_message")
async def chat_message(sid, data):
    user_id = await _user_id(sid)
    ride_id = _ride_id(data)
    if user_id is None:
        return {"error": "not authenticated"}
    if ride_id is None:
        return {"error": "rideId is required"}
    content = data.get("content") if isinstance(data, dict) else None
    try:
        async with session_factory() as session:
            message, sender = await ChatService(session).post(
                ride_id, user_id, content if isinstance(content, str) else ""
            )
    except DispatchError as exc:
        logger.info("User %s message refused on ride %s: %s", user_id, ride_id, exc.message)
        return {"error": exc.message}

    payload = MessageResponse(
        id=message.id,
        chat_id=message.chat_id,
        sender=UserSummary.model_validate(sender),
        content=message.content,
        sent_at=message.sent_at,
    ).model_dump(mode="json", by_alias=True)
    payload["rideId"] = ride_id
    await sio.emit("chat_message", payload, room=room_for(ride_id))
    return {"ok": True, "message": payload}
