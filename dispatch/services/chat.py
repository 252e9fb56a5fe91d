"""
Per-ride chat between the customer and the assigned driver.

A chat is created lazily on first access and pinned to the two parties
the ride had at that moment.  Messages are append-only; the server sets
``sent_at``.  Both the REST endpoints and the Socket.IO relay go through
``ChatService.check_access`` so membership is re-validated on every call.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.domain.errors import Conflict, Forbidden, NotFound, ValidationError
from dispatch.infrastructure.models import (
    ChatModel,
    MessageModel,
    RideModel,
    UserModel,
    utcnow,
)
from dispatch.infrastructure.repositories import (
    ChatRepository,
    RideRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def ensure_party(chat_or_ride: Union[ChatModel, RideModel], user_id: int) -> None:
    if user_id not in (chat_or_ride.customer_id, chat_or_ride.driver_id):
        raise Forbidden("You are not a party to this ride")


class ChatService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.chats = ChatRepository(session)
        self.rides = RideRepository(session)
        self.users = UserRepository(session)

    async def get_or_create(self, ride_id: int) -> ChatModel:
        chat = await self.chats.get_by_ride(ride_id)
        if chat is not None:
            return chat
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            raise NotFound("Ride", ride_id)
        if ride.driver_id is None:
            raise Conflict("Chat is available once a driver has accepted the ride")
        try:
            chat = await self.chats.create(
                ride_id=ride_id, customer_id=ride.customer_id, driver_id=ride.driver_id
            )
            await self.session.commit()
        except IntegrityError:
            # Another request created it first
            await self.session.rollback()
            chat = await self.chats.get_by_ride(ride_id)
            if chat is None:
                raise
        return chat

    async def check_access(self, ride_id: int, user_id: int) -> ChatModel:
        """Membership check against the store; party of an existing chat or of the ride."""
        chat = await self.chats.get_by_ride(ride_id)
        if chat is not None:
            ensure_party(chat, user_id)
            return chat
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            raise NotFound("Ride", ride_id)
        ensure_party(ride, user_id)
        return await self.get_or_create(ride_id)

    async def messages(
        self, ride_id: int, user_id: int
    ) -> list[tuple[MessageModel, UserModel]]:
        chat = await self.check_access(ride_id, user_id)
        return await self.chats.list_messages(chat.id)

    async def post(
        self,
        ride_id: int,
        user_id: int,
        content: str,
        now: Optional[datetime] = None,
    ) -> tuple[MessageModel, UserModel]:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Message content must be at most {MAX_MESSAGE_LENGTH} characters"
            )
        chat = await self.check_access(ride_id, user_id)
        message = await self.chats.add_message(
            chat_id=chat.id, sender_id=user_id, content=content, now=now or utcnow()
        )
        await self.session.commit()
        sender = await self.users.get_by_id(user_id)
        logger.info("Chat message %s on ride %s from user %s", message.id, ride_id, user_id)
        return message, sender
