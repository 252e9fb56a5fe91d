"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``     -- customers, drivers and admins; drivers carry the
                   availability record (``is_busy``, ``online``, last fix)
* ``rides``     -- ride / service requests and their lifecycle markers
* ``chats``     -- one chat per ride, pinned to its two parties
* ``messages``  -- append-only chat messages

Indexes
-------
* **B-Tree** on ``rides.status``, ``customer_id``, ``driver_id``,
  ``scheduled_at`` for the driver feed, sweeper and history queries.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.types import TypeDecorator

from .database import Base
from dispatch.domain.enums import RideStatus, Role, ServiceKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    role = Column(Enum(Role), default=Role.CUSTOMER, nullable=False)

    # Driver availability record
    vehicle_type = Column(Enum(ServiceKind), nullable=True)
    is_busy = Column(Boolean, default=False, nullable=False)
    online = Column(Boolean, default=False, nullable=False)
    last_known_lat = Column(Float, nullable=True)
    last_known_lng = Column(Float, nullable=True)
    last_location_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_busy", "is_busy"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    service_kind = Column(Enum(ServiceKind), nullable=False)
    sub_type = Column(String(120), nullable=True)
    category_name = Column(String(120), nullable=True)
    note = Column(Text, nullable=True)

    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    dest_lat = Column(Float, nullable=False)
    dest_lng = Column(Float, nullable=False)
    destination_name = Column(String(255), nullable=True)

    status = Column(Enum(RideStatus), default=RideStatus.PENDING, nullable=False)

    requested_at = Column(UTCDateTime, default=utcnow, nullable=False)
    scheduled_at = Column(UTCDateTime, nullable=True)
    accepted_at = Column(UTCDateTime, nullable=True)
    started_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    no_show_reported_at = Column(UTCDateTime, nullable=True)
    no_show_reported_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    rating = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)

    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_customer", "customer_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_scheduled", "scheduled_at"),
        CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_rides_rating"
        ),
    )


class ChatModel(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(
        Integer, ForeignKey("rides.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)


class MessageModel(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(
        Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    sent_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_messages_chat", "chat_id", "sent_at"),)
