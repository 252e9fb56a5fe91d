"""Initial schema: users, rides, chats, messages.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

SERVICE_KINDS = (
    "CAR",
    "TUKTUK",
    "LIMO",
    "WHEELCHAIR",
    "DELIVERY",
    "SHOPPING",
    "TOW_TRUCK",
    "TRUCK",
    "WATER_TRUCK",
    "CLEANING",
    "HAIR_DRESSER",
    "BEAUTY",
)
RIDE_STATUSES = (
    "PENDING",
    "SCHEDULED",
    "ACCEPTED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
    "NO_SHOW",
)
ROLES = ("CUSTOMER", "DRIVER", "ADMIN")

# Created once up front; servicekind is shared by users and rides
role_enum = postgresql.ENUM(*ROLES, name="role", create_type=False)
service_kind_enum = postgresql.ENUM(*SERVICE_KINDS, name="servicekind", create_type=False)
ride_status_enum = postgresql.ENUM(*RIDE_STATUSES, name="ridestatus", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    postgresql.ENUM(*ROLES, name="role").create(bind, checkfirst=True)
    postgresql.ENUM(*SERVICE_KINDS, name="servicekind").create(bind, checkfirst=True)
    postgresql.ENUM(*RIDE_STATUSES, name="ridestatus").create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", role_enum, nullable=False, server_default="CUSTOMER"),
        sa.Column("vehicle_type", service_kind_enum, nullable=True),
        sa.Column("is_busy", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_known_lat", sa.Float, nullable=True),
        sa.Column("last_known_lng", sa.Float, nullable=True),
        sa.Column("last_location_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_users_role", "users", ["role"])
    op.create_index("idx_users_busy", "users", ["is_busy"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "customer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("service_kind", service_kind_enum, nullable=False),
        sa.Column("sub_type", sa.String(120), nullable=True),
        sa.Column("category_name", sa.String(120), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("origin_lat", sa.Float, nullable=False),
        sa.Column("origin_lng", sa.Float, nullable=False),
        sa.Column("dest_lat", sa.Float, nullable=False),
        sa.Column("dest_lng", sa.Float, nullable=False),
        sa.Column("destination_name", sa.String(255), nullable=True),
        sa.Column(
            "status", ride_status_enum, nullable=False, server_default="PENDING"
        ),
        sa.Column(
            "requested_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("no_show_reported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "no_show_reported_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("rating", sa.Integer, nullable=True),
        sa.Column("feedback", sa.Text, nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_rides_rating"
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_customer", "rides", ["customer_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_scheduled", "rides", ["scheduled_at"])

    # ── chats / messages ──────────────────────────────────────────────
    op.create_table(
        "chats",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "ride_id",
            sa.Integer,
            sa.ForeignKey("rides.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_table(
        "messages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "chat_id",
            sa.Integer,
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_messages_chat", "messages", ["chat_id", "sent_at"])


def downgrade() -> None:
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_table("rides")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS ridestatus")
    op.execute("DROP TYPE IF EXISTS servicekind")
    op.execute("DROP TYPE IF EXISTS role")
