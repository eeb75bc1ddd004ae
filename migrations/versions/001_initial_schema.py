"""Initial schema with PostGIS extension and all marketplace tables.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def _geography_index(name: str, table: str, lng: str, lat: str) -> None:
    op.execute(
        f"CREATE INDEX {name} ON {table} USING gist "
        f"((geography(ST_SetSRID(ST_MakePoint({lng}, {lat}), 4326))))"
    )


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("company_name", sa.String(100), nullable=True),
        sa.Column("mobile", sa.String(15), unique=True, nullable=False),
        sa.Column("user_type", sa.String(32), nullable=False),
        sa.Column("bl_coins", sa.Integer, server_default="500", nullable=False),
        sa.Column("device_tokens", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── loads ─────────────────────────────────────────────────────────
    op.create_table(
        "loads",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "transporter_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("material_type", sa.String(32), nullable=False),
        sa.Column("weight", sa.Float, nullable=True),
        sa.Column("source_place", sa.String(255), nullable=False),
        sa.Column("source_lat", sa.Float, nullable=False),
        sa.Column("source_lng", sa.Float, nullable=False),
        sa.Column("source_cell", sa.String(20), nullable=False),
        sa.Column("destination_place", sa.String(255), nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("destination_cell", sa.String(20), nullable=False),
        sa.Column("vehicle_body_type", sa.String(32), nullable=False),
        sa.Column("vehicle_type", sa.String(32), nullable=False),
        sa.Column("number_of_wheels", sa.Integer, nullable=False),
        sa.Column("offered_total", sa.Float, nullable=False),
        sa.Column("advance_percentage", sa.Float, nullable=False),
        sa.Column("diesel_liters", sa.Float, nullable=False),
        sa.Column("urgency", sa.String(32), nullable=False),
        sa.Column("schedule_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_bid_id", sa.Integer, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_loads_transporter", "loads", ["transporter_id"])
    op.create_index("idx_loads_source_cell", "loads", ["source_cell"])
    op.create_index("idx_loads_destination_cell", "loads", ["destination_cell"])
    op.create_index("idx_loads_expires", "loads", ["expires_at"])
    op.create_index("idx_loads_schedule", "loads", ["is_active", "schedule_date"])
    _geography_index("idx_loads_source_geo", "loads", "source_lng", "source_lat")
    _geography_index(
        "idx_loads_destination_geo", "loads", "destination_lng", "destination_lat"
    )

    # ── trucks ────────────────────────────────────────────────────────
    op.create_table(
        "trucks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("permit", sa.String(64), nullable=False),
        sa.Column("truck_number", sa.String(10), unique=True, nullable=False),
        sa.Column("location_place", sa.String(255), nullable=False),
        sa.Column("location_lat", sa.Float, nullable=False),
        sa.Column("location_lng", sa.Float, nullable=False),
        sa.Column("location_cell", sa.String(20), nullable=False),
        sa.Column("capacity", sa.Float, nullable=False),
        sa.Column("vehicle_body_type", sa.String(32), nullable=False),
        sa.Column("truck_type", sa.String(32), nullable=False),
        sa.Column("truck_body_type", sa.String(32), nullable=False),
        sa.Column("tyre_count", sa.Integer, nullable=False),
        sa.Column("rc_image", sa.String(512), nullable=True),
        sa.Column("rc_status", sa.String(32), server_default="PENDING", nullable=False),
        sa.Column(
            "is_rc_verified", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column("ratings", sa.JSON, nullable=False),
        sa.Column("total_bids", sa.Integer, server_default="0", nullable=False),
        sa.Column("current_bid_id", sa.Integer, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("idx_trucks_owner", "trucks", ["owner_id"])
    op.create_index("idx_trucks_cell", "trucks", ["location_cell"])
    op.create_index("idx_trucks_expires", "trucks", ["expires_at"])
    _geography_index("idx_trucks_location_geo", "trucks", "location_lng", "location_lat")

    # ── bids ──────────────────────────────────────────────────────────
    op.create_table(
        "bids",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("bid_type", sa.String(32), nullable=False),
        sa.Column("bid_by", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("offered_to", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "load_id",
            sa.Integer,
            sa.ForeignKey("loads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "truck_id",
            sa.Integer,
            sa.ForeignKey("trucks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bidded_total", sa.Float, nullable=False),
        sa.Column("advance_percentage", sa.Float, nullable=True),
        sa.Column("diesel_liters", sa.Float, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("material_type", sa.String(32), nullable=False),
        sa.Column("weight", sa.Float, nullable=True),
        sa.Column("offered_total", sa.Float, nullable=False),
        sa.Column("source_place", sa.String(255), nullable=False),
        sa.Column("source_lat", sa.Float, nullable=False),
        sa.Column("source_lng", sa.Float, nullable=False),
        sa.Column("destination_place", sa.String(255), nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("status", sa.String(32), server_default="PENDING", nullable=False),
        sa.Column("rejection_reason", sa.String(32), nullable=True),
        sa.Column("rejection_note", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_bids_status", "bids", ["status"])
    op.create_index("idx_bids_load", "bids", ["load_id", "status"])
    op.create_index("idx_bids_truck", "bids", ["truck_id", "status"])
    op.create_index("idx_bids_bid_by", "bids", ["bid_by"])
    op.create_index("idx_bids_offered_to", "bids", ["offered_to"])

    # ── listing bid lists ─────────────────────────────────────────────
    op.create_table(
        "load_bids",
        sa.Column(
            "load_id",
            sa.Integer,
            sa.ForeignKey("loads.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "bid_id",
            sa.Integer,
            sa.ForeignKey("bids.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_table(
        "truck_bids",
        sa.Column(
            "truck_id",
            sa.Integer,
            sa.ForeignKey("trucks.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "bid_id",
            sa.Integer,
            sa.ForeignKey("bids.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    # ── chats ─────────────────────────────────────────────────────────
    op.create_table(
        "chats",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "participant_low", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "participant_high", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column(
            "last_message_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("participant_low", "participant_high", name="uq_chat_pair"),
    )
    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "chat_id",
            sa.Integer,
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("message_type", sa.String(32), server_default="TEXT", nullable=False),
        sa.Column("bid_id", sa.Integer, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_chat_messages_chat", "chat_messages", ["chat_id"])
    op.create_index("idx_chat_messages_bid", "chat_messages", ["bid_id"])
    op.create_table(
        "chat_bids",
        sa.Column(
            "chat_id",
            sa.Integer,
            sa.ForeignKey("chats.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "bid_id",
            sa.Integer,
            sa.ForeignKey("bids.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    # ── reward_ledger ─────────────────────────────────────────────────
    op.create_table(
        "reward_ledger",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("bid_id", sa.Integer, nullable=False),
        sa.Column("delta", sa.Integer, nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("bid_id", "reason", name="uq_ledger_bid_reason"),
    )
    op.create_index("idx_ledger_user", "reward_ledger", ["user_id"])

    # ── outbox_events ─────────────────────────────────────────────────
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("bid_id", sa.Integer, nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("status", sa.String(32), server_default="PENDING", nullable=False),
        sa.Column("attempts", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("bid_id", "kind", name="uq_outbox_bid_kind"),
    )
    op.create_index("idx_outbox_status", "outbox_events", ["status"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("reward_ledger")
    op.drop_table("chat_bids")
    op.drop_table("chat_messages")
    op.drop_table("chats")
    op.drop_table("truck_bids")
    op.drop_table("load_bids")
    op.drop_table("bids")
    op.drop_table("trucks")
    op.drop_table("loads")
    op.drop_table("users")
