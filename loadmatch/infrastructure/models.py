"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``users``          -- transporters, truckers, admins (+ BlCoins balance)
* ``loads``          -- shipments posted by transporters
* ``trucks``         -- vehicles posted by truckers
* ``bids``           -- offers connecting one load and one truck
* ``load_bids`` / ``truck_bids`` -- a listing's bid list (cleared on repost)
* ``chats`` / ``chat_messages`` / ``chat_bids`` -- conversation per user pair
* ``reward_ledger``  -- one row per BlCoins movement
* ``outbox_events``  -- retryable side effects of bid transitions

Indexes
-------
* **GIST** functional indexes on ``ST_MakePoint(lng, lat)::geography`` are
  created by the migration (PostgreSQL only).
* **B-Tree** on every H3 cell column for the portable geo prefilter, and
  on ``status``, foreign keys and ``expires_at`` for the bid engine and
  freshness predicates.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base, UTCDateTime
from loadmatch.domain.entities import utcnow
from loadmatch.domain.enums import (
    BidStatus,
    BidType,
    LedgerReason,
    MaterialType,
    MessageType,
    OutboxKind,
    OutboxStatus,
    RCStatus,
    RejectionReason,
    TruckBodyType,
    Urgency,
    UserType,
    VehicleBodyType,
    VehicleType,
)


def _enum(enum_cls):
    """Store enum *values* as VARCHAR so migrations need no native types."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    company_name = Column(String(100), nullable=True)
    mobile = Column(String(15), unique=True, nullable=False)
    user_type = Column(_enum(UserType), nullable=False)
    bl_coins = Column(Integer, default=500, nullable=False)
    device_tokens = Column(JSON, default=list, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())


load_bids = Table(
    "load_bids",
    Base.metadata,
    Column("load_id", Integer, ForeignKey("loads.id", ondelete="CASCADE"), primary_key=True),
    Column("bid_id", Integer, ForeignKey("bids.id", ondelete="CASCADE"), primary_key=True),
)

truck_bids = Table(
    "truck_bids",
    Base.metadata,
    Column("truck_id", Integer, ForeignKey("trucks.id", ondelete="CASCADE"), primary_key=True),
    Column("bid_id", Integer, ForeignKey("bids.id", ondelete="CASCADE"), primary_key=True),
)


class LoadModel(Base):
    __tablename__ = "loads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transporter_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    material_type = Column(_enum(MaterialType), nullable=False)
    weight = Column(Float, nullable=True)  # tonnes

    source_place = Column(String(255), nullable=False)
    source_lat = Column(Float, nullable=False)
    source_lng = Column(Float, nullable=False)
    source_cell = Column(String(20), nullable=False)
    destination_place = Column(String(255), nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    destination_cell = Column(String(20), nullable=False)

    vehicle_body_type = Column(_enum(VehicleBodyType), nullable=False)
    vehicle_type = Column(_enum(VehicleType), nullable=False)
    number_of_wheels = Column(Integer, nullable=False)

    offered_total = Column(Float, nullable=False)
    advance_percentage = Column(Float, nullable=False)
    diesel_liters = Column(Float, nullable=False)

    urgency = Column(_enum(Urgency), nullable=False)
    schedule_date = Column(UTCDateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    current_bid_id = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_loads_transporter", "transporter_id"),
        Index("idx_loads_source_cell", "source_cell"),
        Index("idx_loads_destination_cell", "destination_cell"),
        Index("idx_loads_expires", "expires_at"),
        Index("idx_loads_schedule", "is_active", "schedule_date"),
    )


class TruckModel(Base):
    __tablename__ = "trucks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    permit = Column(String(64), nullable=False)
    truck_number = Column(String(10), unique=True, nullable=False)

    location_place = Column(String(255), nullable=False)
    location_lat = Column(Float, nullable=False)
    location_lng = Column(Float, nullable=False)
    location_cell = Column(String(20), nullable=False)

    capacity = Column(Float, nullable=False)  # tonnes
    vehicle_body_type = Column(_enum(VehicleBodyType), nullable=False)
    truck_type = Column(_enum(VehicleType), nullable=False)
    truck_body_type = Column(_enum(TruckBodyType), nullable=False)
    tyre_count = Column(Integer, nullable=False)

    rc_image = Column(String(512), nullable=True)
    rc_status = Column(_enum(RCStatus), default=RCStatus.PENDING, nullable=False)
    is_rc_verified = Column(Boolean, default=False, nullable=False)
    ratings = Column(JSON, default=list, nullable=False)

    total_bids = Column(Integer, default=0, nullable=False)
    current_bid_id = Column(Integer, nullable=True)
    expires_at = Column(UTCDateTime, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_trucks_owner", "owner_id"),
        Index("idx_trucks_cell", "location_cell"),
        Index("idx_trucks_expires", "expires_at"),
    )


class BidModel(Base):
    __tablename__ = "bids"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bid_type = Column(_enum(BidType), nullable=False)
    bid_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    offered_to = Column(Integer, ForeignKey("users.id"), nullable=False)
    load_id = Column(
        Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False
    )
    truck_id = Column(
        Integer, ForeignKey("trucks.id", ondelete="CASCADE"), nullable=False
    )

    bidded_total = Column(Float, nullable=False)
    advance_percentage = Column(Float, nullable=True)
    diesel_liters = Column(Float, nullable=True)
    note = Column(Text, nullable=True)

    # Snapshot of the load at bid time
    material_type = Column(_enum(MaterialType), nullable=False)
    weight = Column(Float, nullable=True)
    offered_total = Column(Float, nullable=False)
    source_place = Column(String(255), nullable=False)
    source_lat = Column(Float, nullable=False)
    source_lng = Column(Float, nullable=False)
    destination_place = Column(String(255), nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)

    status = Column(_enum(BidStatus), default=BidStatus.PENDING, nullable=False)
    rejection_reason = Column(_enum(RejectionReason), nullable=True)
    rejection_note = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_bids_status", "status"),
        Index("idx_bids_load", "load_id", "status"),
        Index("idx_bids_truck", "truck_id", "status"),
        Index("idx_bids_bid_by", "bid_by"),
        Index("idx_bids_offered_to", "offered_to"),
    )


chat_bids = Table(
    "chat_bids",
    Base.metadata,
    Column("chat_id", Integer, ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True),
    Column("bid_id", Integer, ForeignKey("bids.id", ondelete="CASCADE"), primary_key=True),
)


class ChatModel(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Participants stored sorted so one row exists per unordered pair
    participant_low = Column(Integer, ForeignKey("users.id"), nullable=False)
    participant_high = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_message_at = Column(UTCDateTime, default=utcnow, server_default=func.now())
    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("participant_low", "participant_high", name="uq_chat_pair"),
    )


class ChatMessageModel(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chat_id = Column(
        Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(_enum(MessageType), default=MessageType.TEXT, nullable=False)
    bid_id = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index("idx_chat_messages_chat", "chat_id"),
        Index("idx_chat_messages_bid", "bid_id"),
    )


class RewardLedgerModel(Base):
    __tablename__ = "reward_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    bid_id = Column(Integer, nullable=False)
    delta = Column(Integer, nullable=False)
    reason = Column(_enum(LedgerReason), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("bid_id", "reason", name="uq_ledger_bid_reason"),
        Index("idx_ledger_user", "user_id"),
    )


class OutboxEventModel(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(_enum(OutboxKind), nullable=False)
    bid_id = Column(Integer, nullable=False)
    payload = Column(JSON, default=dict, nullable=False)
    status = Column(_enum(OutboxStatus), default=OutboxStatus.PENDING, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, server_default=func.now())
    processed_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("bid_id", "kind", name="uq_outbox_bid_kind"),
        Index("idx_outbox_status", "status"),
    )
