"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Race safety
-----------
Every write that decides a winner is a single conditional UPDATE whose
``rowcount`` is the verdict (status ``PENDING -> X``, ``current_bid_id IS
NULL -> bid``, ``total_bids < quota``).  Bulk updates skip session
synchronisation, so callers re-read rows with ``fresh=True`` afterwards.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from geoalchemy2.functions import ST_DWithin, ST_MakePoint, ST_SetSRID
from sqlalchemy import (
    and_,
    delete,
    func,
    insert,
    literal_column,
    or_,
    select,
    true,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BidModel,
    ChatMessageModel,
    ChatModel,
    LoadModel,
    OutboxEventModel,
    RewardLedgerModel,
    TruckModel,
    UserModel,
    chat_bids,
    load_bids,
    truck_bids,
)
from loadmatch.config import settings
from loadmatch.domain.entities import GeoPoint, utcnow
from loadmatch.domain.enums import (
    BidStatus,
    LedgerReason,
    MessageType,
    OutboxKind,
    OutboxStatus,
    RejectionReason,
    Urgency,
)
from loadmatch.domain.geo import covering_cells

# PostGIS measures on the spheroid; pad so the prefilter is a superset of
# the Haversine circle.
POSTGIS_RADIUS_PADDING = 1.005

_NO_SYNC = {"synchronize_session": False}


def _dialect_name(session: AsyncSession) -> str:
    bind = session.bind
    return bind.dialect.name if bind is not None else ""


def _geography(lat_col, lng_col):
    return func.geography(
        ST_SetSRID(ST_MakePoint(lng_col, lat_col), literal_column("4326"))
    )


def spatial_prefilter(
    dialect_name: str,
    lat_col,
    lng_col,
    cell_col,
    center: GeoPoint,
    radius_km: float,
):
    """
    Store-side "maybe within radius" predicate.

    PostgreSQL uses the GIST-indexed geography expression; everything else
    falls back to H3 cell membership.  Either way the result is a superset
    that the caller narrows with Haversine.
    """
    if dialect_name == "postgresql":
        return ST_DWithin(
            _geography(lat_col, lng_col),
            _geography(center.latitude, center.longitude),
            radius_km * 1000 * POSTGIS_RADIUS_PADDING,
        )
    cells = covering_cells(
        center, radius_km, settings.h3_resolution, settings.h3_max_ring
    )
    if cells is None:
        return true()
    return cell_col.in_(cells)


def load_is_fresh(now: datetime):
    return and_(
        LoadModel.expires_at > now,
        or_(
            LoadModel.urgency == Urgency.IMMEDIATE,
            LoadModel.schedule_date <= now,
        ),
    )


def truck_is_fresh(now: datetime):
    return TruckModel.expires_at > now


def _apply_filters(query, model, filters: Optional[dict[str, Any]]):
    for column, value in (filters or {}).items():
        if value is not None:
            query = query.where(getattr(model, column) == value)
    return query


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, user_id: int, fresh: bool = False
    ) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id, populate_existing=fresh)

    async def add_coins(self, user_id: int, delta: int) -> bool:
        """Atomic ``bl_coins += delta``; no read-modify-write."""
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(bl_coins=UserModel.bl_coins + delta)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1


class LoadRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, load: LoadModel) -> LoadModel:
        self.session.add(load)
        await self.session.flush()
        return load

    async def get_by_id(
        self, load_id: int, fresh: bool = False
    ) -> Optional[LoadModel]:
        return await self.session.get(LoadModel, load_id, populate_existing=fresh)

    async def is_fresh(self, load_id: int, now: datetime) -> bool:
        """Posted, not expired, and past its schedule date if scheduled."""
        result = await self.session.execute(
            select(LoadModel.id).where(LoadModel.id == load_id, load_is_fresh(now))
        )
        return result.scalar_one_or_none() is not None

    async def list_by_transporter(self, transporter_id: int) -> list[LoadModel]:
        result = await self.session.execute(
            select(LoadModel)
            .where(LoadModel.transporter_id == transporter_id)
            .order_by(LoadModel.created_at.desc(), LoadModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_active(
        self, now: datetime, filters: Optional[dict[str, Any]] = None
    ) -> list[LoadModel]:
        query = select(LoadModel).where(load_is_fresh(now))
        query = _apply_filters(query, LoadModel, filters)
        result = await self.session.execute(
            query.order_by(LoadModel.created_at.desc(), LoadModel.id.desc())
        )
        return list(result.scalars().all())

    async def nearby_candidates(
        self,
        now: datetime,
        *,
        source: Optional[tuple[GeoPoint, float]] = None,
        destination: Optional[tuple[GeoPoint, float]] = None,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[LoadModel]:
        """Fresh loads whose source *or* destination may be within range."""
        dialect = _dialect_name(self.session)
        sides = []
        if source is not None:
            sides.append(
                spatial_prefilter(
                    dialect,
                    LoadModel.source_lat,
                    LoadModel.source_lng,
                    LoadModel.source_cell,
                    *source,
                )
            )
        if destination is not None:
            sides.append(
                spatial_prefilter(
                    dialect,
                    LoadModel.destination_lat,
                    LoadModel.destination_lng,
                    LoadModel.destination_cell,
                    *destination,
                )
            )
        query = select(LoadModel).where(load_is_fresh(now), or_(*sides))
        query = _apply_filters(query, LoadModel, filters)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def claim(self, load_id: int, bid_id: int) -> bool:
        """Set ``current_bid_id`` only if no bid has won this load yet."""
        result = await self.session.execute(
            update(LoadModel)
            .where(LoadModel.id == load_id, LoadModel.current_bid_id.is_(None))
            .values(current_bid_id=bid_id)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def add_bid(self, load_id: int, bid_id: int) -> None:
        await self.session.execute(
            insert(load_bids).values(load_id=load_id, bid_id=bid_id)
        )

    async def bid_ids(self, load_id: int) -> list[int]:
        result = await self.session.execute(
            select(load_bids.c.bid_id)
            .where(load_bids.c.load_id == load_id)
            .order_by(load_bids.c.bid_id)
        )
        return list(result.scalars().all())

    async def clear_bids(self, load_id: int) -> None:
        await self.session.execute(
            delete(load_bids).where(load_bids.c.load_id == load_id)
        )

    async def activate_due(self, now: datetime) -> int:
        """Flip ``is_active`` on scheduled loads whose date has come."""
        result = await self.session.execute(
            update(LoadModel)
            .where(
                LoadModel.is_active.is_(False),
                LoadModel.urgency == Urgency.SCHEDULED,
                LoadModel.schedule_date <= now,
            )
            .values(is_active=True)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount or 0

    async def delete(self, load: LoadModel) -> None:
        bid_ids = select(BidModel.id).where(BidModel.load_id == load.id)
        await self.session.execute(
            delete(load_bids).where(load_bids.c.load_id == load.id)
        )
        await self.session.execute(
            delete(truck_bids).where(truck_bids.c.bid_id.in_(bid_ids))
        )
        await self.session.execute(
            delete(BidModel)
            .where(BidModel.load_id == load.id)
            .execution_options(**_NO_SYNC)
        )
        await self.session.delete(load)
        await self.session.flush()


class TruckRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, truck: TruckModel) -> TruckModel:
        self.session.add(truck)
        await self.session.flush()
        return truck

    async def get_by_id(
        self, truck_id: int, fresh: bool = False
    ) -> Optional[TruckModel]:
        return await self.session.get(TruckModel, truck_id, populate_existing=fresh)

    async def is_fresh(self, truck_id: int, now: datetime) -> bool:
        result = await self.session.execute(
            select(TruckModel.id).where(TruckModel.id == truck_id, truck_is_fresh(now))
        )
        return result.scalar_one_or_none() is not None

    async def get_by_number(self, truck_number: str) -> Optional[TruckModel]:
        result = await self.session.execute(
            select(TruckModel).where(TruckModel.truck_number == truck_number)
        )
        return result.scalar_one_or_none()

    async def list_by_owner(self, owner_id: int) -> list[TruckModel]:
        result = await self.session.execute(
            select(TruckModel)
            .where(TruckModel.owner_id == owner_id)
            .order_by(TruckModel.created_at.desc(), TruckModel.id.desc())
        )
        return list(result.scalars().all())

    async def nearby_candidates(
        self,
        now: datetime,
        center: GeoPoint,
        radius_km: float,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[TruckModel]:
        query = select(TruckModel).where(
            truck_is_fresh(now),
            spatial_prefilter(
                _dialect_name(self.session),
                TruckModel.location_lat,
                TruckModel.location_lng,
                TruckModel.location_cell,
                center,
                radius_km,
            ),
        )
        query = _apply_filters(query, TruckModel, filters)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def claim(self, truck_id: int, bid_id: int) -> bool:
        """Set ``current_bid_id`` only if no bid has won this truck yet."""
        result = await self.session.execute(
            update(TruckModel)
            .where(TruckModel.id == truck_id, TruckModel.current_bid_id.is_(None))
            .values(current_bid_id=bid_id)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def reserve_bid_slot(self, truck_id: int, quota: int) -> bool:
        """Atomic ``total_bids += 1`` guarded by the quota."""
        result = await self.session.execute(
            update(TruckModel)
            .where(TruckModel.id == truck_id, TruckModel.total_bids < quota)
            .values(total_bids=TruckModel.total_bids + 1)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def restart_cycle(self, truck_id: int, expires_at: datetime) -> None:
        await self.session.execute(
            update(TruckModel)
            .where(TruckModel.id == truck_id)
            .values(total_bids=0, expires_at=expires_at)
            .execution_options(**_NO_SYNC)
        )

    async def add_bid(self, truck_id: int, bid_id: int) -> None:
        await self.session.execute(
            insert(truck_bids).values(truck_id=truck_id, bid_id=bid_id)
        )

    async def bid_ids(self, truck_id: int) -> list[int]:
        result = await self.session.execute(
            select(truck_bids.c.bid_id)
            .where(truck_bids.c.truck_id == truck_id)
            .order_by(truck_bids.c.bid_id)
        )
        return list(result.scalars().all())

    async def clear_bids(self, truck_id: int) -> None:
        await self.session.execute(
            delete(truck_bids).where(truck_bids.c.truck_id == truck_id)
        )

    async def delete(self, truck: TruckModel) -> None:
        bid_ids = select(BidModel.id).where(BidModel.truck_id == truck.id)
        await self.session.execute(
            delete(truck_bids).where(truck_bids.c.truck_id == truck.id)
        )
        await self.session.execute(
            delete(load_bids).where(load_bids.c.bid_id.in_(bid_ids))
        )
        await self.session.execute(
            delete(BidModel)
            .where(BidModel.truck_id == truck.id)
            .execution_options(**_NO_SYNC)
        )
        await self.session.delete(truck)
        await self.session.flush()


class BidRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, bid: BidModel) -> BidModel:
        self.session.add(bid)
        await self.session.flush()
        return bid

    async def get_by_id(
        self, bid_id: int, fresh: bool = False
    ) -> Optional[BidModel]:
        return await self.session.get(BidModel, bid_id, populate_existing=fresh)

    async def get_many(self, bid_ids: Iterable[int]) -> list[BidModel]:
        ids = list(bid_ids)
        if not ids:
            return []
        result = await self.session.execute(
            select(BidModel)
            .where(BidModel.id.in_(ids))
            .order_by(BidModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_by_bidder(self, user_id: int) -> list[BidModel]:
        result = await self.session.execute(
            select(BidModel)
            .where(BidModel.bid_by == user_id)
            .order_by(BidModel.created_at.desc(), BidModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_load(self, load_id: int) -> list[BidModel]:
        result = await self.session.execute(
            select(BidModel)
            .where(BidModel.load_id == load_id)
            .order_by(BidModel.created_at.desc(), BidModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_offers(
        self, user_id: int, status: Optional[BidStatus] = None
    ) -> list[BidModel]:
        query = select(BidModel).where(BidModel.offered_to == user_id)
        if status is not None:
            query = query.where(BidModel.status == status)
        result = await self.session.execute(
            query.order_by(BidModel.created_at.desc(), BidModel.id.desc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        user_id: int,
        *,
        status: Optional[BidStatus] = None,
        bid_type=None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        material_type=None,
        source: Optional[str] = None,
        destination: Optional[str] = None,
    ) -> list[BidModel]:
        query = select(BidModel).where(BidModel.bid_by == user_id)
        if status is not None:
            query = query.where(BidModel.status == status)
        if bid_type is not None:
            query = query.where(BidModel.bid_type == bid_type)
        if min_amount is not None:
            query = query.where(BidModel.bidded_total >= min_amount)
        if max_amount is not None:
            query = query.where(BidModel.bidded_total <= max_amount)
        if material_type is not None:
            query = query.where(BidModel.material_type == material_type)
        if source:
            query = query.where(BidModel.source_place.ilike(f"%{source}%"))
        if destination:
            query = query.where(
                BidModel.destination_place.ilike(f"%{destination}%")
            )
        result = await self.session.execute(
            query.order_by(BidModel.created_at.desc(), BidModel.id.desc())
        )
        return list(result.scalars().all())

    async def statistics(self, user_id: int) -> list[dict[str, Any]]:
        """Count / total / average amount grouped by status x type."""
        total_bids = func.count(BidModel.id).label("total_bids")
        result = await self.session.execute(
            select(
                BidModel.status,
                BidModel.bid_type,
                total_bids,
                func.sum(BidModel.bidded_total).label("total_amount"),
                func.avg(BidModel.bidded_total).label("average_amount"),
            )
            .where(BidModel.bid_by == user_id)
            .group_by(BidModel.status, BidModel.bid_type)
            .order_by(total_bids.desc())
        )
        return [
            {
                "status": row.status,
                "bid_type": row.bid_type,
                "total_bids": row.total_bids,
                "total_amount": float(row.total_amount or 0),
                "average_amount": round(float(row.average_amount or 0), 2),
            }
            for row in result.all()
        ]

    async def transition(
        self,
        bid_id: int,
        new_status: BidStatus,
        *,
        rejection_reason: Optional[RejectionReason] = None,
        rejection_note: Optional[str] = None,
    ) -> bool:
        """Compare-and-swap ``PENDING -> new_status``.  True if this call won."""
        values: dict[str, Any] = {"status": new_status}
        if new_status is BidStatus.REJECTED:
            values["rejection_reason"] = rejection_reason
            values["rejection_note"] = rejection_note
        result = await self.session.execute(
            update(BidModel)
            .where(BidModel.id == bid_id, BidModel.status == BidStatus.PENDING)
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        return result.rowcount == 1

    async def reject_competing(
        self, winner_id: int, load_id: int, truck_id: int
    ) -> list[int]:
        """Reject every other PENDING bid on the same load or truck."""
        competing = (
            select(BidModel.id)
            .where(
                BidModel.id != winner_id,
                BidModel.status == BidStatus.PENDING,
                or_(BidModel.load_id == load_id, BidModel.truck_id == truck_id),
            )
            .order_by(BidModel.id)
        )
        ids = list((await self.session.execute(competing)).scalars().all())
        if not ids:
            return []
        await self.session.execute(
            update(BidModel)
            .where(BidModel.id.in_(ids), BidModel.status == BidStatus.PENDING)
            .values(
                status=BidStatus.REJECTED,
                rejection_reason=RejectionReason.OTHER_BID_ACCEPTED,
            )
            .execution_options(**_NO_SYNC)
        )
        return ids

    async def delete(self, bid: BidModel) -> None:
        await self.session.execute(
            delete(load_bids).where(load_bids.c.bid_id == bid.id)
        )
        await self.session.execute(
            delete(truck_bids).where(truck_bids.c.bid_id == bid.id)
        )
        await self.session.delete(bid)
        await self.session.flush()


class ChatRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_pair(self, user_a: int, user_b: int) -> Optional[ChatModel]:
        low, high = sorted((user_a, user_b))
        result = await self.session.execute(
            select(ChatModel).where(
                ChatModel.participant_low == low,
                ChatModel.participant_high == high,
            )
        )
        return result.scalar_one_or_none()

    async def create_pair(self, user_a: int, user_b: int) -> ChatModel:
        low, high = sorted((user_a, user_b))
        chat = ChatModel(participant_low=low, participant_high=high)
        self.session.add(chat)
        await self.session.flush()
        return chat

    async def has_bid_message(self, chat_id: int, bid_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(ChatMessageModel)
            .where(
                ChatMessageModel.chat_id == chat_id,
                ChatMessageModel.bid_id == bid_id,
                ChatMessageModel.message_type == MessageType.BID_ACCEPTED,
            )
        )
        return (result.scalar() or 0) > 0

    async def add_message(
        self,
        chat: ChatModel,
        sender_id: int,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        bid_id: Optional[int] = None,
    ) -> ChatMessageModel:
        message = ChatMessageModel(
            chat_id=chat.id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            bid_id=bid_id,
        )
        self.session.add(message)
        chat.last_message_at = utcnow()
        await self.session.flush()
        return message

    async def link_bid(self, chat_id: int, bid_id: int) -> None:
        exists = await self.session.execute(
            select(chat_bids.c.bid_id).where(
                chat_bids.c.chat_id == chat_id, chat_bids.c.bid_id == bid_id
            )
        )
        if exists.first() is None:
            await self.session.execute(
                insert(chat_bids).values(chat_id=chat_id, bid_id=bid_id)
            )

    async def bid_ids(self, chat_id: int) -> list[int]:
        result = await self.session.execute(
            select(chat_bids.c.bid_id)
            .where(chat_bids.c.chat_id == chat_id)
            .order_by(chat_bids.c.bid_id)
        )
        return list(result.scalars().all())

    async def messages(self, chat_id: int) -> list[ChatMessageModel]:
        result = await self.session.execute(
            select(ChatMessageModel)
            .where(ChatMessageModel.chat_id == chat_id)
            .order_by(ChatMessageModel.id)
        )
        return list(result.scalars().all())


class LedgerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self, user_id: int, bid_id: int, delta: int, reason: LedgerReason
    ) -> bool:
        """Insert a ledger row; False if this (bid, reason) was already settled."""
        try:
            async with self.session.begin_nested():
                self.session.add(
                    RewardLedgerModel(
                        user_id=user_id, bid_id=bid_id, delta=delta, reason=reason
                    )
                )
        except IntegrityError:
            return False
        return True

    async def entries_for_user(self, user_id: int) -> list[RewardLedgerModel]:
        result = await self.session.execute(
            select(RewardLedgerModel)
            .where(RewardLedgerModel.user_id == user_id)
            .order_by(RewardLedgerModel.id)
        )
        return list(result.scalars().all())


class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(
        self, kind: OutboxKind, bid_id: int, payload: Optional[dict] = None
    ) -> bool:
        """Add an event unless one of this kind already exists for the bid."""
        existing = await self.session.execute(
            select(OutboxEventModel.id).where(
                OutboxEventModel.bid_id == bid_id, OutboxEventModel.kind == kind
            )
        )
        if existing.first() is not None:
            return False
        self.session.add(
            OutboxEventModel(kind=kind, bid_id=bid_id, payload=payload or {})
        )
        await self.session.flush()
        return True

    async def pending(self, limit: int) -> list[OutboxEventModel]:
        result = await self.session.execute(
            select(OutboxEventModel)
            .where(OutboxEventModel.status == OutboxStatus.PENDING)
            .order_by(OutboxEventModel.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_for_bid(self, bid_id: int) -> list[OutboxEventModel]:
        result = await self.session.execute(
            select(OutboxEventModel)
            .where(OutboxEventModel.bid_id == bid_id)
            .order_by(OutboxEventModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
