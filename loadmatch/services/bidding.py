"""
Bid Lifecycle Engine
====================

State machine::

    PENDING ──accept──► ACCEPTED   (terminal)
       │
       └────reject──► REJECTED    (terminal)

Direction
---------
* ``LOAD_BID``      -- placed by the transporter: initiator owns the load,
                       targets a truck; ``offered_to`` = truck owner.
                       Counts against the truck's bid quota.
* ``TRUCK_REQUEST`` -- placed by the trucker: initiator owns the truck,
                       targets a load;
                       ``offered_to`` = load transporter.

Acceptance
----------
All inside the caller's transaction:

1. CAS ``current_bid_id NULL -> bid`` on the load, then on the truck.
2. CAS ``bids.status PENDING -> ACCEPTED``.
3. Bulk-reject every other PENDING bid on the same load or truck.

Steps 1-3 share one SAVEPOINT; any conflict rolls all three back.
Listings are always locked load first, truck second, before any bid
row, so concurrent accepts queue on the same rows instead of crossing.
The loser of any race gets ``ConflictError``, including a deadlock or
serialization failure reported by the database.
Reward settlement and chat bootstrap then run in their own SAVEPOINTs;
a failure there is logged and parked in the outbox for retry, never
surfaced.  Notifications always go through the outbox.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.config import settings
from loadmatch.domain.entities import bid_target, check_transition, initiator_side, utcnow
from loadmatch.domain.enums import (
    BidStatus,
    BidType,
    LedgerReason,
    ListingKind,
    MaterialType,
    OutboxKind,
    RejectionReason,
)
from loadmatch.domain.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from loadmatch.infrastructure.models import BidModel, LoadModel, TruckModel, UserModel
from loadmatch.infrastructure.repositories import (
    BidRepository,
    LoadRepository,
    OutboxRepository,
    TruckRepository,
)
from loadmatch.services.chat import ChatBootstrap
from loadmatch.services.rewards import RewardLedger

logger = logging.getLogger(__name__)

# deadlock_detected, serialization_failure
_RETRYABLE_SQLSTATES = frozenset({"40P01", "40001"})


def _is_lock_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in _RETRYABLE_SQLSTATES


def _amount(value: Any, label: str = "Bidded amount") -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not math.isfinite(amount) or amount <= 0:
        raise ValidationError(f"{label} must be a positive number")
    return amount


def _optional_enum(enum_cls, value, label: str):
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}") from None


class BidLifecycleEngine:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.bids = BidRepository(session)
        self.loads = LoadRepository(session)
        self.trucks = TruckRepository(session)
        self.outbox = OutboxRepository(session)
        self.rewards = RewardLedger(session)
        self.chat = ChatBootstrap(session)

    # ── Lookups ───────────────────────────────────────────────────────

    async def _bid(self, bid_id: int, fresh: bool = False) -> BidModel:
        bid = await self.bids.get_by_id(bid_id, fresh=fresh)
        if bid is None:
            raise NotFoundError("Bid not found")
        return bid

    async def get_bid(self, bid_id: int, user: UserModel) -> BidModel:
        bid = await self._bid(bid_id)
        if user.id not in (bid.bid_by, bid.offered_to):
            raise AuthorizationError("You are not authorized to view this bid")
        return bid

    async def list_my_bids(self, user: UserModel) -> list[BidModel]:
        return await self.bids.list_by_bidder(user.id)

    async def list_offers(
        self, user: UserModel, status: Optional[BidStatus] = None
    ) -> list[BidModel]:
        status = _optional_enum(BidStatus, status, "status")
        return await self.bids.list_offers(user.id, status)

    async def list_load_bids(self, load_id: int, user: UserModel) -> list[BidModel]:
        load = await self.loads.get_by_id(load_id)
        if load is None:
            raise NotFoundError("Load not found")
        if load.transporter_id != user.id:
            raise AuthorizationError("You are not authorized to view bids on this load")
        return await self.bids.list_for_load(load_id)

    async def search_bids(
        self,
        user: UserModel,
        *,
        status=None,
        bid_type=None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        material_type=None,
        source: Optional[str] = None,
        destination: Optional[str] = None,
    ) -> list[BidModel]:
        if (
            min_amount is not None
            and max_amount is not None
            and min_amount > max_amount
        ):
            raise ValidationError("Minimum amount cannot exceed maximum amount")
        return await self.bids.search(
            user.id,
            status=_optional_enum(BidStatus, status, "status"),
            bid_type=_optional_enum(BidType, bid_type, "bid type"),
            min_amount=min_amount,
            max_amount=max_amount,
            material_type=_optional_enum(MaterialType, material_type, "material type"),
            source=source,
            destination=destination,
        )

    async def bid_statistics(self, user: UserModel) -> list[dict[str, Any]]:
        return await self.bids.statistics(user.id)

    # ── Create ────────────────────────────────────────────────────────

    async def create_bid(
        self,
        initiator: UserModel,
        bid_type: BidType,
        load_id: int,
        truck_id: int,
        bidded_total: Any,
        *,
        advance_percentage: Optional[float] = None,
        diesel_liters: Optional[float] = None,
        note: Optional[str] = None,
    ) -> BidModel:
        target = bid_target(bid_type)
        bid_type = BidType(bid_type)
        amount = _amount(bidded_total)

        load = await self.loads.get_by_id(load_id, fresh=True)
        if load is None:
            raise NotFoundError("Load not found")
        truck = await self.trucks.get_by_id(truck_id, fresh=True)
        if truck is None:
            raise NotFoundError("Truck not found")

        owns_load = load.transporter_id == initiator.id
        owns_truck = truck.owner_id == initiator.id
        if owns_load and owns_truck:
            raise ValidationError("Cannot bid between your own load and truck")
        if initiator_side(bid_type) is ListingKind.LOAD and not owns_load:
            raise ValidationError(
                f"{bid_type.value} must be placed by the load's transporter"
            )
        if initiator_side(bid_type) is ListingKind.TRUCK and not owns_truck:
            raise ValidationError(
                f"{bid_type.value} must be placed by the truck's owner"
            )

        listing: LoadModel | TruckModel = truck if target is ListingKind.TRUCK else load
        noun = target.value.lower()
        if listing.current_bid_id is not None:
            raise ConflictError(f"This {noun} has already been matched")
        repository = self.trucks if target is ListingKind.TRUCK else self.loads
        if not await repository.is_fresh(listing.id, utcnow()):
            raise ConflictError(f"This {noun} is no longer accepting bids")

        if target is ListingKind.TRUCK and not await self.trucks.reserve_bid_slot(
            truck.id, settings.truck_bid_quota
        ):
            raise ConflictError("This truck has reached its bid limit")

        offered_to = truck.owner_id if target is ListingKind.TRUCK else load.transporter_id
        bid = await self.bids.create(
            BidModel(
                bid_type=bid_type,
                bid_by=initiator.id,
                offered_to=offered_to,
                load_id=load.id,
                truck_id=truck.id,
                bidded_total=amount,
                advance_percentage=advance_percentage,
                diesel_liters=diesel_liters,
                note=note,
                material_type=load.material_type,
                weight=load.weight,
                offered_total=load.offered_total,
                source_place=load.source_place,
                source_lat=load.source_lat,
                source_lng=load.source_lng,
                destination_place=load.destination_place,
                destination_lat=load.destination_lat,
                destination_lng=load.destination_lng,
                status=BidStatus.PENDING,
            )
        )
        if target is ListingKind.TRUCK:
            await self.trucks.add_bid(truck.id, bid.id)
        else:
            await self.loads.add_bid(load.id, bid.id)
        await self.outbox.enqueue(OutboxKind.NOTIFY_BID_PLACED, bid.id)

        logger.info(
            "Bid %s (%s) by user %s on %s %s, offered to %s",
            bid.id, bid_type.value, initiator.id, noun, listing.id, offered_to,
        )
        return bid

    # ── Side-effect steps ─────────────────────────────────────────────

    async def _attempt(
        self,
        kind: OutboxKind,
        bid_id: int,
        step: Callable[[], Awaitable[Any]],
        payload: Optional[dict] = None,
    ) -> bool:
        """Run *step* in a SAVEPOINT; on failure park it in the outbox."""
        try:
            async with self.session.begin_nested():
                await step()
        except Exception:
            logger.exception(
                "%s failed for bid %s, queued for retry", kind.value, bid_id
            )
            await self.outbox.enqueue(kind, bid_id, payload)
            return False
        return True

    async def _settle(self, bid: BidModel, reason: LedgerReason) -> bool:
        user_id, bid_id = bid.bid_by, bid.id
        return await self._attempt(
            OutboxKind.SETTLE_REWARD,
            bid_id,
            lambda: self.rewards.settle(user_id, bid_id, reason),
            {"user_id": user_id, "reason": reason.value},
        )

    # ── Transitions ───────────────────────────────────────────────────

    async def accept_bid(self, bid_id: int, user: UserModel) -> BidModel:
        bid = await self._bid(bid_id, fresh=True)
        if bid.offered_to != user.id:
            raise AuthorizationError("You are not authorized to accept this bid")
        if bid.status is BidStatus.ACCEPTED:
            raise ConflictError("Bid has already been accepted")
        check_transition(bid.status, BidStatus.ACCEPTED)

        try:
            async with self.session.begin_nested():
                if not await self.loads.claim(bid.load_id, bid.id):
                    raise ConflictError(
                        "Load has already been matched with another bid"
                    )
                if not await self.trucks.claim(bid.truck_id, bid.id):
                    raise ConflictError(
                        "Truck has already been matched with another bid"
                    )
                if not await self.bids.transition(bid.id, BidStatus.ACCEPTED):
                    raise ConflictError("Bid is no longer pending")
                rejected = await self.bids.reject_competing(
                    bid.id, bid.load_id, bid.truck_id
                )
        except DBAPIError as exc:
            if not _is_lock_conflict(exc):
                raise
            logger.warning("Accept of bid %s lost a lock race: %s", bid.id, exc.orig)
            raise ConflictError("Bid was accepted concurrently, please retry") from exc

        bid = await self._bid(bid.id, fresh=True)
        await self._settle(bid, LedgerReason.BID_ACCEPTED)
        await self._attempt(
            OutboxKind.BOOTSTRAP_CHAT, bid.id, lambda: self.chat.on_bid_accepted(bid)
        )
        await self.outbox.enqueue(OutboxKind.NOTIFY_BID_ACCEPTED, bid.id)
        for rejected_id in rejected:
            await self.outbox.enqueue(OutboxKind.NOTIFY_BID_STATUS, rejected_id)

        logger.info(
            "Bid %s accepted by user %s; %d competing bid(s) rejected",
            bid.id, user.id, len(rejected),
        )
        return await self._bid(bid.id, fresh=True)

    # Incoming offers are bids addressed to the caller.
    accept_offer = accept_bid

    async def reject_bid(
        self,
        bid_id: int,
        user: UserModel,
        rejection_reason: Any = RejectionReason.OTHER,
        rejection_note: Optional[str] = None,
    ) -> BidModel:
        bid = await self._bid(bid_id, fresh=True)
        if bid.offered_to != user.id:
            raise AuthorizationError("You are not authorized to reject this bid")
        reason = _optional_enum(RejectionReason, rejection_reason, "rejection reason")
        if reason is None:
            reason = RejectionReason.OTHER
        if reason is RejectionReason.OTHER_BID_ACCEPTED:
            raise ValidationError("Rejection reason is reserved")
        check_transition(bid.status, BidStatus.REJECTED)

        if not await self.bids.transition(
            bid.id,
            BidStatus.REJECTED,
            rejection_reason=reason,
            rejection_note=rejection_note,
        ):
            raise ConflictError("Bid is no longer pending")

        bid = await self._bid(bid.id, fresh=True)
        await self._settle(bid, LedgerReason.BID_REJECTED)
        await self.outbox.enqueue(OutboxKind.NOTIFY_BID_STATUS, bid.id)
        logger.info("Bid %s rejected by user %s (%s)", bid.id, user.id, reason.value)
        return bid

    async def update_status(
        self,
        bid_id: int,
        user: UserModel,
        status: Any,
        rejection_reason: Any = None,
        rejection_note: Optional[str] = None,
    ) -> BidModel:
        status = _optional_enum(BidStatus, status, "status")
        if status is BidStatus.ACCEPTED:
            return await self.accept_bid(bid_id, user)
        if status is BidStatus.REJECTED:
            return await self.reject_bid(
                bid_id, user, rejection_reason or RejectionReason.OTHER, rejection_note
            )
        raise ValidationError("Status must be ACCEPTED or REJECTED")

    # ── Owner edits ───────────────────────────────────────────────────

    async def update_bid(
        self,
        bid_id: int,
        user: UserModel,
        *,
        bidded_total: Any = None,
        note: Optional[str] = None,
    ) -> BidModel:
        bid = await self._bid(bid_id, fresh=True)
        if bid.bid_by != user.id:
            raise AuthorizationError("You are not authorized to update this bid")
        if bid.status is not BidStatus.PENDING:
            raise ConflictError(f"Cannot update a bid that is {bid.status.value}")
        if bidded_total is not None:
            bid.bidded_total = _amount(bidded_total)
        if note is not None:
            bid.note = note
        await self.session.flush()
        return bid

    async def delete_bid(self, bid_id: int, user: UserModel) -> None:
        bid = await self._bid(bid_id, fresh=True)
        if bid.bid_by != user.id:
            raise AuthorizationError("You are not authorized to delete this bid")
        if bid.status is BidStatus.ACCEPTED:
            raise ConflictError("Accepted bids cannot be deleted")
        await self.bids.delete(bid)
        logger.info("Bid %s deleted by user %s", bid_id, user.id)
