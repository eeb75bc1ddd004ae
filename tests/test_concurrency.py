"""
Concurrency safety tests.

Demonstrates:
1. Bid acceptance is a compare-and-swap: a session holding a stale view
   of a bid cannot accept it once a competitor has won.
2. Listing claims are first-writer-wins, taken load first then truck,
   before the bid row; a database lock race surfaces as a conflict.
3. Distributed lock prevents two dispatcher cycles at once.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from loadmatch.domain.entities import utcnow
from loadmatch.domain.enums import BidStatus, BidType, OutboxStatus, Urgency, UserType
from loadmatch.domain.errors import ConflictError
from loadmatch.infrastructure.database import Base
from loadmatch.infrastructure.locks import DistributedLock, LockNotAcquired
from loadmatch.infrastructure.models import BidModel, LoadModel, TruckModel, UserModel
from loadmatch.infrastructure.repositories import (
    BidRepository,
    LoadRepository,
    OutboxRepository,
    TruckRepository,
)
from loadmatch.services.bidding import BidLifecycleEngine
from loadmatch.services.outbox import OutboxProcessor
from loadmatch.workers import dispatcher
from tests.conftest import FakeNotifier, make_engine, make_load, make_truck, make_user


class _DeadlockDetected(Exception):
    sqlstate = "40P01"


class _SerializationFailure(Exception):
    pgcode = "40001"


class _DiskFull(Exception):
    sqlstate = "53100"


@pytest_asyncio.fixture
async def file_sessions(tmp_path):
    """Independent sessions over one on-disk database."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path}/race.db", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def two_bids(file_sessions):
    """One load, two trucks, two pending TRUCK_REQUESTs on it."""
    async with file_sessions() as session:
        owner = await make_user(session, UserType.TRANSPORTER)
        first = await make_user(session, UserType.TRUCKER)
        second = await make_user(session, UserType.TRUCKER)
        load = await make_load(session, owner)
        engine = BidLifecycleEngine(session)
        b1 = await engine.create_bid(
            first, BidType.TRUCK_REQUEST, load.id, (await make_truck(session, first)).id, 30000
        )
        b2 = await engine.create_bid(
            second, BidType.TRUCK_REQUEST, load.id, (await make_truck(session, second)).id, 31000
        )
        await session.commit()
        return owner.id, load.id, b1.id, b2.id


class TestAcceptRace:
    """Two owners' sessions racing to accept competing bids."""

    @pytest.mark.asyncio
    async def test_stale_session_loses_the_swap(self, file_sessions, two_bids):
        owner_id, load_id, b1_id, b2_id = two_bids

        async with file_sessions() as late:
            stale_bid = await late.get(BidModel, b2_id)
            assert stale_bid.status is BidStatus.PENDING
            await late.commit()

            async with file_sessions() as early:
                owner = await early.get(UserModel, owner_id)
                await BidLifecycleEngine(early).accept_bid(b1_id, owner)
                await early.commit()

            # the late session still believes b2 is pending
            assert stale_bid.status is BidStatus.PENDING
            assert await BidRepository(late).transition(b2_id, BidStatus.ACCEPTED) is False
            assert await LoadRepository(late).claim(load_id, b2_id) is False
            await late.rollback()

    @pytest.mark.asyncio
    async def test_engine_refuses_the_loser(self, file_sessions, two_bids):
        owner_id, load_id, b1_id, b2_id = two_bids

        async with file_sessions() as late:
            await late.get(BidModel, b2_id)
            await late.commit()

            async with file_sessions() as early:
                owner = await early.get(UserModel, owner_id)
                await BidLifecycleEngine(early).accept_bid(b1_id, owner)
                await early.commit()

            loser_owner = await late.get(UserModel, owner_id)
            with pytest.raises(ConflictError):
                await BidLifecycleEngine(late).accept_bid(b2_id, loser_owner)
            await late.rollback()

        async with file_sessions() as check:
            load = await check.get(LoadModel, load_id)
            assert load.current_bid_id == b1_id
            assert (await check.get(BidModel, b1_id)).status is BidStatus.ACCEPTED
            loser = await check.get(BidModel, b2_id)
            assert loser.status is BidStatus.REJECTED
            assert loser.rejection_reason.value == "OTHER_BID_ACCEPTED"

    @pytest.mark.asyncio
    async def test_matched_truck_loser_leaves_its_load_free(self, file_sessions):
        """A request from an already matched truck rolls its load claim back."""
        async with file_sessions() as session:
            trucker = await make_user(session, UserType.TRUCKER)
            first_owner = await make_user(session, UserType.TRANSPORTER)
            second_owner = await make_user(session, UserType.TRANSPORTER)
            truck = await make_truck(session, trucker)
            first_load = await make_load(session, first_owner)
            second_load = await make_load(session, second_owner)
            x = await BidLifecycleEngine(session).create_bid(
                trucker, BidType.TRUCK_REQUEST, first_load.id, truck.id, 30000
            )
            await session.commit()
            ids = (
                trucker.id, first_owner.id, second_owner.id,
                second_load.id, truck.id, x.id,
            )
        trucker_id, first_id, second_id, second_load_id, truck_id, x_id = ids

        async with file_sessions() as early:
            owner = await early.get(UserModel, first_id)
            await BidLifecycleEngine(early).accept_bid(x_id, owner)
            await early.commit()

        async with file_sessions() as session:
            trucker = await session.get(UserModel, trucker_id)
            y = await BidLifecycleEngine(session).create_bid(
                trucker, BidType.TRUCK_REQUEST, second_load_id, truck_id, 31000
            )
            await session.commit()
            y_id = y.id

        async with file_sessions() as late:
            loser_owner = await late.get(UserModel, second_id)
            with pytest.raises(ConflictError, match="Truck has already been matched"):
                await BidLifecycleEngine(late).accept_bid(y_id, loser_owner)
            await late.commit()

        async with file_sessions() as check:
            assert (await check.get(LoadModel, second_load_id)).current_bid_id is None
            assert (await check.get(TruckModel, truck_id)).current_bid_id == x_id
            assert (await check.get(BidModel, y_id)).status is BidStatus.PENDING

    @pytest.mark.asyncio
    async def test_listings_claimed_before_bid_row(
        self, db_session, transporter, trucker, monkeypatch
    ):
        calls: list[str] = []

        def recording(name, original):
            async def wrapper(self, *args, **kwargs):
                calls.append(name)
                return await original(self, *args, **kwargs)
            return wrapper

        monkeypatch.setattr(LoadRepository, "claim", recording("load", LoadRepository.claim))
        monkeypatch.setattr(TruckRepository, "claim", recording("truck", TruckRepository.claim))
        monkeypatch.setattr(
            BidRepository, "transition", recording("bid", BidRepository.transition)
        )
        monkeypatch.setattr(
            BidRepository, "reject_competing", recording("reject", BidRepository.reject_competing)
        )

        load = await make_load(db_session, transporter)
        truck = await make_truck(db_session, trucker)
        engine = BidLifecycleEngine(db_session)
        bid = await engine.create_bid(trucker, BidType.TRUCK_REQUEST, load.id, truck.id, 100)
        await engine.accept_bid(bid.id, transporter)

        assert calls == ["load", "truck", "bid", "reject"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [_DeadlockDetected, _SerializationFailure])
    async def test_lock_race_reported_as_conflict(
        self, db_session, transporter, trucker, monkeypatch, error
    ):
        load = await make_load(db_session, transporter)
        truck = await make_truck(db_session, trucker)
        engine = BidLifecycleEngine(db_session)
        bid = await engine.create_bid(trucker, BidType.TRUCK_REQUEST, load.id, truck.id, 100)

        monkeypatch.setattr(
            TruckRepository,
            "claim",
            AsyncMock(side_effect=DBAPIError("UPDATE trucks", {}, error())),
        )
        with pytest.raises(ConflictError, match="accepted concurrently"):
            await engine.accept_bid(bid.id, transporter)

        refreshed = await db_session.get(BidModel, bid.id, populate_existing=True)
        assert refreshed.status is BidStatus.PENDING
        fresh = await LoadRepository(db_session).get_by_id(load.id, fresh=True)
        assert fresh.current_bid_id is None

    @pytest.mark.asyncio
    async def test_other_database_errors_propagate(
        self, db_session, transporter, trucker, monkeypatch
    ):
        load = await make_load(db_session, transporter)
        truck = await make_truck(db_session, trucker)
        engine = BidLifecycleEngine(db_session)
        bid = await engine.create_bid(trucker, BidType.TRUCK_REQUEST, load.id, truck.id, 100)

        monkeypatch.setattr(
            TruckRepository,
            "claim",
            AsyncMock(side_effect=DBAPIError("UPDATE trucks", {}, _DiskFull())),
        )
        with pytest.raises(DBAPIError):
            await engine.accept_bid(bid.id, transporter)

    @pytest.mark.asyncio
    async def test_first_claim_wins(self, db_session, transporter):
        load = await make_load(db_session, transporter)
        loads = LoadRepository(db_session)
        assert await loads.claim(load.id, 101) is True
        assert await loads.claim(load.id, 102) is False
        fresh = await loads.get_by_id(load.id, fresh=True)
        assert fresh.current_bid_id == 101


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:test-key", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is True

        mock_redis.eval.assert_called_once()

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass


def _redis(acquired: bool) -> AsyncMock:
    mock_redis = AsyncMock()
    mock_redis.set = AsyncMock(return_value=acquired)
    mock_redis.eval = AsyncMock(return_value=1)
    return mock_redis


class TestDispatchCycle:
    @pytest.mark.asyncio
    async def test_activates_and_drains(self, session_factory):
        async with session_factory() as session:
            owner = await make_user(session, UserType.TRANSPORTER, tokens=[{"token": "tok-owner"}])
            trucker = await make_user(session, UserType.TRUCKER)
            scheduled = await make_load(
                session,
                owner,
                urgency=Urgency.SCHEDULED,
                schedule_date=utcnow() + timedelta(hours=1),
            )
            scheduled.schedule_date = utcnow() - timedelta(minutes=1)
            load = await make_load(session, owner)
            bid = await BidLifecycleEngine(session).create_bid(
                trucker, BidType.TRUCK_REQUEST, load.id, (await make_truck(session, trucker)).id, 25000
            )
            await session.commit()

        notifier = FakeNotifier()
        stats = await dispatcher.run_dispatch_cycle(
            session_factory=session_factory, redis=_redis(True), notifier=notifier
        )

        assert stats == {"activated": 1, "done": 1, "failed": 0}
        assert [push["to"] for push in notifier.sent] == ["tok-owner"]
        async with session_factory() as session:
            assert (await session.get(LoadModel, scheduled.id)).is_active is True
            [event] = await OutboxRepository(session).list_for_bid(bid.id)
            assert event.status is OutboxStatus.DONE

    @pytest.mark.asyncio
    async def test_skips_when_lock_is_held(self, session_factory):
        redis = _redis(False)
        stats = await dispatcher.run_dispatch_cycle(
            session_factory=session_factory, redis=redis, notifier=FakeNotifier()
        )
        assert stats == {}
        redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_lock_released_after_error(self, session_factory, monkeypatch):
        monkeypatch.setattr(
            OutboxProcessor, "drain", AsyncMock(side_effect=RuntimeError("boom"))
        )
        redis = _redis(True)
        stats = await dispatcher.run_dispatch_cycle(
            session_factory=session_factory, redis=redis, notifier=FakeNotifier()
        )
        assert stats == {"activated": 0, "done": 0, "failed": 0}
        redis.eval.assert_awaited_once()
