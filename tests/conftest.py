"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models are used as-is: the
geo prefilter falls back to H3 cell membership on SQLite, and the
pysqlite SAVEPOINT workaround from the SQLAlchemy docs is applied so
nested transactions behave as on PostgreSQL.
"""

import uuid
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from loadmatch.domain.entities import GeoPoint
from loadmatch.domain.enums import (
    MaterialType,
    TruckBodyType,
    UserType,
    VehicleBodyType,
    VehicleType,
)
from loadmatch.infrastructure.database import Base
from loadmatch.infrastructure.models import UserModel
from loadmatch.services.listings import ListingService

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

# Reference points (lat, lng)
DELHI = (28.6139, 77.2090)
JAIPUR = (26.9124, 75.7873)
MUMBAI = (19.0760, 72.8777)
PUNE = (18.5204, 73.8567)


def _unique_digits(width: int) -> str:
    return f"{uuid.uuid4().int % 10**width:0{width}d}"


def enable_sqlite_savepoints(engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINTs work."""

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(url: str = TEST_DB_URL, **kwargs):
    if url.endswith(":memory:"):
        kwargs.setdefault("poolclass", StaticPool)
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_async_engine(url, echo=False, **kwargs)
    enable_sqlite_savepoints(engine)
    return engine


# ── Factories ─────────────────────────────────────────────────────────


async def make_user(
    session: AsyncSession,
    user_type: UserType = UserType.TRANSPORTER,
    name: Optional[str] = None,
    tokens: Optional[list] = None,
    bl_coins: int = 500,
) -> UserModel:
    user = UserModel(
        name=name or f"{user_type.value.title()} {_unique_digits(4)}",
        mobile="9" + _unique_digits(9),
        user_type=user_type,
        bl_coins=bl_coins,
        device_tokens=tokens if tokens is not None else [],
    )
    session.add(user)
    await session.flush()
    return user


async def make_load(
    session: AsyncSession,
    owner: UserModel,
    source: tuple[float, float] = DELHI,
    destination: tuple[float, float] = JAIPUR,
    **overrides,
):
    fields = dict(
        material_type=MaterialType.STEEL,
        weight=18.0,
        source_place="Delhi",
        source=GeoPoint(*source),
        destination_place="Jaipur",
        destination=GeoPoint(*destination),
        vehicle_body_type=VehicleBodyType.OPEN_BODY,
        vehicle_type=VehicleType.TRUCK,
        number_of_wheels=10,
        offered_total=42000,
    )
    fields.update(overrides)
    return await ListingService(session).create_load(owner, **fields)


async def make_truck(
    session: AsyncSession,
    owner: UserModel,
    location: tuple[float, float] = DELHI,
    **overrides,
):
    fields = dict(
        permit="NATIONAL",
        truck_number="DL" + _unique_digits(8),
        location_place="Delhi",
        location=GeoPoint(*location),
        capacity=20.0,
        vehicle_body_type=VehicleBodyType.OPEN_BODY,
        truck_type=VehicleType.TRUCK,
        truck_body_type=TruckBodyType.OPEN_FULL_BODY,
        tyre_count=10,
    )
    fields.update(overrides)
    return await ListingService(session).create_truck(owner, **fields)


class FakeNotifier:
    """Records every push instead of calling Expo."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def send(self, tokens, title, body, data, channel_id="chat-messages"):
        if self.fail:
            raise RuntimeError("push transport down")
        for token in tokens:
            self.sent.append(
                {
                    "to": token,
                    "title": title,
                    "body": body,
                    "data": data,
                    "channelId": channel_id,
                }
            )
        return len(tokens)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine():
    engine = make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def transporter(db_session):
    return await make_user(
        db_session, UserType.TRANSPORTER, "Aarav", tokens=[{"token": "tok-transporter"}]
    )


@pytest_asyncio.fixture
async def trucker(db_session):
    return await make_user(
        db_session, UserType.TRUCKER, "Vikram", tokens=[{"token": "tok-trucker"}]
    )


@pytest.fixture
def notifier():
    return FakeNotifier()
