"""
Shared test fixtures.

Uses a file-backed SQLite database per test (via aiosqlite) so tests run
without Docker / PostgreSQL / Redis.  Several sessions can work on the
same file at once, which the concurrency tests rely on.  Redis is
replaced by ``FakeRedis``, an in-process double covering the commands the
lock, the rate limiter and the position cache issue.
"""

import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from khidma.domain.entities import Coordinate, PriceBreakdown
from khidma.domain.enums import GoodsType, UserRole, VehicleType
from khidma.infrastructure.database import Base
from khidma.infrastructure.models import (
    CarrierModel,
    ShipperModel,
    UserModel,
    VehicleModel,
)
from khidma.services.geolocation import GeolocationService
from khidma.services.identity import IdentityResolver
from khidma.services.orders import OrderDraft
from khidma.services.quotes import QuoteDraft

DAKAR = Coordinate(14.6928, -17.4467)
THIES = Coordinate(14.7886, -16.9282)
SAINT_LOUIS = Coordinate(16.0179, -16.4896)

# 260 000 + 18% VAT
BREAKDOWN = PriceBreakdown(
    base_price=45_000,
    distance_price=150_000,
    weight_price=50_000,
    fuel_surcharge=15_000,
    subtotal=260_000,
    taxes=46_800,
    total_price=306_800,
)


# ── Redis double ──────────────────────────────────────────────────────


class FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands: list[tuple] = []

    def incr(self, key):
        self.commands.append(("incr", key))
        return self

    def expire(self, key, seconds, nx=False):
        self.commands.append(("expire", key, seconds, nx))
        return self

    def pttl(self, key):
        self.commands.append(("pttl", key))
        return self

    async def execute(self):
        if self.redis.fail:
            raise self.redis.fail
        results = [self.redis._run(*command) for command in self.commands]
        self.commands = []
        return results


class FakeRedis:
    """Single-process stand-in for the subset of Redis the app uses."""

    def __init__(self):
        self.data: dict[str, object] = {}
        self.expiry: dict[str, float] = {}
        self.fail: Optional[Exception] = None

    def _alive(self, key) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    def _run(self, name, key, *args):
        if name == "incr":
            value = int(self.data[key]) + 1 if self._alive(key) else 1
            self.data[key] = value
            return value
        if name == "expire":
            seconds, nx = args
            if not self._alive(key) or (nx and key in self.expiry):
                return 0
            self.expiry[key] = time.monotonic() + seconds
            return 1
        if name == "pttl":
            if not self._alive(key):
                return -2
            if key not in self.expiry:
                return -1
            return int((self.expiry[key] - time.monotonic()) * 1000)
        raise NotImplementedError(name)

    async def set(self, key, value, nx=False, ex=None):
        if self.fail:
            raise self.fail
        if nx and self._alive(key):
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = time.monotonic() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def get(self, key):
        if self.fail:
            raise self.fail
        return self.data.get(key) if self._alive(key) else None

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def eval(self, script, numkeys, *args):
        # only the lock's compare-and-delete script is ever sent
        key, token = args[0], args[1]
        if self._alive(key) and self.data[key] == token:
            return await self.delete(key)
        return 0

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'khidma.db'}", poolclass=NullPool
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def clock():
    # a Monday, so no weekend surcharge
    return FrozenClock(datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc))


async def _user(session, email, first, last, role) -> UserModel:
    user = UserModel(email=email, first_name=first, last_name=last, role=role)
    session.add(user)
    await session.flush()
    return user


async def _carrier(session, email, first, company, plate, vehicle_type, tons):
    user = await _user(session, email, first, "Transport", UserRole.TRANSPORTEUR)
    carrier = CarrierModel(user_id=user.id, company_name=company)
    session.add(carrier)
    await session.flush()
    vehicle = VehicleModel(
        carrier_id=carrier.id,
        vehicle_type=vehicle_type,
        plate_number=plate,
        capacity_tons=tons,
        volume_m3=50,
        daily_rate=90_000,
    )
    session.add(vehicle)
    await session.flush()
    return user, vehicle


@pytest_asyncio.fixture
async def world(db_session):
    """Admin, one shipper with addresses in Dakar and Thiès, and three
    carriers with one 10 t truck each.  Only ids are kept: ORM instances
    expire when a test provokes a rollback."""
    admin = await _user(db_session, "admin@khidma.sn", "Awa", "Ndiaye", UserRole.ADMIN)
    shipper_user = await _user(
        db_session, "moussa@example.sn", "Moussa", "Diop", UserRole.EXPEDITEUR
    )
    db_session.add(ShipperModel(user_id=shipper_user.id, company_name="Huilerie du Cayor"))
    await db_session.flush()

    carriers = []
    for index, name in enumerate(("Ousmane", "Aminata", "Cheikh"), start=1):
        user, vehicle = await _carrier(
            db_session,
            f"carrier{index}@example.sn",
            name,
            f"Transports {name}",
            f"DK-{1000 + index}-A",
            VehicleType.CAMION_10T,
            10,
        )
        carriers.append((user, vehicle))

    geo = GeolocationService(db_session)
    dakar = await geo.add_address(shipper_user.id, "Usine", "Dakar", DAKAR, region="Dakar")
    thies = await geo.add_address(shipper_user.id, "Dépôt", "Thiès", THIES, region="Thiès")
    await db_session.commit()

    resolver = IdentityResolver(db_session)
    return SimpleNamespace(
        admin=await resolver.resolve(admin.id),
        shipper=await resolver.resolve(shipper_user.id),
        carriers=[await resolver.resolve(user.id) for user, _ in carriers],
        vehicle_ids=[vehicle.id for _, vehicle in carriers],
        dakar_id=dakar.id,
        thies_id=thies.id,
    )


@pytest_asyncio.fixture
async def client(session_factory, redis, world):
    """AsyncClient against the app, backed by the per-test SQLite file and
    the Redis double."""
    from khidma.api.app import create_app
    from khidma.api.dependencies import get_db
    from khidma.api.middleware import limiter
    from khidma.infrastructure.redis_client import get_redis

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _test_redis():
        return redis

    limiter.reset()
    app = create_app()
    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[get_redis] = _test_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def as_user(actor) -> dict[str, str]:
    return {"X-User-Id": str(actor.user_id)}


def order_draft(world, clock, **overrides) -> OrderDraft:
    """Dakar -> Thiès, 10 t of cement, leaving in two days."""
    values = dict(
        departure_address_id=world.dakar_id,
        destination_address_id=world.thies_id,
        departure_date=clock.now + timedelta(days=2),
        goods_type=GoodsType.MATERIAUX_CONSTRUCTION,
        goods_description="Ciment en sacs de 50 kg",
        weight_kg=10_000,
    )
    values.update(overrides)
    return OrderDraft(**values)


def quote_draft(order_id, clock, vehicle_id=None, **overrides) -> QuoteDraft:
    values = dict(
        order_id=order_id,
        breakdown=BREAKDOWN,
        valid_until=clock.now + timedelta(days=7),
        vehicle_id=vehicle_id,
    )
    values.update(overrides)
    return QuoteDraft(**values)
