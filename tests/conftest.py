import json
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BACKGROUND_WORKERS_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date, time, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from showbuddy.core.config import settings
from showbuddy.core.database import create_engine, create_session_factory, drop_db, get_db, init_db
from showbuddy.core.security import ADMIN_ROLE, create_access_token
from showbuddy.main import app
from showbuddy.schemas import ShowingCreate
from showbuddy.services import MockPaymentGateway, SeatInventory, ShowingService, get_payment_gateway
from showbuddy.services import cache_service
from showbuddy.services.idempotency import idempotency_service
from showbuddy.services.payment_gateway import sign_intent


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """No backoff sleeps in tests"""
    monkeypatch.setattr(settings, "RETRY_INITIAL_DELAY", 0.0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file per test"""
    test_engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'showbuddy_test.db'}")
    await init_db(test_engine)

    yield test_engine

    await drop_db(test_engine)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return MockPaymentGateway(secret="test-payment-secret")


async def create_showing(db, **overrides):
    data = {
        "movie_id": "tt15239678",
        "movie_title": "Dune: Part Two",
        "theater_id": "pvr-koramangala",
        "theater_name": "PVR Forum Koramangala",
        "show_date": date.today() + timedelta(days=7),
        "show_time": time(19, 0),
        "seat_map_template": "standard",
    }
    data.update(overrides)
    return await ShowingService.create_showing(db, ShowingCreate(**data))


@pytest_asyncio.fixture
async def showing(session_factory):
    """A standard 10 x 12 showing a week from today"""
    async with session_factory() as session:
        return await create_showing(session)


@pytest_asyncio.fixture
async def past_showing(session_factory):
    """A showing that started yesterday"""
    async with session_factory() as session:
        return await create_showing(
            session,
            theater_id="inox-garuda",
            theater_name="INOX Garuda Mall",
            show_date=date.today() - timedelta(days=1),
        )


class FakeRedis:
    """In-memory stand-in for RedisClient; TTLs are ignored"""

    available = True

    def __init__(self):
        self.data = {}
        # One-shot coroutine run before the next set() stores its value
        self.before_set = None

    async def get(self, key):
        value = self.data.get(key)
        return json.loads(value) if value is not None else None

    async def set(self, key, value, ttl=None):
        if self.before_set is not None:
            hook, self.before_set = self.before_set, None
            await hook()
        self.data[key] = json.dumps(value, default=str)
        return True

    async def set_if_absent(self, key, value, ttl):
        if key in self.data:
            return False
        self.data[key] = json.dumps(value)
        return True

    async def incr(self, key, ttl=None):
        value = int(json.loads(self.data.get(key, "0"))) + 1
        self.data[key] = json.dumps(value)
        return value

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)
        return True


@pytest.fixture
def fake_redis(monkeypatch):
    """Seat cache and idempotency store backed by a FakeRedis"""
    fake = FakeRedis()
    monkeypatch.setattr(cache_service, "redis_client", fake)
    monkeypatch.setattr(idempotency_service, "redis", fake)
    return fake


async def seat_states(db, showing_id):
    """{seat_id: effective state} as the seat map reports it"""
    seats = await SeatInventory.get_seat_map(db, showing_id)
    return {seat.seat_id: seat.state for seat in seats}


def payment_proof(intent_id, gateway):
    """What a client sends back after paying the intent"""
    return {"intent_id": intent_id, "signature": sign_intent(intent_id, gateway.secret)}


def auth_headers(user_id, role="user"):
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


def admin_headers():
    return auth_headers("admin", role=ADMIN_ROLE)


@pytest_asyncio.fixture
async def client(session_factory, gateway):
    """HTTP client against the app, wired to the per-test database and gateway"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
