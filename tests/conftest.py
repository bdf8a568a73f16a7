import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

# Settings are read at import time; keep tests off real services
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYMENT_KEY_SECRET", "test-gateway-secret")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import MetaData  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from app.core.clock import Clock  # noqa: E402
from app.core.payment_gateway import PaymentGatewayClient, get_payment_gateway  # noqa: E402
from app.core.redis_client import CacheManager  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.database import get_db  # noqa: E402
from app.dependencies import (  # noqa: E402
    get_cache_manager,
    get_clock,
    get_notifier,
)
from app.main import app  # noqa: E402
from app.models.appointments import metadata as appointments_metadata  # noqa: E402
from app.models.practitioners import metadata as practitioners_metadata  # noqa: E402
from app.schemas.appointments import Actor, ActorRole, AppointmentRequest  # noqa: E402
from app.schemas.scheduling import PractitionerCreate, TimeSlot  # noqa: E402
from app.services.appointment_service import AppointmentService  # noqa: E402
from app.services.cancellation_policy import BookingPolicy  # noqa: E402
from app.services.notification_service import NotificationService  # noqa: E402
from app.services.practitioner_service import PractitionerService  # noqa: E402

# Combine all metadata
metadata = MetaData()
for table in practitioners_metadata.tables.values():
    table.to_metadata(metadata)
for table in appointments_metadata.tables.values():
    table.to_metadata(metadata)

# Sunday; the next day is the Monday the fixtures' practitioner works
FIXED_NOW = datetime(2030, 1, 6, 12, 0, tzinfo=UTC)
MONDAY = date(2030, 1, 7)
GATEWAY_SECRET = "test-gateway-secret"

POLICY = BookingPolicy(
    advance_ratio=0.3,
    cancellation_lead_time=timedelta(hours=2),
    same_day_buffer=timedelta(minutes=30),
)

MONDAY_AVAILABILITY = [
    {"day": "monday", "windows": [{"start": "09:00", "end": "11:00"}]},
]


def fixed_clock(now: datetime = FIXED_NOW) -> Clock:
    """Clock frozen at ``now``."""
    return lambda: now


def booking(practitioner_id, start: time, day: date = MONDAY, **overrides) -> AppointmentRequest:
    """Request for the 30-minute slot starting at ``start``."""
    end = (datetime.combine(day, start) + timedelta(minutes=30)).time()
    return AppointmentRequest(
        practitioner_id=practitioner_id,
        appointment_date=day,
        slot=TimeSlot(start=start, end=end),
        **overrides,
    )


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a test engine with a fresh schema."""
    # Set TEST_DATABASE_URL to run against PostgreSQL instead of SQLite
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> Clock:
    """Wall clock frozen at FIXED_NOW."""
    return fixed_clock()


@pytest.fixture
def notifier() -> AsyncMock:
    """Notifier double recording appointment events."""
    return AsyncMock(spec=NotificationService)


@pytest.fixture
def cache() -> CacheManager:
    """Cache over a mocked Redis that always misses."""
    mock_redis = MagicMock()
    mock_redis.get.return_value = None
    return CacheManager(redis_client=mock_redis)


@pytest.fixture
def gateway() -> PaymentGatewayClient:
    """Gateway client with a mocked order endpoint."""
    client = PaymentGatewayClient(
        base_url="https://gateway.test/v1",
        key_id="key_test",
        key_secret=GATEWAY_SECRET,
    )
    client.create_order = AsyncMock(  # type: ignore[method-assign]
        side_effect=lambda amount, receipt, notes=None: {
            "id": f"order_{uuid4().hex[:14]}",
            "amount": amount * 100,
            "currency": "INR",
            "receipt": receipt,
        }
    )
    return client


@pytest.fixture
def patient() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.PATIENT)


@pytest.fixture
def other_patient() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.PATIENT)


@pytest.fixture
def practitioner_actor() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.PRACTITIONER)


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.ADMIN)


@pytest_asyncio.fixture
async def practitioner(db_session: AsyncSession, practitioner_actor: Actor, clock: Clock) -> dict:
    """Practitioner working Mondays 09:00-11:00 in 30-minute slots for a fee of 800."""
    service = PractitionerService(db_session, clock=clock)
    created = await service.create_practitioner(
        practitioner_actor,
        PractitionerCreate(
            full_name="Dr. Asha Rao",
            specialization="General Medicine",
            consultation_fee=800,
            consultation_duration_minutes=30,
            timezone="UTC",
            consultation_modes=["video", "in_person"],
            availability=MONDAY_AVAILABILITY,
        ),
    )
    return created.model_dump()


@pytest.fixture
def make_service(
    notifier: AsyncMock,
    cache: CacheManager,
) -> Callable[..., AppointmentService]:
    """Build an appointment service on a session, optionally with another clock."""

    def _make(session: AsyncSession, clock: Clock | None = None) -> AppointmentService:
        return AppointmentService(
            session,
            clock=clock or fixed_clock(),
            notifier=notifier,
            cache=cache,
            policy=POLICY,
        )

    return _make


@pytest.fixture
def service(db_session: AsyncSession, make_service: Callable[..., AppointmentService]) -> AppointmentService:
    """Appointment service on the shared test session."""
    return make_service(db_session)


def token_headers(actor: Actor) -> dict[str, str]:
    """Authorization headers for an actor."""
    token = create_access_token(
        data={"sub": str(actor.id), "role": actor.role.value},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    notifier: AsyncMock,
    cache: CacheManager,
    gateway: PaymentGatewayClient,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: fixed_clock()
    app.dependency_overrides[get_cache_manager] = lambda: cache
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
