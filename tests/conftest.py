import os

# Must be set before ticketeer.main builds its module-level app.
os.environ.setdefault("CONFIGURE_LOGGING", "false")
os.environ.setdefault("SWEEPER_ENABLED", "false")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")

import fnmatch
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update

from ticketeer.cache import CacheInvalidator, RedisCache
from ticketeer.config import Settings
from ticketeer.database import DatabaseManager
from ticketeer.main import create_app
from ticketeer.models import Booking, Category, Event, EventCategory, EventStatus
from ticketeer.models.base import utcnow
from ticketeer.services.booking_service import BookingService
from ticketeer.services.notification_service import NotificationDispatcher
from ticketeer.utils.auth import UserRole, create_access_token


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client calls the cache makes."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.closed = False

    async def ping(self):
        return True

    async def get(self, key):
        value = self.store.get(key)
        return value.encode("utf-8") if isinstance(value, str) else value

    async def set(self, key, value):
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        self.closed = True


class RecordingTask:
    """Captures Celery ``apply_async`` calls instead of talking to a broker."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def apply_async(self, args=None, **kwargs):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.calls.append((args, kwargs))

    @property
    def messages(self):
        return [args[0] for args, _ in self.calls]


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeS3Client:
    """Records boto3 S3 calls; the first ``failures`` uploads raise."""

    def __init__(self, failures: int = 0):
        self.objects = {}
        self.deleted = []
        self.failures = failures

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.failures:
            self.failures -= 1
            raise ClientError({"Error": {"Code": "SlowDown", "Message": "slow down"}}, "PutObject")
        self.objects[(Bucket, Key)] = (Body, ContentType)

    def delete_object(self, Bucket, Key):
        self.deleted.append((Bucket, Key))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'ticketeer.db'}",
        cache_enabled=False,
        sweeper_enabled=False,
        notifications_enabled=True,
        configure_logging=False,
        enable_request_logging=False,
        SECRET_KEY="test-secret-key",
        s3_bucket_name=None,
    )


@pytest_asyncio.fixture
async def database(settings):
    manager = DatabaseManager(settings)
    await manager.initialize()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def session(database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def task():
    return RecordingTask()


@pytest.fixture
def notifier(settings, task):
    return NotificationDispatcher(settings, task=task)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def cache(settings, fake_redis):
    cache_settings = settings.model_copy(update={"cache_enabled": True})
    redis_cache = RedisCache(cache_settings, client=fake_redis)
    await redis_cache.initialize()
    yield redis_cache
    await redis_cache.close()


@pytest.fixture
def booking_service(session, settings, notifier):
    return BookingService(session, settings, notifier=notifier)


@pytest.fixture
def cached_booking_service(session, settings, notifier, cache):
    return BookingService(session, settings, notifier=notifier, invalidator=CacheInvalidator(cache))


async def make_event(
    session,
    total_seats: int = 10,
    price: Decimal = Decimal("25.00"),
    status: EventStatus = EventStatus.PUBLISHED,
    title: str = "Test Concert",
    location: str = "Main Hall",
    starts_at=None,
    category_ids=(),
):
    event = Event(
        title=title,
        description="An evening of music",
        location=location,
        starts_at=starts_at or utcnow() + timedelta(days=30),
        total_seats=total_seats,
        price_per_seat=price,
        status=status,
        taken_seat_rows=[],
        category_rows=[EventCategory(category_id=c) for c in category_ids],
    )
    session.add(event)
    await session.commit()
    return event


@pytest_asyncio.fixture
async def event(session):
    return await make_event(session)


async def make_category(session, slug: str, name: str = None):
    category = Category(slug=slug, name=name or slug.replace("-", " ").title())
    session.add(category)
    await session.commit()
    return category


async def backdate_hold(session, booking_id, minutes: int = 1):
    """Move a hold's deadline into the past."""
    await session.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values(expires_at=utcnow() - timedelta(minutes=minutes))
    )
    await session.commit()


async def backdate_purchase(session, booking_id, hours: float):
    await session.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values(confirmed_at=utcnow() - timedelta(hours=hours))
    )
    await session.commit()


PAYMENT = {"card_last_four": "4242", "cardholder_name": "Ada Lovelace", "payment_date": "2024-01-01T00:00:00+00:00"}


def auth_headers(settings, user_id: str = "user-1", role: UserRole = UserRole.USER, email: str = None):
    token = create_access_token(user_id, settings, role=role, email=email)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def app(settings, notifier):
    application = create_app(settings, notifier=notifier)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
