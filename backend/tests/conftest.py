import os

# Settings are read at import time; test values must be in place first.
os.environ.setdefault(
    "AUTH_SECRET", "test-secret-key-that-is-at-least-32-characters-long"
)  # nosec B105
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("EXPIRY_STORE", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("AUTH_COOKIE_SECURE", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import asyncio  # noqa: E402
import socket  # noqa: E402
from collections.abc import AsyncGenerator, Iterator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from identity.core.config import settings  # noqa: E402
from identity.core.expiry_store import InMemoryExpiryStore  # noqa: E402
from identity.models.base import Base  # noqa: E402
from identity.services.token_lifecycle import TokenLifecycleManager  # noqa: E402
from tests.support import FakeClock  # noqa: E402

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on the configured port, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex((settings.database_host, settings.database_port))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available. Start database with: docker compose up -d"
        )


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# =============================================================================
# Token fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Monotonic fake clock driving the in-memory store's TTLs."""
    return FakeClock()


@pytest_asyncio.fixture
async def memory_store(clock: FakeClock) -> AsyncGenerator[InMemoryExpiryStore, None]:
    """In-memory expiry store without a running reaper.

    Tests expire entries by advancing ``clock`` and calling purge_expired().
    """
    store = InMemoryExpiryStore(clock=clock)
    yield store
    await store.drain()


@pytest.fixture
def tokens(memory_store: InMemoryExpiryStore) -> TokenLifecycleManager:
    """Token manager over the in-memory store with default policies."""
    return TokenLifecycleManager(memory_store)


@pytest.fixture
def activation_queue() -> Iterator[asyncio.Queue]:
    yield asyncio.Queue()
