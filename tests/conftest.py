"""Test configuration and fixtures.

Each test gets its own SQLite database file (aiosqlite), created from the
model metadata, and a fresh in-process change feed. Requests carry session
tokens signed with a seeded test keypair whose public half is installed in
settings.
"""

import hashlib
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from labormarket.auth.context import AuthContext
from labormarket.config import settings
from labormarket.database import Base, get_db
from labormarket.main import app
from labormarket.models.application import JobApplication  # noqa: F401 ensure model is registered
from labormarket.models.assignment import JobAssignment
from labormarket.models.job import Job
from labormarket.models.payment import PaymentAuditLog  # noqa: F401
from labormarket.models.profile import Profile, UserType
from labormarket.realtime.feed import LocalChangeFeed, set_change_feed
from labormarket.schemas.application import ApplicationCreate
from labormarket.schemas.job import JobCreate
from labormarket.services.application import accept_application, submit_application
from labormarket.services.assignment import complete_assignment
from labormarket.services.job import post_job
from labormarket.utils.crypto import generate_keypair, sign_session_token

# Seeded so every import of this module (as "conftest" and as "tests.conftest")
# signs and verifies with the same pair.
PRIVATE_KEY, PUBLIC_KEY = generate_keypair(hashlib.sha256(b"labormarket-test-session-key").digest())


@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "session_public_key", PUBLIC_KEY)
    object.__setattr__(settings, "payment_backend", "simulated")
    object.__setattr__(settings, "payment_simulated_delay_seconds", 0.0)
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest.fixture(autouse=True)
def feed() -> LocalChangeFeed:
    """Fresh in-process change feed per test."""
    local = LocalChangeFeed()
    set_change_feed(local)
    yield local  # type: ignore[misc]
    set_change_feed(None)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client; every request gets its own session on the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def make_profile(
    db: AsyncSession,
    user_type: UserType,
    full_name: str | None = "Test User",
) -> Profile:
    """Insert a profile and return it."""
    profile = Profile(id=uuid.uuid4(), full_name=full_name, user_type=user_type)
    db.add(profile)
    await db.commit()
    return profile


def auth_for(profile: Profile) -> AuthContext:
    return AuthContext(principal_id=profile.id, role=profile.user_type)


def make_auth_headers(principal_id: uuid.UUID | str) -> dict[str, str]:
    """Bearer header with a freshly signed session token."""
    token = sign_session_token(PRIVATE_KEY, uuid.UUID(str(principal_id)))
    return {"Authorization": f"Bearer {token}"}


async def make_job(
    db: AsyncSession,
    client: Profile,
    title: str = "Kitchen Plumbing",
    budget: str = "120.00",
    skills: list[str] | None = None,
) -> Job:
    data = JobCreate(
        title=title,
        description="Replace the leaking pipe under the sink",
        budget=Decimal(budget),
        location="12 Elm St",
        required_skills=skills or ["plumbing"],
    )
    return await post_job(db, auth_for(client), data)


async def make_assignment(
    db: AsyncSession, client: Profile, laborer: Profile, rate: str = "110.00", complete: bool = False
) -> JobAssignment:
    """Post a job, apply, accept; optionally mark the work done."""
    job = await make_job(db, client)
    application = await submit_application(
        db, auth_for(laborer), job.id, ApplicationCreate(proposed_rate=Decimal(rate))
    )
    assignment = await accept_application(db, auth_for(client), application.id)
    if complete:
        assignment = await complete_assignment(db, auth_for(laborer), assignment.id)
    return assignment


@pytest_asyncio.fixture
async def client_profile(db_session: AsyncSession) -> Profile:
    return await make_profile(db_session, UserType.CLIENT, "Carol Client")


@pytest_asyncio.fixture
async def laborer_profile(db_session: AsyncSession) -> Profile:
    return await make_profile(db_session, UserType.LABORER, "Larry Laborer")
