"""
Test infrastructure for the Blog API.

Strategy
--------
- SQLite in-memory via aiosqlite, so no Postgres instance is needed.
- StaticPool makes every session share the one in-memory connection
  (an in-memory database is connection-scoped).
- ``PRAGMA foreign_keys=ON`` is installed on the test engine so the
  ``posts.owner_id`` foreign key is enforced as it is in production.
- The app's ``get_gateway`` dependency is overridden so every request
  talks to the test database.
- All tables are created before each test and dropped after.
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

import blog_api.models  # noqa: F401
from blog_api.config import DeletePolicy
from blog_api.database import Base, enforce_sqlite_foreign_keys
from blog_api.dependencies import Services, build_services, get_gateway
from blog_api.gateway import DataGateway
from blog_api.main import app
from blog_api.middleware import install_query_counter

# ---------------------------------------------------------------------------
# Test database engine — SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)
enforce_sqlite_foreign_keys(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency override — every request uses the test session factory
# ---------------------------------------------------------------------------

def override_get_gateway() -> DataGateway:
    return DataGateway(async_session_test)


app.dependency_overrides[get_gateway] = override_get_gateway


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def gateway() -> DataGateway:
    return DataGateway(async_session_test)


@pytest.fixture
def services() -> Services:
    """Services wired with the ``reject`` delete policy."""
    return build_services(async_session_test, DeletePolicy.REJECT)


@pytest.fixture
def cascade_services() -> Services:
    return build_services(async_session_test, DeletePolicy.CASCADE)


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
