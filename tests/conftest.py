"""Test configuration and fixtures."""

import itertools
from typing import AsyncGenerator, Dict
from unittest.mock import AsyncMock, MagicMock, patch
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import mockup_queue.models  # noqa: F401
from mockup_queue.main import app
from mockup_queue.api.dependencies import get_replicate_service, get_storage_service
from mockup_queue.core.config import Settings, get_settings
from mockup_queue.db.database import get_session
from mockup_queue.services.credit_ledger import CreditLedger
from mockup_queue.services.lifecycle import GenerationLifecycle
from mockup_queue.services.queue_manager import JobQueueManager
from mockup_queue.services.replicate_service import ReplicateService
from mockup_queue.services.storage_service import StorageService
from tests.utils import ImageTestUtils


# Test database URL - using in-memory SQLite for speed
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_KEY = "test-admin-key"


class TestSettings(Settings):
    """Test-specific settings."""

    app_env: str = "development"
    debug: bool = True
    database_url: str = TEST_DATABASE_URL
    redis_url: str = "redis://localhost:6379/15"  # Use different DB for tests
    storage_type: str = "local"
    storage_local_path: str = "/tmp/test_mockups"
    replicate_api_token: str = ""
    replicate_webhook_secret: str = ""
    secret_key: str = "test-secret-key"
    admin_api_key: str = ADMIN_KEY
    membership_api_url: str = ""
    membership_dev_tier: str = "pro"

    # Small, round numbers keep credit assertions readable
    job_credit_costs: Dict[str, int] = {"generation": 2, "variation": 1, "upscale": 1, "batch": 2}
    initial_credit_grant: int = 0
    retry_backoff_base: float = 30.0
    retry_backoff_max: float = 600.0
    default_processing_time: float = 30.0


@pytest.fixture
def test_settings(tmp_path) -> TestSettings:
    """Get test settings with storage rooted in a temp dir."""
    return TestSettings(storage_local_path=str(tmp_path / "media"))


@pytest.fixture
async def engine():
    """Create test database engine.

    StaticPool keeps every session on the same in-memory database.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed test database where every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(file_engine) -> async_sessionmaker:
    """Session maker for tests that race separate transactions."""
    return async_sessionmaker(
        file_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session configured like the application's."""
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_replicate_service() -> MagicMock:
    """Render provider double that hands out sequential prediction ids."""
    counter = itertools.count(1)
    provider = MagicMock(spec=ReplicateService)
    provider.is_mock = False
    provider.create_prediction = AsyncMock(side_effect=lambda *args, **kwargs: f"pred-{next(counter)}")
    provider.cancel_prediction = AsyncMock(return_value=True)
    return provider


@pytest.fixture
def storage_service(test_settings) -> StorageService:
    """Local storage service writing into the test temp dir."""
    return StorageService(test_settings)


@pytest.fixture
def queue_manager(db_session, test_settings) -> JobQueueManager:
    return JobQueueManager(db_session, test_settings)


@pytest.fixture
def ledger(db_session) -> CreditLedger:
    return CreditLedger(db_session)


@pytest.fixture
def lifecycle(db_session, test_settings, mock_replicate_service, storage_service) -> GenerationLifecycle:
    """Lifecycle with zero jitter so backoff delays are exact."""
    return GenerationLifecycle(
        db_session,
        test_settings,
        provider=mock_replicate_service,
        storage=storage_service,
        rng=lambda a, b: 0.0,
    )


@pytest.fixture
def fund_account(db_session):
    """Grant committed credits to a user."""
    async def _fund(user_id: str, amount: int = 10) -> int:
        balance = await CreditLedger(db_session).grant(user_id, amount, "Test credits")
        await db_session.commit()
        return balance
    return _fund


@pytest.fixture
def sample_image_data() -> bytes:
    return ImageTestUtils.create_test_image(64, 48)


@pytest.fixture
def png_data_url() -> str:
    return ImageTestUtils.create_data_url(64, 48)


@pytest.fixture
def override_dependencies(db_session, test_settings, mock_replicate_service, storage_service):
    """Point the app at the test session, settings and provider double."""
    async def _get_session():
        yield db_session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_replicate_service] = lambda: mock_replicate_service
    app.dependency_overrides[get_storage_service] = lambda: storage_service
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def mock_dispatch_task():
    """Keep batch submission from reaching the Celery broker."""
    with patch("mockup_queue.api.v1.endpoints.jobs.dispatch_user_jobs") as mock_task:
        mock_task.delay.return_value = MagicMock(id="test-task-id")
        yield mock_task


@pytest.fixture
async def client(override_dependencies, mock_dispatch_task) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
