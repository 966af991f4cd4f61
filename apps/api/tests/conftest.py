"""Pytest fixtures for API tests."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from api.routes import enrichment
from core.config import Settings, get_settings
from db.models import Ebook, SummaryResult
from db.session import get_session
from main import app
from services.governor import RateCostGovernor
from services.ratings_job import RatingsEnrichmentJob
from services.record_store import RecordStore
from services.scheduler import EnrichmentScheduler, create_scheduler
from services.summary_job import AISummaryJob


# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with overrides."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        debug=True,
        environment="development",
        anthropic_api_key="test-key",
        ai_request_interval_ms=0,
        ai_book_request_interval_ms=0,
        ratings_request_interval_ms=0,
        scheduler_initial_delay_s=0,
    )


@pytest.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[Any, None]:
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: Any) -> Callable[[], AsyncSession]:
    """Session factory bound to the test engine."""
    return sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_session(session_factory: Callable[[], AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory: Callable[[], AsyncSession]) -> RecordStore:
    """Record store on the in-memory test database."""
    return RecordStore(session_factory)


@pytest.fixture
def add_book(store: RecordStore) -> Callable[..., Awaitable[Ebook]]:
    """Insert an ebook; keyword arguments override the defaults."""

    async def _add(**fields: Any) -> Ebook:
        fields.setdefault("title", "Test Book")
        return await store.add_book(Ebook(**fields))

    return _add


@pytest.fixture
def summary_result() -> SummaryResult:
    return SummaryResult(
        content="A concise overview.",
        model_used="claude-test",
        input_tokens=1000,
        output_tokens=200,
        cost_usd=0.0016,
    )


@pytest.fixture
def mock_generator(summary_result: SummaryResult) -> MagicMock:
    """Create mock AI adapter that always produces ``summary_result``."""
    mock = MagicMock()
    mock.generate = AsyncMock(return_value=summary_result)
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def mock_ratings_client() -> MagicMock:
    """Create mock Goodreads adapter that finds nothing."""
    mock = MagicMock()
    mock.search_by_isbn = AsyncMock(return_value=None)
    mock.search_by_title = AsyncMock(return_value=None)
    mock.fetch_by_id = AsyncMock(return_value=None)
    mock.aclose = AsyncMock()
    return mock


@pytest.fixture
def summary_job(store: RecordStore, mock_generator: MagicMock, test_settings: Settings) -> AISummaryJob:
    return AISummaryJob(
        store=store,
        generator=mock_generator,
        governor=RateCostGovernor(0, name="test-ai"),
        settings=test_settings,
        book_governor=RateCostGovernor(0, name="test-ai-book"),
    )


@pytest.fixture
def ratings_job(store: RecordStore, mock_ratings_client: MagicMock, test_settings: Settings) -> RatingsEnrichmentJob:
    return RatingsEnrichmentJob(
        store=store,
        client=mock_ratings_client,
        governor=RateCostGovernor(0, name="test-goodreads"),
        settings=test_settings,
    )


@pytest.fixture
def scheduler(
    summary_job: AISummaryJob,
    ratings_job: RatingsEnrichmentJob,
    test_settings: Settings,
) -> EnrichmentScheduler:
    return create_scheduler(summary_job, ratings_job, test_settings)


@pytest.fixture
async def client(
    test_session: AsyncSession,
    test_settings: Settings,
    summary_job: AISummaryJob,
    ratings_job: RatingsEnrichmentJob,
    scheduler: EnrichmentScheduler,
) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client wired to the test database, settings and jobs (lifespan not run)."""

    async def shared_session() -> AsyncGenerator[AsyncSession, None]:
        yield test_session

    app.dependency_overrides.update({
        get_session: shared_session,
        get_settings: lambda: test_settings,
        enrichment.get_summary_job: lambda: summary_job,
        enrichment.get_ratings_job: lambda: ratings_job,
        enrichment.get_scheduler: lambda: scheduler,
    })
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
            yield http
    finally:
        await scheduler.shutdown(timeout=5.0)
        app.dependency_overrides.clear()
