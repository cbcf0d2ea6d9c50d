from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from vibe_assistant.main import app
from vibe_assistant.api.analyze import get_orchestrator
from vibe_assistant.api.users import get_reconciler
from vibe_assistant.services.cache import TTLCache
from vibe_assistant.services.history import HistoryLedger
from vibe_assistant.services.orchestrator import AnalysisOrchestrator
from vibe_assistant.services.pagination import PaginationReconciler


@pytest.fixture
def analysis_fetcher(analysis_record):
    fetcher = MagicMock()
    fetcher.fetch_analysis = AsyncMock(return_value=analysis_record)
    return fetcher


@pytest.fixture
def insights_fetcher(insights_record):
    fetcher = MagicMock()
    fetcher.fetch_insights = AsyncMock(return_value=insights_record)
    return fetcher


@pytest.fixture
def listing_fetcher(make_repo):
    """Upstream listing with 10 repositories for any user."""
    fetcher = MagicMock()
    fetcher.fetch_listing_page = AsyncMock(
        side_effect=lambda subject, page, size: [make_repo(i) for i in range(1, 11)] if page == 1 else []
    )
    return fetcher


@pytest.fixture
def reconciler(listing_fetcher, clock):
    return PaginationReconciler(listing_fetcher, ttl_seconds=1800, clock=clock)


@pytest.fixture
def orchestrator(analysis_fetcher, insights_fetcher, reconciler, clock):
    return AnalysisOrchestrator(
        analysis_fetcher=analysis_fetcher,
        insights_fetcher=insights_fetcher,
        analysis_cache=TTLCache(3600, 100, clock=clock),
        insights_cache=TTLCache(1800, 50, clock=clock),
        history=HistoryLedger(3600, 20, clock=clock),
        listings=reconciler,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(orchestrator, reconciler) -> AsyncGenerator[AsyncClient, None]:
    """Provide an AsyncClient for the FastAPI app with service overrides."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_reconciler] = lambda: reconciler

    # Use ASGITransport for testing FastAPI apps
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    # Clean up overrides
    app.dependency_overrides.clear()
