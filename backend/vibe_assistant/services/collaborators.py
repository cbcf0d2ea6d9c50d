"""
Contracts for the external services the orchestration layer depends on.

The concrete implementations live in ``github_service`` and ``insights``;
tests substitute their own objects with the same method names.
"""
import asyncio
from typing import Awaitable, List, Protocol, TypeVar

from vibe_assistant.core.errors import UpstreamError
from vibe_assistant.schemas.analysis import AnalysisRecord, InsightsRecord
from vibe_assistant.schemas.repository import RepositorySummary

T = TypeVar("T")


class AnalysisFetcher(Protocol):
    async def fetch_analysis(self, target: str) -> AnalysisRecord: ...


class InsightsFetcher(Protocol):
    async def fetch_insights(self, target: str) -> InsightsRecord: ...


class ListingFetcher(Protocol):
    async def fetch_listing_page(
        self, subject: str, upstream_page: int, upstream_page_size: int
    ) -> List[RepositorySummary]: ...


async def call_with_timeout(call: Awaitable[T], timeout_seconds: float, description: str) -> T:
    """Await a collaborator call, turning a timeout into an UpstreamError."""
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise UpstreamError(f"{description} timed out after {timeout_seconds:g}s") from e
