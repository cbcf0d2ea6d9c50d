import asyncio
import logging
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from vibe_assistant.core.config import Settings, settings
from vibe_assistant.core.errors import CollaboratorError, MalformedResponseError, UpstreamError
from vibe_assistant.schemas.analysis import (
    AnalysisRecord,
    BranchOutcome,
    HistoryEntry,
    InsightsRecord,
    OrchestrationResult,
)
from vibe_assistant.schemas.cache import CacheStatus
from vibe_assistant.services.cache import Clock, TTLCache
from vibe_assistant.services.collaborators import AnalysisFetcher, InsightsFetcher, call_with_timeout
from vibe_assistant.services.github_service import GitHubService
from vibe_assistant.services.history import HistoryLedger
from vibe_assistant.services.insights import InsightsService
from vibe_assistant.services.maintenance import format_bytes
from vibe_assistant.services.pagination import PaginationReconciler
from vibe_assistant.services.single_flight import SingleFlight
from vibe_assistant.utils.url_helpers import is_github_username, normalize_github_url, parse_github_url

logger = logging.getLogger(__name__)

ANALYSIS = "analysis"
INSIGHTS = "insights"

# Thresholds used by cache_status().needs_cleanup
DEFAULT_CLEANUP_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_CLEANUP_MAX_ENTRIES = 100


def _json_size(values: List[Any]) -> int:
    """Approximate in-memory footprint as UTF-8 JSON length."""
    total = 0
    for value in values:
        if isinstance(value, BaseModel):
            total += len(value.model_dump_json().encode("utf-8"))
    return total


class AnalysisOrchestrator:
    """
    Produce a complete analysis (structural facts plus narrative insights)
    for one repository, reusing cached results wherever they are still valid.

    The two kinds are fetched concurrently and independently: one failing
    never discards the other. Concurrent requests for the same kind and
    target share a single upstream call.
    """

    def __init__(
        self,
        analysis_fetcher: AnalysisFetcher,
        insights_fetcher: InsightsFetcher,
        analysis_cache: TTLCache[str, AnalysisRecord],
        insights_cache: TTLCache[str, InsightsRecord],
        history: HistoryLedger,
        listings: Optional[PaginationReconciler] = None,
        timeout_seconds: float = 30.0,
        clock: Clock = time.time,
        cleanup_max_bytes: int = DEFAULT_CLEANUP_MAX_BYTES,
        cleanup_max_entries: int = DEFAULT_CLEANUP_MAX_ENTRIES,
    ):
        self.analysis_fetcher = analysis_fetcher
        self.insights_fetcher = insights_fetcher
        self.analysis_cache = analysis_cache
        self.insights_cache = insights_cache
        self.history_ledger = history
        self.listings = listings
        self.timeout_seconds = timeout_seconds
        self.cleanup_max_bytes = cleanup_max_bytes
        self.cleanup_max_entries = cleanup_max_entries
        self._clock = clock
        self._single_flight = SingleFlight()

    async def complete_analysis(self, target: str, force_refresh: bool = False) -> OrchestrationResult:
        """
        Return analysis and insights for ``target``.

        Args:
            target: Repository locator (URL, SSH URL or owner/repo).
            force_refresh: Skip the cache lookups; fresh results are still
                written back.

        Returns:
            The combined result. Collaborator failures are reported per
            branch, never raised.

        Raises:
            InvalidTargetError: If ``target`` is empty or not a GitHub repository.
        """
        target = normalize_github_url(target)

        analysis: Optional[AnalysisRecord] = None
        insights: Optional[InsightsRecord] = None

        if not force_refresh:
            analysis = self.analysis_cache.get(target)
            if analysis is None:
                analysis = self.history_ledger.lookup(target)
                if analysis is not None:
                    logger.info(f"[History hit] Using recent analysis for {target}")
            insights = self.insights_cache.get(target)

            if analysis is not None and insights is not None:
                logger.info(f"[Cache hit] Complete analysis for {target}")
                return OrchestrationResult(
                    target=target,
                    analysis=analysis,
                    insights=insights,
                    analysis_outcome=BranchOutcome.CACHED,
                    insights_outcome=BranchOutcome.CACHED,
                    from_cache=True,
                )
        else:
            logger.info(f"Force refresh requested for {target}, bypassing cache")

        jobs: Dict[str, Awaitable[Tuple[Any, Optional[HistoryEntry]]]] = {}
        if analysis is None:
            jobs[ANALYSIS] = self._shared_fetch(ANALYSIS, target)
        if insights is None:
            jobs[INSIGHTS] = self._shared_fetch(INSIGHTS, target)

        logger.info(f"Fetching {', '.join(jobs)} for {target}")
        # Join every branch, whether it succeeded or not
        results = dict(zip(jobs, await asyncio.gather(*jobs.values(), return_exceptions=True)))

        fields: Dict[str, Any] = {
            "target": target,
            "analysis": analysis,
            "insights": insights,
            "analysis_outcome": BranchOutcome.CACHED,
            "insights_outcome": BranchOutcome.CACHED,
        }
        for kind, result in results.items():
            error = self._as_error(kind, target, result)
            if error is not None:
                fields[f"{kind}_error"] = error
                fields[f"{kind}_outcome"] = BranchOutcome.FAILED
                continue

            record, previous = result
            fields[kind] = record
            fields[f"{kind}_outcome"] = BranchOutcome.FETCHED
            if kind == ANALYSIS and previous is not None:
                fields["previous_analysis"] = previous.analysis

        result = OrchestrationResult(**fields)
        logger.info(f"Complete analysis for {target}: {result.status}")
        return result

    def _shared_fetch(self, kind: str, target: str) -> Awaitable[Tuple[Any, Optional[HistoryEntry]]]:
        fetch = self._fetch_analysis if kind == ANALYSIS else self._fetch_insights
        return self._single_flight.do((kind, target), partial(fetch, target))

    async def _fetch_analysis(self, target: str) -> Tuple[AnalysisRecord, Optional[HistoryEntry]]:
        record = await self._call(
            self.analysis_fetcher.fetch_analysis, target, AnalysisRecord, f"Analysis of {target}"
        )
        record = self._stamp(record, target)
        # Written once per shared fetch, so joined callers see the same previous entry
        self.analysis_cache.put(target, record)
        previous = self.history_ledger.insert(target, record)
        return record, previous

    async def _fetch_insights(self, target: str) -> Tuple[InsightsRecord, None]:
        record = await self._call(
            self.insights_fetcher.fetch_insights, target, InsightsRecord, f"Insights for {target}"
        )
        record = self._stamp(record, target)
        self.insights_cache.put(target, record)
        return record, None

    async def _call(
        self,
        fetch: Callable[[str], Awaitable[Any]],
        target: str,
        expected: Type[BaseModel],
        description: str,
    ) -> Any:
        record = await call_with_timeout(fetch(target), self.timeout_seconds, description)
        if not isinstance(record, expected):
            raise MalformedResponseError(f"{description} returned {type(record).__name__}")
        return record

    def _stamp(self, record: Any, target: str) -> Any:
        timestamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return record.model_copy(update={"repo_url": target, "timestamp": timestamp})

    @staticmethod
    def _as_error(kind: str, target: str, result: Any) -> Optional[CollaboratorError]:
        if isinstance(result, CollaboratorError):
            logger.warning(f"{kind.capitalize()} failed for {target}: [{result.kind.value}] {result.message}")
            return result
        if isinstance(result, Exception):
            logger.error(f"Unexpected {kind} error for {target}: {result}", exc_info=result)
            return UpstreamError(f"Unexpected {kind} error: {result}")
        if isinstance(result, BaseException):
            # Cancellation of the shared fetch
            raise result
        return None

    def invalidate(self, target: str) -> bool:
        """
        Forget everything cached for a repository or a user.

        A repository is dropped from both caches and the ledger, together
        with its owner's listing. A bare login drops that user's listing.

        Returns:
            True if any structure held an entry for it.

        Raises:
            InvalidTargetError: If the target is neither a repository nor a login.
        """
        if is_github_username(target):
            if self.listings is None:
                return False
            removed_listing = self.listings.clear(target)
            logger.info(f"Invalidated listing for {target.strip().lower()}")
            return removed_listing

        owner, _ = parse_github_url(target)
        target = normalize_github_url(target)
        removed = [
            self.analysis_cache.invalidate(target),
            self.insights_cache.invalidate(target),
            self.history_ledger.discard(target),
        ]
        if self.listings is not None and is_github_username(owner):
            removed.append(self.listings.clear(owner))
        logger.info(f"Invalidated cache for {target}")
        return any(removed)

    def evict_expired(self) -> int:
        return (
            self.analysis_cache.evict_expired()
            + self.insights_cache.evict_expired()
            + self.history_ledger.evict_expired()
        )

    def history(self) -> List[HistoryEntry]:
        return self.history_ledger.entries()

    def clear_all(self) -> None:
        self.analysis_cache.clear()
        self.insights_cache.clear()
        self.history_ledger.clear()
        if self.listings is not None:
            self.listings.clear_all()
        logger.info("Cleared all caches")

    def cache_status(self) -> CacheStatus:
        """Entry counts and approximate sizes of every cache."""
        entries = {
            ANALYSIS: len(self.analysis_cache),
            INSIGHTS: len(self.insights_cache),
            "history": len(self.history_ledger),
        }
        size_bytes = {
            ANALYSIS: _json_size(self.analysis_cache.values()),
            INSIGHTS: _json_size(self.insights_cache.values()),
            "history": _json_size(self.history_ledger.entries()),
        }
        if self.listings is not None:
            listed = [
                item
                for subject in self.listings.subjects()
                for item in self.listings.snapshot(subject)
                if item is not None
            ]
            entries["listings"] = len(self.listings)
            size_bytes["listings"] = _json_size(listed)

        entries["total"] = sum(entries.values())
        size_bytes["total"] = sum(size_bytes.values())

        return CacheStatus(
            entries=entries,
            size_bytes=size_bytes,
            size={name: format_bytes(value) for name, value in size_bytes.items()},
            needs_cleanup=(
                size_bytes["total"] > self.cleanup_max_bytes
                or entries["total"] > self.cleanup_max_entries
            ),
        )


def build_orchestrator(config: Settings = settings) -> AnalysisOrchestrator:
    """Wire the GitHub and insights collaborators, caches and ledger from settings."""
    github = GitHubService(config)
    insights = InsightsService(github, config)

    listings = PaginationReconciler(
        github,
        ttl_seconds=config.LISTING_CACHE_TTL_SECONDS,
        page_size=config.LISTING_PAGE_SIZE,
        upstream_page_size=config.UPSTREAM_PAGE_SIZE,
        timeout_seconds=config.COLLABORATOR_TIMEOUT_SECONDS,
    )

    return AnalysisOrchestrator(
        analysis_fetcher=github,
        insights_fetcher=insights,
        analysis_cache=TTLCache(
            config.ANALYSIS_CACHE_TTL_SECONDS, config.ANALYSIS_CACHE_MAX_ENTRIES, name="Analysis cache"
        ),
        insights_cache=TTLCache(
            config.INSIGHTS_CACHE_TTL_SECONDS, config.INSIGHTS_CACHE_MAX_ENTRIES, name="Insights cache"
        ),
        history=HistoryLedger(config.ANALYSIS_CACHE_TTL_SECONDS, config.HISTORY_MAX_ENTRIES),
        listings=listings,
        timeout_seconds=config.COLLABORATOR_TIMEOUT_SECONDS,
        cleanup_max_bytes=config.CACHE_CLEANUP_MAX_BYTES,
        cleanup_max_entries=config.CACHE_CLEANUP_MAX_ENTRIES,
    )
