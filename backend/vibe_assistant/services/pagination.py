import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Set

from vibe_assistant.services.cache import Clock
from vibe_assistant.services.collaborators import ListingFetcher, call_with_timeout
from vibe_assistant.services.single_flight import SingleFlight
from vibe_assistant.utils.url_helpers import normalize_github_username

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 6         # Match UI pagination
DEFAULT_UPSTREAM_PAGE_SIZE = 30  # GitHub default per_page


def item_id(item: Any) -> Hashable:
    return item.id


@dataclass
class PerTargetListing:
    """
    Everything fetched so far for one subject, keyed by absolute offset.

    ``items`` maps offset -> item; an offset with no key is a hole.
    ``positions`` is the reverse index id -> offset, which keeps every item
    ID at exactly one offset.
    """
    upstream_page_size: int
    last_fetch: float
    items: Dict[int, Any] = field(default_factory=dict)
    positions: Dict[Hashable, int] = field(default_factory=dict)
    fetched_upstream_pages: Set[int] = field(default_factory=set)
    has_more: bool = True
    total_count: Optional[int] = None
    # Set once a short page was seen: first offset past the last item
    end_offset: Optional[int] = None
    last_upstream_page: Optional[int] = None

    def slice(self, start: int, end: int) -> List[Any]:
        """Items present in [start, end), in offset order, holes skipped."""
        return [self.items[offset] for offset in range(start, end) if offset in self.items]

    def is_range_complete(self, start: int, end: int) -> bool:
        return all(offset in self.items for offset in range(start, end))

    def has_any(self, start: int, end: int) -> bool:
        return any(offset in self.items for offset in range(start, end))

    def as_list(self) -> List[Optional[Any]]:
        """Dense view with None for holes and no trailing holes."""
        if not self.items:
            return []
        return [self.items.get(offset) for offset in range(max(self.items) + 1)]


class PaginationReconciler:
    """
    Serve small consumer pages out of larger upstream pages.

    The consumer asks for page N of ``page_size`` items; the upstream source
    only serves pages of ``upstream_page_size``. Upstream pages are fetched on
    demand, merged into a per-subject listing at their absolute offsets and
    remembered, so paging through one upstream page costs a single call.
    """

    def __init__(
        self,
        fetcher: ListingFetcher,
        ttl_seconds: float,
        page_size: int = DEFAULT_PAGE_SIZE,
        upstream_page_size: int = DEFAULT_UPSTREAM_PAGE_SIZE,
        timeout_seconds: float = 30.0,
        clock: Clock = time.time,
        id_of: Callable[[Any], Hashable] = item_id,
    ):
        self.fetcher = fetcher
        self.ttl_seconds = float(ttl_seconds)
        self.page_size = page_size
        self.upstream_page_size = upstream_page_size
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._id_of = id_of
        self._listings: Dict[str, PerTargetListing] = {}
        self._single_flight = SingleFlight()
        self.stats = {"api_calls": 0, "cache_hits": 0, "items_fetched": 0}

    async def fetch_page(
        self,
        subject: str,
        ui_page: int,
        page_size: Optional[int] = None,
        upstream_page_size: Optional[int] = None,
        force_refresh: bool = False,
    ) -> List[Any]:
        """
        Return consumer page ``ui_page`` (1-based) of the subject's listing.

        Raises:
            InvalidTargetError: If the subject is not a valid login.
            ValueError: If the page or sizes are not positive.
            CollaboratorError: If an upstream fetch fails. The listing is
                left exactly as it was.
        """
        if page_size is None:
            page_size = self.page_size
        if upstream_page_size is None:
            upstream_page_size = self.upstream_page_size
        if ui_page < 1:
            raise ValueError(f"ui_page must be >= 1, got {ui_page}")
        if page_size < 1 or upstream_page_size < 1:
            raise ValueError("page sizes must be positive")

        subject = normalize_github_username(subject)
        start = (ui_page - 1) * page_size
        end = ui_page * page_size

        listing = self._listings.get(subject)
        usable = (
            listing is not None
            and not self._is_stale(listing)
            and listing.upstream_page_size == upstream_page_size
        )

        if usable and not force_refresh:
            if listing.is_range_complete(start, end) or (
                not listing.has_more and listing.has_any(start, end)
            ):
                logger.debug(f"[Listing cache hit] Page {ui_page} for {subject}")
                self.stats["cache_hits"] += 1
                return listing.slice(start, end)
            if not listing.has_more and listing.end_offset is not None and start >= listing.end_offset:
                logger.debug(f"[Listing] Page {ui_page} for {subject} is past the last item")
                return []

        # Every upstream page overlapping [start, end)
        needed = list(range(start // upstream_page_size + 1, math.ceil(end / upstream_page_size) + 1))
        if usable and not force_refresh:
            missing = [page for page in needed if page not in listing.fetched_upstream_pages]
            if not listing.has_more and listing.last_upstream_page is not None:
                missing = [page for page in missing if page <= listing.last_upstream_page]
        else:
            missing = needed

        if not missing:
            logger.debug(f"[Listing slice] Returning slice for page {ui_page} of {subject}")
            self.stats["cache_hits"] += 1
            return listing.slice(start, end)

        for upstream_page in missing:
            logger.info(f"[API Call] Fetching upstream page {upstream_page} for page {ui_page} of {subject}")
            fetched = await self._fetch_upstream(subject, upstream_page, upstream_page_size)
            self._merge(subject, upstream_page, upstream_page_size, fetched)

        return self._listings[subject].slice(start, end)

    async def _fetch_upstream(self, subject: str, upstream_page: int, upstream_page_size: int) -> List[Any]:
        async def call() -> List[Any]:
            items = await call_with_timeout(
                self.fetcher.fetch_listing_page(subject, upstream_page, upstream_page_size),
                self.timeout_seconds,
                f"Listing page {upstream_page} for {subject}",
            )
            self.stats["api_calls"] += 1
            self.stats["items_fetched"] += len(items)
            return items

        return await self._single_flight.do(("listing", subject, upstream_page, upstream_page_size), call)

    def _merge(self, subject: str, upstream_page: int, upstream_page_size: int, fetched: List[Any]) -> None:
        """
        Place one upstream page at its absolute offsets.

        The page's offset range is authoritative: whatever sat there before is
        replaced, and an ID that now appears in this page is removed from any
        other offset it occupied. The new state is built on copies and swapped
        in at the end.
        """
        now = self._clock()
        current = self._listings.get(subject)
        if current is None or self._is_stale(current) or current.upstream_page_size != upstream_page_size:
            current = PerTargetListing(upstream_page_size=upstream_page_size, last_fetch=now)

        if len(fetched) > upstream_page_size:
            logger.warning(
                f"Upstream page {upstream_page} for {subject} returned {len(fetched)} items, "
                f"expected at most {upstream_page_size}; truncating"
            )
            fetched = fetched[:upstream_page_size]

        ids = [self._id_of(item) for item in fetched]

        items = dict(current.items)
        positions = dict(current.positions)
        page_start = (upstream_page - 1) * upstream_page_size
        page_end = page_start + upstream_page_size

        for offset in range(page_start, page_end):
            previous = items.pop(offset, None)
            if previous is not None:
                previous_id = self._id_of(previous)
                if positions.get(previous_id) == offset:
                    del positions[previous_id]

        for local_index, (item, key) in enumerate(zip(fetched, ids)):
            offset = page_start + local_index
            old_offset = positions.get(key)
            if old_offset is not None and old_offset != offset:
                # Upstream order shifted; the item now lives here only
                items.pop(old_offset, None)
            items[offset] = item
            positions[key] = offset

        fetched_pages = set(current.fetched_upstream_pages)
        fetched_pages.add(upstream_page)

        has_more = current.has_more
        end_offset = current.end_offset
        last_upstream_page = current.last_upstream_page
        if len(fetched) < upstream_page_size:
            has_more = False
            end_offset = page_start + len(fetched)
            last_upstream_page = upstream_page
        elif last_upstream_page is not None and upstream_page >= last_upstream_page:
            # The former last page filled up; there may be more now
            has_more = True
            end_offset = None
            last_upstream_page = None

        self._listings[subject] = PerTargetListing(
            upstream_page_size=upstream_page_size,
            last_fetch=now,
            items=items,
            positions=positions,
            fetched_upstream_pages=fetched_pages,
            has_more=has_more,
            total_count=len(items) if not has_more else None,
            end_offset=end_offset,
            last_upstream_page=last_upstream_page,
        )

    def _is_stale(self, listing: PerTargetListing) -> bool:
        return self._clock() - listing.last_fetch >= self.ttl_seconds

    def listing(self, subject: str) -> Optional[PerTargetListing]:
        """The stored listing for a subject, stale or not."""
        return self._listings.get(normalize_github_username(subject))

    def snapshot(self, subject: str) -> List[Optional[Any]]:
        """Everything known for a subject, including stale data."""
        listing = self.listing(subject)
        return listing.as_list() if listing is not None else []

    def is_stale(self, subject: str) -> bool:
        listing = self.listing(subject)
        return listing is None or self._is_stale(listing)

    def clear(self, subject: str) -> bool:
        return self._listings.pop(normalize_github_username(subject), None) is not None

    def clear_all(self) -> None:
        self._listings.clear()

    def subjects(self) -> List[str]:
        return list(self._listings)

    def __len__(self) -> int:
        return len(self._listings)
