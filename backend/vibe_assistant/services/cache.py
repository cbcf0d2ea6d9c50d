import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    written_at: float


class TTLCache(Generic[K, V]):
    """
    In-memory keyed cache with a fixed time-to-live and a bounded size.

    An entry is valid while ``now - written_at < ttl``. Expired entries are
    never returned by ``get`` even if ``evict_expired`` has not run yet.
    When a new key would push the store past ``max_entries``, the entry with
    the oldest ``written_at`` is evicted first.

    Every method is synchronous, so under asyncio no caller can observe a
    half-written entry.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        name: str = "cache",
        clock: Clock = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        # Kept in write order: first item is always the oldest write
        self._entries: "OrderedDict[K, CacheEntry[V]]" = OrderedDict()

    def _is_valid(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.written_at < self.ttl_seconds

    def get(self, key: K) -> Optional[V]:
        """
        Retrieve a cached value if it exists and has not expired.

        Returns:
            The cached value, or None on a miss.
        """
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"[{self.name}] Cache miss for {key}")
            return None

        now = self._clock()
        if not self._is_valid(entry, now):
            logger.info(f"[{self.name}] Cache expired for {key} (age: {now - entry.written_at:.0f}s)")
            del self._entries[key]
            return None

        logger.debug(f"[{self.name}] Cache hit for {key} (age: {now - entry.written_at:.0f}s)")
        return entry.value

    def put(self, key: K, value: V) -> None:
        """Store a value stamped with the current time, overwriting any prior entry."""
        if value is None:
            raise ValueError("None cannot be cached; it is indistinguishable from a miss")

        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_entries:
            oldest_key, _ = self._entries.popitem(last=False)
            logger.info(f"[{self.name}] Evicted oldest entry {oldest_key} (capacity {self.max_entries})")

        self._entries[key] = CacheEntry(value=value, written_at=self._clock())
        logger.debug(f"[{self.name}] Cached {key}")

    def invalidate(self, key: K) -> bool:
        """Remove a key. Returns True if something was stored under it."""
        return self._entries.pop(key, None) is not None

    def evict_expired(self) -> int:
        """Physically drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not self._is_valid(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"[{self.name}] Evicted {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def items(self) -> Iterator[Tuple[K, V]]:
        """Iterate over valid (key, value) pairs, oldest first."""
        now = self._clock()
        for key, entry in list(self._entries.items()):
            if self._is_valid(entry, now):
                yield key, entry.value

    def values(self) -> List[V]:
        return [value for _, value in self.items()]

    def written_at(self, key: K) -> Optional[float]:
        entry = self._entries.get(key)
        return entry.written_at if entry is not None else None

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and self._is_valid(entry, self._clock())

    def __len__(self) -> int:
        """Number of valid entries."""
        return sum(1 for _ in self.items())
