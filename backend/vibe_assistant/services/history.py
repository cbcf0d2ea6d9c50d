import logging
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from vibe_assistant.schemas.analysis import AnalysisRecord, HistoryEntry, ScoreComparison
from vibe_assistant.services.cache import Clock

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 20


class HistoryLedger:
    """
    Most-recent-first record of past analyses, one entry per target.

    Doubles as a secondary analysis cache: ``lookup`` only returns entries
    younger than ``ttl_seconds``.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Clock = time.time,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: List[HistoryEntry] = []

    def insert(self, target: str, record: AnalysisRecord) -> Optional[HistoryEntry]:
        """
        Prepend a fresh entry for ``target``, replacing any prior one.

        Returns:
            The entry that was replaced, if the target was already present.
        """
        previous = self._find(target)
        if previous is not None:
            self._entries.remove(previous)

        now = self._clock()
        entry = HistoryEntry(
            id=uuid.uuid4().hex,
            target=target,
            analysis=record,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
            written_at=now,
        )
        self._entries.insert(0, entry)

        # Keep only the newest max_entries
        while len(self._entries) > self.max_entries:
            dropped = self._entries.pop()
            logger.debug(f"History full, dropped {dropped.target}")

        return previous

    def lookup(self, target: str) -> Optional[AnalysisRecord]:
        entry = self._find(target)
        if entry is None:
            return None
        if self._clock() - entry.written_at >= self.ttl_seconds:
            logger.debug(f"History entry for {target} is past its TTL")
            return None
        return entry.analysis

    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def remove(self, entry_id: str) -> bool:
        for entry in self._entries:
            if entry.id == entry_id:
                self._entries.remove(entry)
                return True
        return False

    def discard(self, target: str) -> bool:
        entry = self._find(target)
        if entry is None:
            return False
        self._entries.remove(entry)
        return True

    def evict_expired(self) -> int:
        now = self._clock()
        kept = [e for e in self._entries if now - e.written_at < self.ttl_seconds]
        removed = len(self._entries) - len(kept)
        self._entries = kept
        return removed

    def clear(self) -> None:
        self._entries = []

    def _find(self, target: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.target == target:
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def compare(previous: AnalysisRecord, current: AnalysisRecord) -> Optional[ScoreComparison]:
        """Score delta between two analyses of the same repository, if both were scored."""
        if previous.overall_score is None or current.overall_score is None:
            return None

        difference = current.overall_score - previous.overall_score
        percentage = None
        if previous.overall_score:
            percentage = difference / previous.overall_score * 100
        return ScoreComparison(
            previous=previous.overall_score,
            current=current.overall_score,
            difference=difference,
            percentage=percentage,
        )
