"""
Intervention Coordinator - Candidate Registry.

============================================================
RESPONSIBILITY
============================================================
Holds candidate records, their conversation history and one
asyncio.Lock per candidate.

- Locks exist only for registered candidates
- A lock serializes mutation for one candidate only
- Snapshots are plain lists copied at call time; nothing
  holds a registry-wide lock across a tick

All mutation goes through the coordinator.

============================================================
HISTORY RETENTION
============================================================
Each candidate keeps at most the feature window of history:
messages within window_days of the newest one, and of those
only the newest max_messages. Extraction windows relative to
the assessment time, which never precedes the newest message,
so pruning never drops a message the extractor would use.

Ids of pruned messages are remembered in a bounded LRU so a
redelivered old message is still recognized as a duplicate.

============================================================
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Set

from candidate_journey.types import ActivityMessage, Candidate, JourneyState
from core.clock import ensure_utc
from core.exceptions import UnknownCandidateError
from risk_scoring.config import FeatureWindowConfig


logger = logging.getLogger(__name__)


DEFAULT_FORGOTTEN_ID_CAPACITY = 500


class CandidateRegistry:
    """In-memory candidate store with per-candidate locks."""

    def __init__(
        self,
        window: Optional[FeatureWindowConfig] = None,
        forgotten_id_capacity: int = DEFAULT_FORGOTTEN_ID_CAPACITY,
    ) -> None:
        if forgotten_id_capacity < 0:
            raise ValueError("forgotten_id_capacity must be non-negative")
        self.window = window or FeatureWindowConfig()
        self.forgotten_id_capacity = forgotten_id_capacity
        self._candidates: Dict[str, Candidate] = {}
        self._history: Dict[str, List[ActivityMessage]] = {}
        self._retained_ids: Dict[str, Set[str]] = {}
        self._forgotten_ids: Dict[str, "OrderedDict[str, None]"] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._candidates)

    def __contains__(self, candidate_id: str) -> bool:
        return candidate_id in self._candidates

    def __iter__(self) -> Iterator[Candidate]:
        return iter(list(self._candidates.values()))

    # --------------------------------------------------------
    # CANDIDATES
    # --------------------------------------------------------

    def add(self, candidate: Candidate) -> Candidate:
        """Register a candidate; an existing record with the same id is kept."""
        existing = self._candidates.get(candidate.candidate_id)
        if existing is not None:
            return existing
        self._candidates[candidate.candidate_id] = candidate
        self._history[candidate.candidate_id] = []
        self._retained_ids[candidate.candidate_id] = set()
        self._forgotten_ids[candidate.candidate_id] = OrderedDict()
        self._locks[candidate.candidate_id] = asyncio.Lock()
        logger.info(
            f"Registered candidate {candidate.candidate_id} in state {candidate.current_state.value}"
        )
        return candidate

    def get(self, candidate_id: str) -> Candidate:
        """
        Raises:
            UnknownCandidateError: If the id is not registered
        """
        candidate = self._candidates.get(candidate_id)
        if candidate is None:
            raise UnknownCandidateError(candidate_id)
        return candidate

    def find(self, candidate_id: str) -> Optional[Candidate]:
        return self._candidates.get(candidate_id)

    def lock_for(self, candidate_id: str) -> asyncio.Lock:
        """
        The candidate's lock.

        Raises:
            UnknownCandidateError: If the id is not registered
        """
        lock = self._locks.get(candidate_id)
        if lock is None:
            raise UnknownCandidateError(candidate_id)
        return lock

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def snapshot_active_ids(self) -> List[str]:
        """Point-in-time list of non-terminal candidate ids."""
        return [
            candidate_id
            for candidate_id, candidate in list(self._candidates.items())
            if not candidate.current_state.is_terminal()
        ]

    def count_by_state(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in JourneyState}
        for candidate in list(self._candidates.values()):
            counts[candidate.current_state.value] += 1
        return counts

    # --------------------------------------------------------
    # CONVERSATION HISTORY
    # --------------------------------------------------------

    def add_message(
        self,
        candidate_id: str,
        message: ActivityMessage,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Append a message unless its id was already seen, then prune.

        Timestamps later than `now` count as `now` when pruning.

        Returns:
            True if appended, False for a duplicate

        Raises:
            UnknownCandidateError: If the id is not registered
            ValueError: If the message has no valid timestamp
        """
        self.get(candidate_id)
        if not isinstance(message.timestamp, datetime):
            raise ValueError(f"message {message.message_id} has no valid timestamp")

        retained = self._retained_ids[candidate_id]
        forgotten = self._forgotten_ids[candidate_id]
        if message.message_id in retained or message.message_id in forgotten:
            return False

        self._history[candidate_id].append(message)
        retained.add(message.message_id)

        for dropped in self._prune(candidate_id, now):
            retained.discard(dropped.message_id)
            forgotten[dropped.message_id] = None
        while len(forgotten) > self.forgotten_id_capacity:
            forgotten.popitem(last=False)
        return True

    def history(self, candidate_id: str) -> List[ActivityMessage]:
        """Copy of the candidate's retained messages in arrival order."""
        self.get(candidate_id)
        return list(self._history[candidate_id])

    def _prune(self, candidate_id: str, now: Optional[datetime]) -> List[ActivityMessage]:
        """Trim history to the feature window; returns what was dropped."""
        history = self._history[candidate_id]

        def effective(message: ActivityMessage) -> datetime:
            timestamp = ensure_utc(message.timestamp)
            return timestamp if now is None else min(timestamp, ensure_utc(now))

        cutoff = max(effective(message) for message in history) - timedelta(days=self.window.window_days)
        kept = [message for message in history if effective(message) >= cutoff]

        if len(kept) > self.window.max_messages:
            # Same order extraction uses: time, then arrival
            ranked = sorted(enumerate(kept), key=lambda item: (effective(item[1]), item[0]))
            keep_ids = {id(message) for _, message in ranked[-self.window.max_messages:]}
            kept = [message for message in kept if id(message) in keep_ids]

        if len(kept) == len(history):
            return []

        kept_ids = {id(message) for message in kept}
        self._history[candidate_id] = kept
        return [message for message in history if id(message) not in kept_ids]
