"""Per-learner learning context cache."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from tutor_mcp.core.log_sanitizer import sanitize_for_logging

from .client import TutorMCPClient

logger = logging.getLogger(__name__)


@dataclass
class LearnerContextEntry:
    learner_id: str
    context: Dict[str, Any]
    loaded_at: float = field(default_factory=time.monotonic)

    def is_fresh(self, ttl_seconds: float) -> bool:
        return time.monotonic() - self.loaded_at < ttl_seconds


class LearnerContextRegistry:
    """
    Registry of learning contexts keyed by learner id.

    Entries are created on first use and reloaded once older than the TTL.
    Loads for the same learner are serialized by a per-learner lock, so
    concurrent first requests fetch once; different learners never wait on
    each other.
    """

    def __init__(self, client: TutorMCPClient, ttl_seconds: Optional[float] = None, enhanced: bool = True):
        self.client = client
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else client.settings.learner_context_ttl_seconds
        self.enhanced = enhanced
        self._entries: Dict[str, LearnerContextEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __contains__(self, learner_id: object) -> bool:
        return learner_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _lock_for(self, learner_id: str) -> asyncio.Lock:
        lock = self._locks.get(learner_id)
        if lock is None:
            lock = self._locks[learner_id] = asyncio.Lock()
        return lock

    async def get_context(self, learner_id: str, refresh: bool = False) -> Dict[str, Any]:
        """Return the learner's context, loading it on first use or when stale."""
        entry = self._entries.get(learner_id)
        if entry is not None and not refresh and entry.is_fresh(self.ttl_seconds):
            return entry.context

        async with self._lock_for(learner_id):
            # Another caller may have loaded it while we waited
            entry = self._entries.get(learner_id)
            if entry is not None and not refresh and entry.is_fresh(self.ttl_seconds):
                return entry.context

            logger.info(f"Loading learning context for learner {sanitize_for_logging(learner_id)}")
            if self.enhanced:
                context = await self.client.get_enhanced_learning_context(learner_id)
            else:
                context = await self.client.get_learning_context(learner_id)
            if context.get("error"):
                logger.warning(f"Not caching failed context load for learner {sanitize_for_logging(learner_id)}")
            else:
                self._entries[learner_id] = LearnerContextEntry(learner_id=learner_id, context=context)
            return context

    def _drop_lock(self, learner_id: str) -> None:
        # A held lock stays so its waiters and holder keep serializing on it
        lock = self._locks.get(learner_id)
        if lock is not None and not lock.locked():
            del self._locks[learner_id]

    def invalidate(self, learner_id: str) -> bool:
        """Forget one learner's context; returns whether an entry existed."""
        existed = self._entries.pop(learner_id, None) is not None
        self._drop_lock(learner_id)
        return existed

    def clear(self) -> None:
        self._entries.clear()
        for learner_id in list(self._locks):
            self._drop_lock(learner_id)
