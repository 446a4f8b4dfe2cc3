"""Duplicate-message suppression for webhook retries.

WhatsApp re-delivers a notification when it does not get a timely 2xx, so the
same message id can arrive more than once, possibly concurrently. The guard
records an id before any outbound call is made for it.

State is process-local and lost on restart: suppression is best-effort
within one worker.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from whatsapp_relay.models import EvictionPolicy, Freshness

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class DuplicateCache:
    """Bounded set of recently seen message ids.

    ``clear`` policy: when an insert would exceed capacity, the whole cache
    is emptied first. ``lru``: only the least recently seen id is dropped.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        policy: EvictionPolicy = EvictionPolicy.CLEAR,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._policy = policy
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def check_and_record(self, message_id: str) -> Freshness:
        """Atomically test membership and record ``message_id`` if new."""
        with self._lock:
            if message_id in self._seen:
                if self._policy == EvictionPolicy.LRU:
                    self._seen.move_to_end(message_id)
                return Freshness.DUPLICATE

            if len(self._seen) >= self._capacity:
                self._evict()
            self._seen[message_id] = None
            return Freshness.FRESH

    def _evict(self) -> None:
        if self._policy == EvictionPolicy.LRU:
            self._seen.popitem(last=False)
            return
        logger.info("Duplicate cache reached %d ids, clearing", self._capacity)
        self._seen.clear()

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            return message_id in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
