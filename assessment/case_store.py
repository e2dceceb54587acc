"""
CCAS — Case Store

Keyed TTL cache of active assessments.  Injected into the Orchestrator so
that no module-level state is shared between assessments; expired entries
are evicted lazily on access.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, List, Optional, TypeVar

from config import CASE_STORE_MAX_ENTRIES, CASE_STORE_TTL_SEC

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CaseStore(Generic[T]):
    """Thread-safe TTL map: case_id → value (normally a PatientContext)."""

    def __init__(
        self,
        ttl_sec: float = CASE_STORE_TTL_SEC,
        max_entries: int = CASE_STORE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_sec = ttl_sec
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()
        logger.info("CaseStore initialized (ttl=%ss, max_entries=%d)", ttl_sec, max_entries)

    def put(self, case_id: str, value: T):
        with self._lock:
            self._entries.pop(case_id, None)
            self._entries[case_id] = (self._clock() + self.ttl_sec, value)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %s (capacity)", evicted)

    def get(self, case_id: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(case_id)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[case_id]
                logger.debug("Evicted %s (expired)", case_id)
                return None
            return value

    def remove(self, case_id: str) -> bool:
        with self._lock:
            return self._entries.pop(case_id, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            self._purge()
            return list(self._entries)

    def __contains__(self, case_id: str) -> bool:
        return self.get(case_id) is not None

    def __len__(self) -> int:
        return len(self.keys())

    def _purge(self):
        now = self._clock()
        for case_id in [k for k, (exp, _) in self._entries.items() if exp <= now]:
            del self._entries[case_id]
