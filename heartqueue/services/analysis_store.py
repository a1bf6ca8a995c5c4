"""
Bounded analysis-status cache owned by the proxy.
"""

import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Optional

from heartqueue.models import AnalysisRecord, AnalysisStatus

logger = logging.getLogger(__name__)


class AnalysisStore:
    """
    Remembers analysis status per seed track.

    Entries expire ``ttl_seconds`` after their last update and the least
    recently updated entry is evicted once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int = 1000, ttl_seconds: float = 86400.0, clock=time.time):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._records: "OrderedDict[str, tuple]" = OrderedDict()

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._records)

    def _purge_expired(self):
        now = self.clock()
        expired = [key for key, (_, stored_at) in self._records.items() if now - stored_at >= self.ttl_seconds]
        for key in expired:
            del self._records[key]

    def get(self, track_id: str) -> Optional[AnalysisRecord]:
        entry = self._records.get(track_id)
        if entry is None:
            return None
        record, stored_at = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            del self._records[track_id]
            return None
        return record

    def set_status(self, track_id: str, status: AnalysisStatus) -> AnalysisRecord:
        now = self.clock()
        record = AnalysisRecord(
            track_id=track_id,
            status=status,
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
        )
        self._records.pop(track_id, None)
        self._records[track_id] = (record, now)
        while len(self._records) > self.max_entries:
            evicted, _ = self._records.popitem(last=False)
            logger.debug("Evicted analysis record for %s", evicted)
        return record

    def mark_completed(self, track_id: str) -> AnalysisRecord:
        logger.info("Analysis completed for track: %s", track_id)
        return self.set_status(track_id, AnalysisStatus.COMPLETED)

    def is_completed(self, track_id: str) -> bool:
        record = self.get(track_id)
        return record is not None and record.status == AnalysisStatus.COMPLETED
