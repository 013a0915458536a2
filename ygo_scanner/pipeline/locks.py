"""Per-scan exclusion for process, retry and enhance."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Set

from ..utils.config import settings
from ..utils.error_handler import ScanBusyError
from ..utils.log import get_logger

logger = get_logger(__name__)


class ScanLockRegistry:
    """Tracks scans with an operation in flight.

    A second operation on a busy scan is rejected at once rather than queued.
    The in-memory set covers operations within this process; with a record
    store the scan row is also claimed, so separate processes sharing the
    database exclude each other. Claims older than ``stale_after_s`` are
    treated as abandoned by a crashed process.
    """

    def __init__(self, store=None, stale_after_s: Optional[float] = None):
        self.store = store
        self.stale_after_s = stale_after_s or settings.SCAN_CLAIM_TTL_S
        self._active: Set[str] = set()

    def is_busy(self, scan_id: str) -> bool:
        if scan_id in self._active:
            return True
        return self.store is not None and self.store.is_claimed(scan_id)

    @asynccontextmanager
    async def hold(self, scan_id: str) -> AsyncIterator[None]:
        if scan_id in self._active:
            logger.warning("Scan busy, rejecting operation", scan_id=scan_id)
            raise ScanBusyError("Scan is already being processed", details={"scan_id": scan_id})

        token = None
        if self.store is not None and scan_id:
            token = uuid.uuid4().hex
            if not self.store.claim_scan(scan_id, token, self.stale_after_s):
                token = None
                # Unknown scans are left for the operation to report
                if self.store.get_scan(scan_id) is not None:
                    logger.warning("Scan claimed elsewhere, rejecting operation", scan_id=scan_id)
                    raise ScanBusyError("Scan is already being processed", details={"scan_id": scan_id})

        self._active.add(scan_id)
        try:
            yield
        finally:
            self._active.discard(scan_id)
            if token is not None:
                self.store.release_scan(scan_id, token)
