"""Scan lifecycle: pending -> identified | failed, with retry."""

import asyncio
import uuid
from dataclasses import dataclass
from typing import List, Optional

from ..core.diagnostics import RetryMeta, ScanDiagnostics
from ..core.types import CardRecord, ScanAttempt, ScanStatus
from ..imaging.source import ImagePayload
from ..utils.error_handler import (
    InvalidRequest,
    ScanNotFound,
    ScanOwnershipError,
    ScanStateError,
)
from ..utils.log import LoggerMixin
from ..utils.validation import validate_numeric_range, validate_owner_id
from .cards import persist_card
from .locks import ScanLockRegistry

HISTORY_MAX_LIMIT = 200


@dataclass
class ScanOutcome:
    scan: ScanAttempt
    card: Optional[CardRecord] = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.scan.status is ScanStatus.IDENTIFIED


class ScanLifecycleManager(LoggerMixin):
    """Creates, processes and retries scans against the record store."""

    def __init__(
        self,
        store,
        pipeline,
        source_resolver,
        blob_store=None,
        locks: Optional[ScanLockRegistry] = None,
        embed_source_images: bool = False,
    ):
        self.store = store
        self.pipeline = pipeline
        self.source_resolver = source_resolver
        self.blob_store = blob_store
        self.locks = locks or ScanLockRegistry(store)
        self.embed_source_images = embed_source_images

    def create(self, owner_id: str, payload: ImagePayload) -> ScanAttempt:
        """Persist a new pending scan for ``payload``."""
        owner_id = validate_owner_id(owner_id)
        if self.blob_store is not None and not self.embed_source_images:
            source_ref = self.blob_store.store(payload.data, payload.content_type)
        else:
            source_ref = payload.to_data_uri()

        scan = ScanAttempt(id=str(uuid.uuid4()), owner_id=owner_id, source_image_ref=source_ref)
        self.store.save_scan(scan)
        self.logger.info(
            "Scan created",
            scan_id=scan.id,
            owner_id=owner_id,
            content_type=payload.content_type,
            size=len(payload.data),
            embedded=source_ref.startswith("data:"),
        )
        return scan

    async def process(self, scan_id: str) -> ScanOutcome:
        """Run the pipeline for a pending scan."""
        async with self.locks.hold(scan_id):
            scan = self._require(scan_id)
            if scan.status is not ScanStatus.PENDING:
                raise ScanStateError(
                    "Only pending scans can be processed",
                    details={"scan_id": scan_id, "status": scan.status.value},
                )
            return await self._run(scan)

    async def submit(self, owner_id: str, payload: ImagePayload) -> ScanOutcome:
        scan = self.create(owner_id, payload)
        return await self.process(scan.id)

    async def retry(self, scan_id: str, owner_id: str) -> ScanOutcome:
        """Re-run a failed (or abandoned pending) scan from its original image."""
        owner_id = validate_owner_id(owner_id)
        async with self.locks.hold(scan_id):
            scan = self._require(scan_id)
            if scan.owner_id != owner_id:
                raise ScanOwnershipError("Scan belongs to another user", details={"scan_id": scan_id})
            if scan.status is ScanStatus.IDENTIFIED:
                raise ScanStateError(
                    "Only failed or pending scans can be retried",
                    details={"scan_id": scan_id, "status": scan.status.value},
                )
            return await self._run(scan, retry=RetryMeta.now())

    def get(self, scan_id: str) -> ScanAttempt:
        return self._require(scan_id)

    def get_card(self, card_id: str) -> Optional[CardRecord]:
        return self.store.get_card(card_id)

    def history(self, owner_id: str, limit: int = 50, offset: int = 0) -> List[ScanAttempt]:
        """An owner's scans, newest first."""
        owner_id = validate_owner_id(owner_id)
        validate_numeric_range(limit, 1, HISTORY_MAX_LIMIT, "limit", error_cls=InvalidRequest)
        validate_numeric_range(offset, 0, None, "offset", error_cls=InvalidRequest)
        return self.store.list_scans(owner_id, limit=limit, offset=offset)

    def _require(self, scan_id: str) -> ScanAttempt:
        scan = self.store.get_scan(scan_id) if scan_id else None
        if scan is None:
            raise ScanNotFound("Scan not found", details={"scan_id": scan_id})
        return scan

    async def _run(self, scan: ScanAttempt, retry: Optional[RetryMeta] = None) -> ScanOutcome:
        context = self.log_start("Scan processing", scan_id=scan.id, retry_attempt=retry is not None)
        try:
            data = await self.source_resolver.resolve(scan.source_image_ref)
            result = await self.pipeline.run(data, scan.source_image_ref, scan_id=scan.id)
            card = persist_card(
                self.store, result.card, scan_id=scan.id, linked_id=scan.resolved_card_ref
            )
        except asyncio.CancelledError:
            self._fail(scan, asyncio.CancelledError("Processing was cancelled"), retry)
            raise
        except Exception as e:
            self.log_error(context, e)
            self._fail(scan, e, retry)
            return ScanOutcome(scan=scan, message=scan.extracted_text.error)

        diagnostics = result.diagnostics
        diagnostics.retry = retry
        scan.status = ScanStatus.IDENTIFIED
        scan.confidence = result.confidence
        scan.extracted_text = diagnostics
        scan.resolved_card_ref = card.id
        self.store.save_scan(scan)

        self.log_success(
            context,
            card_id=card.id,
            card_name=card.name,
            confidence=scan.confidence,
            catalog_strategy=result.match.strategy if result.match else None,
        )
        message = "Card identified" if result.match else "Card scanned without a catalog match"
        return ScanOutcome(scan=scan, card=card, message=message)

    def _fail(self, scan: ScanAttempt, error: BaseException, retry: Optional[RetryMeta]) -> None:
        scan.status = ScanStatus.FAILED
        scan.extracted_text = ScanDiagnostics.failure(error, retry=retry)
        self.store.save_scan(scan)
