"""Tests for the scan lifecycle: create, process, retry, history."""

import asyncio
from datetime import datetime

import pytest

from fakes import DARK_MAGICIAN_TEXT, FakeCatalog, FakeRecognizer, build_lifecycle, make_entry, make_result
from ygo_scanner.core.constants import PLACEHOLDER_DESCRIPTION
from ygo_scanner.core.types import CardCandidate, CardRecord, ScanStatus
from ygo_scanner.imaging.source import ImagePayload
from ygo_scanner.pipeline.locks import ScanLockRegistry
from ygo_scanner.pipeline.processing import build_card, placeholder_name, scan_confidence
from ygo_scanner.utils.error_handler import (
    CatalogUnavailable,
    InvalidRequest,
    RecognitionFailure,
    RecognitionTimeout,
    ScanBusyError,
    ScanNotFound,
    ScanOwnershipError,
    ScanStateError,
)

OWNER = "user-1"


@pytest.fixture
def payload(sample_png):
    return ImagePayload.from_upload(sample_png, "image/png")


class GatedRecognizer(FakeRecognizer):
    """Holds every recognition until released, so operations overlap."""

    def __init__(self, *results):
        super().__init__(*results)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def recognize(self, data):
        self.started.set()
        await self.release.wait()
        return await super().recognize(data)


class TestProcessingHelpers:
    def test_placeholder_name_format(self):
        assert placeholder_name(datetime(2024, 5, 1, 14, 32)) == "Scanned Card 2024-05-01 1432"

    def test_scan_confidence_clamped(self):
        assert scan_confidence(85.0) == 0.85
        assert scan_confidence(140.0) == 1.0
        assert scan_confidence(-3.0) == 0.0

    def test_short_effect_uses_placeholder_description(self):
        card = build_card(CardCandidate(name="Card", effect_text="tiny"), None, None)
        assert card.description == PLACEHOLDER_DESCRIPTION
        assert card.rarity == "Common"


class TestProcess:
    """Test ScanLifecycleManager.submit and process."""

    @pytest.mark.asyncio
    async def test_identified_with_catalog_match(self, record_store, blob_store, payload, dark_magician_catalog):
        recognizer = FakeRecognizer(make_result(DARK_MAGICIAN_TEXT, confidence=88.0))
        lifecycle = build_lifecycle(record_store, recognizer, dark_magician_catalog, blob_store=blob_store)

        outcome = await lifecycle.submit(OWNER, payload)

        assert outcome.success
        scan = record_store.get_scan(outcome.scan.id)
        assert scan.status == ScanStatus.IDENTIFIED
        assert scan.confidence == pytest.approx(0.88)
        assert scan.resolved_card_ref == outcome.card.id

        card = record_store.get_card(scan.resolved_card_ref)
        assert card.name == "Dark Magician"
        assert card.external_code == "46986414"
        assert card.attack == 2500
        assert card.type == "Normal Monster"
        assert card.rarity == "Ultra Rare"

        diagnostics = scan.extracted_text.to_dict()
        assert diagnostics["fullText"] == DARK_MAGICIAN_TEXT
        assert diagnostics["confidence"] == 88
        assert diagnostics["verification"] == {"cardNameMatch": True, "textQuality": "high"}
        assert diagnostics["catalogMatch"]["strategy"] == "exact"
        assert "retryAttempt" not in diagnostics

    @pytest.mark.asyncio
    async def test_catalog_attack_overrides_local(self, record_store, payload):
        text = "Dark Magician\nDARK\nATK 2400 DEF 2100"
        catalog = FakeCatalog(exact={"Dark Magician": [make_entry()]})
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result(text)), catalog)

        outcome = await lifecycle.submit(OWNER, payload)
        assert outcome.card.attack == 2500

    @pytest.mark.asyncio
    async def test_empty_text_gives_placeholder_card(self, record_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("", confidence=0.0)), FakeCatalog())

        outcome = await lifecycle.submit(OWNER, payload)

        assert outcome.success
        assert outcome.card.name.startswith("Scanned Card ")
        assert outcome.card.type == "Unknown"
        assert outcome.card.description == PLACEHOLDER_DESCRIPTION
        assert outcome.scan.confidence == 0.0
        assert outcome.scan.extracted_text.verification.text_quality == "low"

    @pytest.mark.asyncio
    async def test_unmatched_name_keeps_local_fields(self, record_store, payload):
        text = "Valkyrie Funfte\nLIGHT\nLEVEL 2\nLong effect text here spanning words\nATK 800 DEF 1200"
        catalog = FakeCatalog()
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result(text)), catalog)

        outcome = await lifecycle.submit(OWNER, payload)

        assert outcome.success
        assert outcome.card.name == "Valkyrie Funfte"
        assert outcome.card.attribute == "LIGHT"
        assert (outcome.card.attack, outcome.card.defense, outcome.card.level) == (800, 1200, 2)
        assert outcome.card.external_code is None
        assert outcome.scan.extracted_text.catalog is None
        assert outcome.message == "Card scanned without a catalog match"

    @pytest.mark.asyncio
    async def test_catalog_outage_still_identifies(self, record_store, payload):
        catalog = FakeCatalog(error=CatalogUnavailable("down"))
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result(DARK_MAGICIAN_TEXT)), catalog)

        outcome = await lifecycle.submit(OWNER, payload)
        assert outcome.success
        assert outcome.card.name == "Dark Magician"
        assert outcome.card.external_code is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [RecognitionFailure("engine crashed"), RecognitionTimeout("too slow")])
    async def test_recognition_errors_fail_scan(self, record_store, payload, error):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(error), FakeCatalog())

        outcome = await lifecycle.submit(OWNER, payload)

        assert not outcome.success
        assert outcome.card is None
        scan = record_store.get_scan(outcome.scan.id)
        assert scan.status == ScanStatus.FAILED
        assert scan.extracted_text.kind == "failure"
        assert scan.extracted_text.error == error.message
        assert scan.resolved_card_ref is None

    @pytest.mark.asyncio
    async def test_cancellation_fails_scan(self, record_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(asyncio.CancelledError()), FakeCatalog())
        scan = lifecycle.create(OWNER, payload)

        with pytest.raises(asyncio.CancelledError):
            await lifecycle.process(scan.id)

        assert record_store.get_scan(scan.id).status == ScanStatus.FAILED

    @pytest.mark.asyncio
    async def test_only_pending_scans_processed(self, record_store, payload, dark_magician_catalog):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result(DARK_MAGICIAN_TEXT)), dark_magician_catalog)
        outcome = await lifecycle.submit(OWNER, payload)

        with pytest.raises(ScanStateError):
            await lifecycle.process(outcome.scan.id)

    @pytest.mark.asyncio
    async def test_unknown_scan(self, record_store):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog())
        with pytest.raises(ScanNotFound):
            await lifecycle.process("missing")

    @pytest.mark.asyncio
    async def test_busy_scan_rejected(self, record_store, payload):
        locks = ScanLockRegistry()
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog(), locks=locks)
        scan = lifecycle.create(OWNER, payload)

        async with locks.hold(scan.id):
            with pytest.raises(ScanBusyError):
                await lifecycle.process(scan.id)

        assert record_store.get_scan(scan.id).status == ScanStatus.PENDING

    @pytest.mark.asyncio
    async def test_same_catalog_card_reused(self, record_store, payload, dark_magician_catalog):
        recognizer = FakeRecognizer(make_result(DARK_MAGICIAN_TEXT))
        lifecycle = build_lifecycle(record_store, recognizer, dark_magician_catalog)

        first = await lifecycle.submit(OWNER, payload)
        second = await lifecycle.submit(OWNER, payload)

        assert first.scan.id != second.scan.id
        assert first.card.id == second.card.id


class TestCreate:
    def test_blob_ref_by_default(self, record_store, blob_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog(), blob_store=blob_store)
        scan = lifecycle.create(OWNER, payload)

        assert scan.source_image_ref.startswith("blob:")
        assert blob_store.fetch(scan.source_image_ref) == payload.data
        assert record_store.get_scan(scan.id).status == ScanStatus.PENDING

    def test_embedded_data_uri(self, record_store, blob_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog(),
                                    blob_store=blob_store, embed=True)
        scan = lifecycle.create(OWNER, payload)
        assert scan.source_image_ref.startswith("data:image/png;base64,")

    def test_no_blob_store_embeds(self, record_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog())
        assert lifecycle.create(OWNER, payload).source_image_ref.startswith("data:")

    @pytest.mark.parametrize("owner", ["", "   ", None])
    def test_owner_required(self, record_store, payload, owner):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog())
        with pytest.raises(InvalidRequest):
            lifecycle.create(owner, payload)


class TestRetry:
    """Test ScanLifecycleManager.retry."""

    @pytest.mark.asyncio
    async def test_failed_scan_retried_in_place(self, record_store, blob_store, payload, dark_magician_catalog):
        recognizer = FakeRecognizer(RecognitionFailure("engine crashed"), make_result(DARK_MAGICIAN_TEXT, 90.0))
        lifecycle = build_lifecycle(record_store, recognizer, dark_magician_catalog, blob_store=blob_store)

        failed = await lifecycle.submit(OWNER, payload)
        assert not failed.success

        outcome = await lifecycle.retry(failed.scan.id, OWNER)

        assert outcome.success
        assert outcome.scan.id == failed.scan.id
        assert record_store.count_scans(OWNER) == 1

        scan = record_store.get_scan(failed.scan.id)
        assert scan.status == ScanStatus.IDENTIFIED
        diagnostics = scan.extracted_text.to_dict()
        assert diagnostics["retryAttempt"] is True
        assert diagnostics["retryTimestamp"]
        assert scan.created_at == failed.scan.created_at

    @pytest.mark.asyncio
    async def test_retry_failure_stays_failed(self, record_store, payload):
        recognizer = FakeRecognizer(RecognitionFailure("engine crashed"))
        lifecycle = build_lifecycle(record_store, recognizer, FakeCatalog())

        failed = await lifecycle.submit(OWNER, payload)
        outcome = await lifecycle.retry(failed.scan.id, OWNER)

        assert not outcome.success
        scan = record_store.get_scan(failed.scan.id)
        assert scan.status == ScanStatus.FAILED
        assert scan.extracted_text.retry is not None
        assert len(recognizer.inputs) == 2

    @pytest.mark.asyncio
    async def test_pending_scan_can_be_retried(self, record_store, payload, dark_magician_catalog):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result(DARK_MAGICIAN_TEXT)), dark_magician_catalog)
        scan = lifecycle.create(OWNER, payload)

        outcome = await lifecycle.retry(scan.id, OWNER)
        assert outcome.success

    @pytest.mark.asyncio
    async def test_identified_scan_not_retried(self, record_store, payload, dark_magician_catalog):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result(DARK_MAGICIAN_TEXT)), dark_magician_catalog)
        outcome = await lifecycle.submit(OWNER, payload)

        with pytest.raises(ScanStateError):
            await lifecycle.retry(outcome.scan.id, OWNER)

    @pytest.mark.asyncio
    async def test_other_owner_rejected(self, record_store, payload):
        recognizer = FakeRecognizer(RecognitionFailure("engine crashed"))
        lifecycle = build_lifecycle(record_store, recognizer, FakeCatalog())
        failed = await lifecycle.submit(OWNER, payload)

        with pytest.raises(ScanOwnershipError):
            await lifecycle.retry(failed.scan.id, "user-2")
        assert len(recognizer.inputs) == 1

    @pytest.mark.asyncio
    async def test_unknown_scan(self, record_store):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog())
        with pytest.raises(ScanNotFound):
            await lifecycle.retry("missing", OWNER)

    @pytest.mark.asyncio
    async def test_retry_updates_linked_card(self, record_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("Kuriboh")), FakeCatalog())
        scan = lifecycle.create(OWNER, payload)
        card = record_store.save_card(CardRecord(id=None, name="Old name"))
        scan.resolved_card_ref = card.id
        scan.status = ScanStatus.FAILED
        record_store.save_scan(scan)

        outcome = await lifecycle.retry(scan.id, OWNER)

        assert outcome.card.id == card.id
        assert record_store.get_card(card.id).name == "Kuriboh"

    @pytest.mark.asyncio
    async def test_concurrent_retries_across_managers(self, record_store, payload, dark_magician_catalog):
        """Managers built separately, as by two CLI processes, share only the store."""
        recognizer = GatedRecognizer(make_result(DARK_MAGICIAN_TEXT))
        first = build_lifecycle(record_store, recognizer, dark_magician_catalog)
        second = build_lifecycle(record_store, recognizer, dark_magician_catalog)
        scan = first.create(OWNER, payload)
        scan.status = ScanStatus.FAILED
        record_store.save_scan(scan)

        running = asyncio.create_task(first.retry(scan.id, OWNER))
        await recognizer.started.wait()
        with pytest.raises(ScanBusyError):
            await second.retry(scan.id, OWNER)

        recognizer.release.set()
        outcome = await running

        assert outcome.success
        assert len(recognizer.inputs) == 1
        stored = record_store.get_scan(scan.id)
        assert stored.resolved_card_ref == outcome.card.id
        assert not record_store.is_claimed(scan.id)

    @pytest.mark.asyncio
    async def test_scan_claimed_by_another_process(self, record_store, payload):
        recognizer = FakeRecognizer(RecognitionFailure("engine crashed"))
        lifecycle = build_lifecycle(record_store, recognizer, FakeCatalog())
        failed = await lifecycle.submit(OWNER, payload)
        record_store.claim_scan(failed.scan.id, "other-process", 300)

        with pytest.raises(ScanBusyError):
            await lifecycle.retry(failed.scan.id, OWNER)

        assert len(recognizer.inputs) == 1
        assert record_store.get_scan(failed.scan.id).status == ScanStatus.FAILED


class TestHistory:
    def test_newest_first(self, record_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog())
        ids = [lifecycle.create(OWNER, payload).id for _ in range(3)]
        lifecycle.create("user-2", payload)

        assert [s.id for s in lifecycle.history(OWNER)] == list(reversed(ids))

    @pytest.mark.parametrize("limit,offset", [(0, 0), (201, 0), (10, -1)])
    def test_invalid_paging(self, record_store, limit, offset):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog())
        with pytest.raises(InvalidRequest):
            lifecycle.history(OWNER, limit=limit, offset=offset)

    def test_get(self, record_store, payload):
        lifecycle = build_lifecycle(record_store, FakeRecognizer(make_result("")), FakeCatalog())
        scan = lifecycle.create(OWNER, payload)

        assert lifecycle.get(scan.id).id == scan.id
        with pytest.raises(ScanNotFound):
            lifecycle.get("missing")
