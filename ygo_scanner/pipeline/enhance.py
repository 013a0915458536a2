"""Second-chance identification of a scan, optionally guided by human hints."""

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from rapidfuzz import fuzz

from ..core.constants import (
    DEFAULT_RARITY,
    HINT_CONFIDENCE_BONUS,
    HINT_CORROBORATION_MIN,
    MANUAL_BASE_CONFIDENCE,
    PLACEHOLDER_DESCRIPTION,
    UNKNOWN_TYPE,
)
from ..core.diagnostics import EnhancementMeta, Region, ScanDiagnostics, Verification
from ..core.types import (
    CardCandidate,
    CardRecord,
    EnhancementMode,
    EnhancementRequest,
    Identification,
    IdentificationContext,
    ManualHints,
    RecognitionResult,
    ScanAttempt,
    ScanStatus,
)
from ..imaging.preprocess import ENHANCED, STANDARD
from ..imaging.source import sniff_content_type
from ..ocr.regexes import normalize_attribute, normalize_card_type
from ..resolve.resolver import merge_into_record
from ..utils.error_handler import (
    EnhancementFailure,
    ErrorContext,
    InvalidRequest,
    RecognitionFailure,
    ScanNotFound,
    ScanOwnershipError,
    handle_error,
)
from ..utils.log import LoggerMixin
from ..utils.validation import validate_enum_value, validate_owner_id
from .cards import persist_card
from .locks import ScanLockRegistry
from .processing import FULL_TEXT_REGION, catalog_meta, scan_confidence


def parse_enhancement_request(data: Mapping[str, Any]) -> EnhancementRequest:
    """Build a request from camelCase or snake_case keys."""
    scan_id = data.get("originalScanId") or data.get("original_scan_id")
    if not isinstance(scan_id, str) or not scan_id.strip():
        raise InvalidRequest("Original scan ID is required")

    mode = data.get("enhancementMode") or data.get("mode") or EnhancementMode.AUTO.value
    mode = validate_enum_value(
        str(mode).lower(),
        [m.value for m in EnhancementMode],
        field_name="enhancementMode",
        error_cls=InvalidRequest,
    )
    hints = data.get("manualHints") or data.get("manual_hints")
    return EnhancementRequest(
        original_scan_id=scan_id.strip(),
        mode=EnhancementMode(mode),
        manual_hints=ManualHints.from_mapping(hints),
    )


def corroborates(hint: Optional[str], text: str) -> bool:
    """True when ``hint`` appears, approximately, in recognized ``text``."""
    if not hint or not text:
        return False
    return fuzz.partial_ratio(hint.lower(), text.lower()) >= HINT_CORROBORATION_MIN


class HeuristicIdentifier(LoggerMixin):
    """Identification using the local recognition components only.

    auto: re-read the image with the enhanced preprocessing strategy.
    manual: hints supply the fields; recognized text only corroborates them.
    hybrid: re-read with the enhanced strategy, then let hints override.
    """

    def __init__(self, preprocessor, recognizer, classifier):
        self.preprocessor = preprocessor
        self.recognizer = recognizer
        self.classifier = classifier

    async def identify(self, context: IdentificationContext) -> Identification:
        if context.mode is EnhancementMode.MANUAL:
            return await self._manual(context)
        if context.mode is EnhancementMode.HYBRID:
            return await self._hybrid(context)
        return await self._auto(context)

    async def _read(self, image: bytes, strategy: str) -> Tuple[RecognitionResult, CardCandidate]:
        prepared = self.preprocessor.preprocess(image, strategy)
        recognition = await self.recognizer.recognize(prepared.data)
        return recognition, self.classifier.classify_result(recognition)

    async def _auto(self, context: IdentificationContext) -> Identification:
        recognition, candidate = await self._read(context.image, ENHANCED)
        if not candidate.name:
            raise EnhancementFailure("Enhanced recognition found no card name")
        return Identification(
            name=candidate.name,
            type=candidate.type,
            attribute=candidate.attribute,
            level=candidate.level,
            attack=candidate.attack,
            defense=candidate.defense,
            description=candidate.effect_text or None,
            confidence=recognition.overall_confidence,
            reasoning="Re-read the image with denoising, local contrast and adaptive thresholding",
            full_text=recognition.full_text.strip(),
        )

    async def _manual(self, context: IdentificationContext) -> Identification:
        hints = context.hints
        if not hints.card_name:
            raise EnhancementFailure("Manual enhancement needs a card name hint")

        try:
            recognition, candidate = await self._read(context.image, STANDARD)
        except RecognitionFailure as e:
            self.logger.warning("Corroborating recognition failed", error=e.message)
            recognition, candidate = RecognitionResult(), CardCandidate()

        text = recognition.full_text
        confidence = MANUAL_BASE_CONFIDENCE
        reasons = ["Fields taken from the supplied hints"]
        if corroborates(hints.card_name, text):
            confidence += HINT_CONFIDENCE_BONUS
            reasons.append("card name hint found in the recognized text")
        if corroborates(hints.known_text, text):
            confidence += HINT_CONFIDENCE_BONUS
            reasons.append("known text found in the recognized text")

        return Identification(
            name=hints.card_name,
            type=normalize_card_type(hints.card_type) or candidate.type,
            attribute=normalize_attribute(hints.attribute) or candidate.attribute,
            level=candidate.level,
            attack=candidate.attack,
            defense=candidate.defense,
            description=hints.description or hints.known_text or candidate.effect_text or None,
            confidence=min(confidence, 100.0),
            reasoning="; ".join(reasons),
            full_text=text.strip(),
        )

    async def _hybrid(self, context: IdentificationContext) -> Identification:
        hints = context.hints
        recognition, candidate = await self._read(context.image, ENHANCED)
        text = recognition.full_text

        confidence = recognition.overall_confidence
        reasons = ["Re-read the image with the enhanced strategy"]
        if hints.card_name:
            if corroborates(hints.card_name, text):
                confidence += HINT_CONFIDENCE_BONUS
                reasons.append("card name hint confirmed by the recognized text")
            else:
                reasons.append("card name taken from the hint")
        if corroborates(hints.known_text, text):
            confidence += HINT_CONFIDENCE_BONUS
            reasons.append("known text confirmed by the recognized text")

        name = hints.card_name or candidate.name
        if not name:
            raise EnhancementFailure("No card name from recognition or hints")

        return Identification(
            name=name,
            type=normalize_card_type(hints.card_type) or candidate.type,
            attribute=normalize_attribute(hints.attribute) or candidate.attribute,
            level=candidate.level,
            attack=candidate.attack,
            defense=candidate.defense,
            description=hints.description or candidate.effect_text or hints.known_text or None,
            confidence=min(confidence, 100.0),
            reasoning="; ".join(reasons),
            full_text=text.strip(),
        )


@dataclass
class EnhancementOutcome:
    success: bool
    scan: Optional[ScanAttempt]
    card: Optional[CardRecord] = None
    reasoning: str = ""
    confidence: float = 0.0  # 0-1
    message: str = ""


def card_from_identification(identification: Identification, source_image_ref: Optional[str]) -> CardRecord:
    return CardRecord(
        id=None,
        name=identification.name,
        type=identification.type or UNKNOWN_TYPE,
        attribute=identification.attribute,
        level=identification.level,
        attack=identification.attack,
        defense=identification.defense,
        description=identification.description or PLACEHOLDER_DESCRIPTION,
        rarity=DEFAULT_RARITY,
        source_image_ref=source_image_ref,
    )


class EnhancementOrchestrator(LoggerMixin):
    """Runs an identifier over a prior scan and records the result on that scan."""

    def __init__(self, store, source_resolver, identifier, resolver, locks: Optional[ScanLockRegistry] = None):
        self.store = store
        self.source_resolver = source_resolver
        self.identifier = identifier
        self.resolver = resolver
        self.locks = locks or ScanLockRegistry(store)

    async def enhance(self, request: EnhancementRequest, owner_id: str) -> EnhancementOutcome:
        owner_id = validate_owner_id(owner_id)
        scan_id = request.original_scan_id
        async with self.locks.hold(scan_id):
            scan = self.store.get_scan(scan_id)
            if scan is None:
                raise ScanNotFound("Original scan not found", details={"scan_id": scan_id})
            if scan.owner_id != owner_id:
                raise ScanOwnershipError("Scan belongs to another user", details={"scan_id": scan_id})

            context = self.log_start("Scan enhancement", scan_id=scan_id, mode=request.mode.value)
            try:
                identification, card, match = await self._identify_and_persist(scan, request)
            except asyncio.CancelledError:
                self._abandon(scan, EnhancementFailure("Enhancement was cancelled"))
                raise
            except Exception as e:
                handle_error(
                    e,
                    ErrorContext(
                        operation="enhancement",
                        module=__name__,
                        function="enhance",
                        input_data={"mode": request.mode.value, "hints": request.manual_hints.to_dict()},
                        scan_id=scan_id,
                    ),
                    self.logger,
                    reraise=False,
                )
                self._abandon(scan, e)
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                return EnhancementOutcome(success=False, scan=scan, message=f"Enhancement failed: {message}")

            full_text = identification.full_text
            regions = []
            if full_text:
                regions.append(Region(text=full_text, confidence=round(identification.confidence), type=FULL_TEXT_REGION))
            scan.status = ScanStatus.IDENTIFIED
            scan.confidence = scan_confidence(identification.confidence)
            scan.resolved_card_ref = card.id
            scan.extracted_text = ScanDiagnostics(
                full_text=full_text,
                confidence=round(identification.confidence),
                regions=regions,
                verification=Verification.build(identification.name, full_text, identification.confidence),
                catalog=catalog_meta(match),
                enhancement=EnhancementMeta(
                    mode=request.mode.value,
                    manual_hints=request.manual_hints.to_dict(),
                    original_scan_id=scan.id,
                    reasoning=identification.reasoning,
                ),
            )
            self.store.save_scan(scan)

            self.log_success(context, card_id=card.id, card_name=card.name, confidence=scan.confidence)
            return EnhancementOutcome(
                success=True,
                scan=scan,
                card=card,
                reasoning=identification.reasoning,
                confidence=scan.confidence,
                message=f"Card identified using {request.mode.value} enhancement",
            )

    async def _identify_and_persist(self, scan: ScanAttempt, request: EnhancementRequest):
        data = await self.source_resolver.resolve(scan.source_image_ref)
        previous = self.store.get_card(scan.resolved_card_ref) if scan.resolved_card_ref else None

        identification = await self.identifier.identify(
            IdentificationContext(
                mode=request.mode,
                hints=request.manual_hints,
                image=data,
                content_type=sniff_content_type(data, default="image/png"),
                prior_diagnostics=scan.extracted_text,
                previous_name=previous.name if previous else None,
            )
        )
        if not identification.name:
            raise EnhancementFailure("Identifier returned no card name")

        match = await self.resolver.resolve(identification.name, scan_id=scan.id)
        fields = card_from_identification(identification, scan.source_image_ref)
        if match is not None:
            merge_into_record(fields, match.entry)

        card = persist_card(
            self.store, fields, scan_id=scan.id, linked_id=scan.resolved_card_ref, reuse_by_name=True
        )
        return identification, card, match

    def _abandon(self, scan: ScanAttempt, error: BaseException) -> None:
        # Terminal scans keep their state; only a stranded pending scan is failed
        if scan.status is ScanStatus.PENDING:
            scan.status = ScanStatus.FAILED
            scan.extracted_text = ScanDiagnostics.failure(error)
            self.store.save_scan(scan)
