"""One recognition run: preprocess, recognize, classify, resolve, merge."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..core.constants import (
    DEFAULT_RARITY,
    EFFECT_MIN_LINE_LENGTH,
    PLACEHOLDER_DESCRIPTION,
    PLACEHOLDER_NAME_PREFIX,
)
from ..core.diagnostics import CatalogMeta, Region, ScanDiagnostics, Verification
from ..core.types import CardCandidate, CardRecord, RecognitionResult
from ..imaging.preprocess import STANDARD, PreprocessOutcome
from ..ocr.classifier import typed_words
from ..resolve.resolver import CatalogMatch, merge_into_record
from ..utils.log import LoggerMixin

FULL_TEXT_REGION = "full_text"


def placeholder_name(now: Optional[datetime] = None) -> str:
    """Name given to cards nothing could be read from, e.g. 'Scanned Card 2024-05-01 1432'."""
    now = now or datetime.now()
    return f"{PLACEHOLDER_NAME_PREFIX} {now:%Y-%m-%d %H%M}"


def scan_confidence(raw_confidence: float) -> float:
    """Recognizer confidence (0-100) as the persisted 0-1 score."""
    return max(0.0, min(raw_confidence / 100.0, 1.0))


def build_card(
    candidate: CardCandidate,
    match: Optional[CatalogMatch],
    source_image_ref: Optional[str],
    now: Optional[datetime] = None,
) -> CardRecord:
    """Unsaved CardRecord from local fields, overlaid with catalog fields."""
    effect = candidate.effect_text.strip()
    card = CardRecord(
        id=None,
        name=candidate.name or placeholder_name(now),
        type=candidate.type,
        attribute=candidate.attribute,
        level=candidate.level,
        attack=candidate.attack,
        defense=candidate.defense,
        description=effect if len(effect) > EFFECT_MIN_LINE_LENGTH else PLACEHOLDER_DESCRIPTION,
        rarity=candidate.rarity or DEFAULT_RARITY,
        source_image_ref=source_image_ref,
    )
    if match is not None:
        merge_into_record(card, match.entry)
    return card


def build_regions(recognition: RecognitionResult) -> List[Region]:
    regions: List[Region] = []
    if not recognition.is_empty:
        regions.append(Region(
            text=recognition.full_text.strip(),
            confidence=round(recognition.overall_confidence),
            type=FULL_TEXT_REGION,
        ))
    for word, kind in typed_words(recognition.words):
        regions.append(Region(text=word.text, confidence=round(word.confidence), type=kind))
    return regions


def catalog_meta(match: Optional[CatalogMatch]) -> Optional[CatalogMeta]:
    if match is None:
        return None
    return CatalogMeta(
        strategy=match.strategy,
        external_code=match.entry.external_code,
        ambiguous=match.ambiguous,
        similarity=match.similarity,
    )


def build_diagnostics(
    recognition: RecognitionResult,
    candidate: CardCandidate,
    match: Optional[CatalogMatch],
) -> ScanDiagnostics:
    full_text = recognition.full_text.strip()
    return ScanDiagnostics(
        full_text=full_text,
        confidence=round(recognition.overall_confidence),
        regions=build_regions(recognition),
        verification=Verification.build(candidate.name, full_text, recognition.overall_confidence),
        catalog=catalog_meta(match),
    )


@dataclass
class PipelineResult:
    card: CardRecord
    candidate: CardCandidate
    recognition: RecognitionResult
    preprocess: PreprocessOutcome
    match: Optional[CatalogMatch]
    diagnostics: ScanDiagnostics
    confidence: float  # 0-1


class ScanPipeline(LoggerMixin):
    """Chains the recognition components for a single image.

    Preprocessing and catalog problems are absorbed by their components;
    recognition failures propagate so the caller can fail the scan.
    """

    def __init__(self, preprocessor, recognizer, classifier, resolver):
        self.preprocessor = preprocessor
        self.recognizer = recognizer
        self.classifier = classifier
        self.resolver = resolver

    async def run(
        self,
        data: bytes,
        source_image_ref: Optional[str],
        scan_id: Optional[str] = None,
        strategy: str = STANDARD,
    ) -> PipelineResult:
        prepared = self.preprocessor.preprocess(data, strategy)
        recognition = await self.recognizer.recognize(prepared.data)
        candidate = self.classifier.classify_result(recognition)
        match = await self.resolver.resolve(candidate.name, scan_id=scan_id)

        card = build_card(candidate, match, source_image_ref)
        self.logger.info(
            "Recognition run finished",
            scan_id=scan_id,
            strategy=strategy,
            preprocess_fell_back=prepared.fell_back,
            extracted_name=candidate.name,
            card_name=card.name,
            catalog_strategy=match.strategy if match else None,
            confidence=recognition.overall_confidence,
        )
        return PipelineResult(
            card=card,
            candidate=candidate,
            recognition=recognition,
            preprocess=prepared,
            match=match,
            diagnostics=build_diagnostics(recognition, candidate, match),
            confidence=scan_confidence(recognition.overall_confidence),
        )
