"""OCR diagnostics stored on each scan.

The JSON form keeps the camelCase shape older clients read (``fullText``,
``confidence``, ``regions``, ``verification``, ``retryAttempt``...); the
Python side is a tagged structure instead of a free-form dict.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .constants import TEXT_QUALITY_HIGH, TEXT_QUALITY_MEDIUM


def text_quality(confidence: float) -> str:
    if confidence > TEXT_QUALITY_HIGH:
        return "high"
    if confidence > TEXT_QUALITY_MEDIUM:
        return "medium"
    return "low"


@dataclass
class Region:
    text: str
    confidence: float
    type: str


@dataclass
class Verification:
    card_name_match: bool
    text_quality: str

    @classmethod
    def build(cls, card_name: Optional[str], full_text: str, confidence: float) -> "Verification":
        name_match = bool(card_name) and card_name.lower() in full_text.lower()
        return cls(card_name_match=name_match, text_quality=text_quality(confidence))


@dataclass
class RetryMeta:
    retry_timestamp: str

    @classmethod
    def now(cls) -> "RetryMeta":
        return cls(retry_timestamp=datetime.now(timezone.utc).isoformat())


@dataclass
class EnhancementMeta:
    mode: str
    manual_hints: Dict[str, str]
    original_scan_id: str
    reasoning: str = ""


@dataclass
class CatalogMeta:
    strategy: str
    external_code: Optional[str]
    ambiguous: bool = False
    similarity: Optional[float] = None


@dataclass
class ScanDiagnostics:
    full_text: str = ""
    confidence: float = 0.0  # 0-100
    regions: List[Region] = field(default_factory=list)
    verification: Optional[Verification] = None
    catalog: Optional[CatalogMeta] = None
    retry: Optional[RetryMeta] = None
    enhancement: Optional[EnhancementMeta] = None
    error: Optional[str] = None

    @property
    def kind(self) -> str:
        """Tag: 'failure' when the run ended in an error, else 'recognition'."""
        return "failure" if self.error is not None else "recognition"

    @classmethod
    def failure(cls, error: Exception, retry: Optional[RetryMeta] = None) -> "ScanDiagnostics":
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        return cls(error=message, retry=retry)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.error is None:
            data["fullText"] = self.full_text
            data["confidence"] = self.confidence
            data["regions"] = [
                {"text": r.text, "confidence": r.confidence, "type": r.type}
                for r in self.regions
            ]
        else:
            data["error"] = self.error
        if self.verification is not None:
            data["verification"] = {
                "cardNameMatch": self.verification.card_name_match,
                "textQuality": self.verification.text_quality,
            }
        if self.catalog is not None:
            data["catalogMatch"] = {
                "strategy": self.catalog.strategy,
                "externalCode": self.catalog.external_code,
                "ambiguous": self.catalog.ambiguous,
                "similarity": self.catalog.similarity,
            }
        if self.retry is not None:
            data["retryAttempt"] = True
            data["retryTimestamp"] = self.retry.retry_timestamp
        if self.enhancement is not None:
            data["enhancementMode"] = self.enhancement.mode
            data["manualHints"] = dict(self.enhancement.manual_hints)
            data["originalScanId"] = self.enhancement.original_scan_id
            data["reasoning"] = self.enhancement.reasoning
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanDiagnostics":
        verification = data.get("verification")
        catalog = data.get("catalogMatch")
        enhancement_mode = data.get("enhancementMode")
        return cls(
            # older rows used "text" instead of "fullText"
            full_text=data.get("fullText", data.get("text", "")) or "",
            confidence=data.get("confidence", 0) or 0,
            regions=[
                Region(text=r.get("text", ""), confidence=r.get("confidence", 0), type=r.get("type", "text"))
                for r in data.get("regions") or []
            ],
            verification=Verification(
                card_name_match=bool(verification.get("cardNameMatch")),
                text_quality=verification.get("textQuality", "low"),
            ) if verification else None,
            catalog=CatalogMeta(
                strategy=catalog.get("strategy", ""),
                external_code=catalog.get("externalCode"),
                ambiguous=bool(catalog.get("ambiguous")),
                similarity=catalog.get("similarity"),
            ) if catalog else None,
            retry=RetryMeta(retry_timestamp=data.get("retryTimestamp", "")) if data.get("retryAttempt") else None,
            enhancement=EnhancementMeta(
                mode=enhancement_mode,
                manual_hints=data.get("manualHints") or {},
                original_scan_id=data.get("originalScanId", ""),
                reasoning=data.get("reasoning") or "",
            ) if enhancement_mode else None,
            error=data.get("error"),
        )

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional["ScanDiagnostics"]:
        if not raw:
            return None
        return cls.from_dict(json.loads(raw))
