from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .constants import DEFAULT_RARITY, UNKNOWN_TYPE


class ScanStatus(str, Enum):
    PENDING = "pending"
    IDENTIFIED = "identified"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ScanStatus.PENDING


class EnhancementMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    HYBRID = "hybrid"


@dataclass
class BoundingBox:
    x0: int
    y0: int
    x1: int
    y1: int


@dataclass
class RecognizedWord:
    text: str
    confidence: float  # 0-100
    bbox: BoundingBox


@dataclass
class RecognitionResult:
    """Raw output of one recognizer pass."""

    full_text: str = ""
    overall_confidence: float = 0.0  # 0-100
    words: List[RecognizedWord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.full_text.strip()


@dataclass
class CardCandidate:
    """Fields extracted locally, before catalog resolution."""

    name: str = ""
    type: str = UNKNOWN_TYPE
    attribute: Optional[str] = None
    level: Optional[int] = None
    attack: Optional[int] = None
    defense: Optional[int] = None
    effect_text: str = ""
    raw_confidence: float = 0.0  # 0-100
    rarity: Optional[str] = None


@dataclass
class CatalogEntry:
    """One card as returned by the external catalog. Missing fields are None."""

    name: str
    type: Optional[str] = None
    attribute: Optional[str] = None
    level: Optional[int] = None
    attack: Optional[int] = None
    defense: Optional[int] = None
    description: Optional[str] = None
    external_code: Optional[str] = None
    image_ref: Optional[str] = None
    rarity: Optional[str] = None


@dataclass
class CardRecord:
    id: Optional[str]
    name: str
    type: str = UNKNOWN_TYPE
    attribute: Optional[str] = None
    level: Optional[int] = None
    attack: Optional[int] = None
    defense: Optional[int] = None
    description: str = ""
    rarity: str = DEFAULT_RARITY
    external_code: Optional[str] = None
    source_image_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class ScanAttempt:
    id: str
    owner_id: str
    source_image_ref: str
    status: ScanStatus = ScanStatus.PENDING
    confidence: Optional[float] = None  # 0-1
    # ScanDiagnostics; typed loosely to keep this module import-free
    extracted_text: Optional[Any] = None
    resolved_card_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "confidence": self.confidence,
            "extracted_text": self.extracted_text.to_dict() if self.extracted_text else None,
            "resolved_card_ref": self.resolved_card_ref,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


_HINT_KEYS = {
    "card_name": ("cardName", "card_name"),
    "card_type": ("cardType", "card_type"),
    "attribute": ("attribute",),
    "known_text": ("knownText", "known_text"),
    "description": ("description",),
}


@dataclass
class ManualHints:
    """Optional human-supplied hints for an enhancement run."""

    card_name: Optional[str] = None
    card_type: Optional[str] = None
    attribute: Optional[str] = None
    known_text: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "ManualHints":
        """Build hints from camelCase or snake_case keys; blank values count as absent."""
        values = {}
        for attr, keys in _HINT_KEYS.items():
            for key in keys:
                raw = (data or {}).get(key)
                if isinstance(raw, str) and raw.strip():
                    values[attr] = raw.strip()
                    break
        return cls(**values)

    def to_dict(self) -> Dict[str, str]:
        """Wire form: camelCase keys, absent hints omitted."""
        return {
            keys[0]: getattr(self, attr)
            for attr, keys in _HINT_KEYS.items()
            if getattr(self, attr)
        }

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()


@dataclass
class EnhancementRequest:
    original_scan_id: str
    mode: EnhancementMode = EnhancementMode.AUTO
    manual_hints: ManualHints = field(default_factory=ManualHints)


@dataclass
class IdentificationContext:
    """Everything an identifier may look at during an enhancement run."""

    mode: EnhancementMode
    hints: ManualHints
    image: bytes
    content_type: str = "image/png"
    prior_diagnostics: Optional[Any] = None
    previous_name: Optional[str] = None


@dataclass
class Identification:
    """An identifier's answer; confidence is 0-100."""

    name: str = ""
    type: Optional[str] = None
    attribute: Optional[str] = None
    level: Optional[int] = None
    attack: Optional[int] = None
    defense: Optional[int] = None
    description: Optional[str] = None
    confidence: float = 0.0
    reasoning: str = ""
    full_text: str = ""
