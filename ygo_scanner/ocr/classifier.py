"""Rule-based field classification of recognized card text."""

from typing import List, Optional, Sequence, Tuple

from ..core.constants import (
    ATTRIBUTES,
    CARD_TYPES,
    EFFECT_MIN_LINE_LENGTH,
    EFFECT_WORD_MIN_CONFIDENCE,
    NAME_FALLBACK_WORDS,
    NAME_REGION_MAX_Y,
    NAME_WORD_MIN_CONFIDENCE,
    RARITY_TOKENS,
    UNKNOWN_TYPE,
    WORD_MIN_CONFIDENCE,
)
from ..core.types import CardCandidate, RecognitionResult, RecognizedWord
from ..utils.log import LoggerMixin
from .regexes import (
    ATK_PATTERN,
    DEF_PATTERN,
    DIGITS_ONLY_PATTERN,
    LEVEL_PATTERN,
    STATS_TOKEN_PATTERN,
    clean_name_line,
    parse_number,
)

ATTRIBUTE = "attribute"
TYPE = "type"
RARITY = "rarity"
LEVEL = "level"
STATS = "stats"
NUMBER = "number"
TEXT = "text"


def classify_word(word: str) -> str:
    """Assign a single recognized word to a lexical class."""
    upper = word.upper()
    if upper in ATTRIBUTES:
        return ATTRIBUTE
    if upper in CARD_TYPES:
        return TYPE
    if upper in RARITY_TOKENS:
        return RARITY
    if upper.startswith("LEVEL") or upper.startswith("RANK"):
        return LEVEL
    if "ATK" in upper or "DEF" in upper:
        return STATS
    if DIGITS_ONLY_PATTERN.match(word):
        return NUMBER
    return TEXT


def typed_words(words: Sequence[RecognizedWord]) -> List[Tuple[RecognizedWord, str]]:
    """Words confident enough to be considered, each paired with its class."""
    return [
        (word, classify_word(word.text))
        for word in words
        if word.confidence > WORD_MIN_CONFIDENCE
    ]


class FieldClassifier(LoggerMixin):
    """Splits recognized text into card fields using positional and lexical rules."""

    def classify_result(self, result: RecognitionResult) -> CardCandidate:
        return self.classify(result.full_text, result.words, result.overall_confidence)

    def classify(
        self,
        full_text: str,
        words: Sequence[RecognizedWord] = (),
        confidence: float = 0.0,
    ) -> CardCandidate:
        candidate = CardCandidate(raw_confidence=confidence)
        if not full_text or not full_text.strip():
            return candidate

        upper = full_text.upper()
        lines = [line.strip() for line in full_text.split("\n") if line.strip()]
        typed = typed_words(words)

        candidate.name = clean_name_line(lines[0]) or self._name_from_words(typed)
        candidate.attribute = self._first_token(upper, ATTRIBUTES)
        card_type = self._first_token(upper, CARD_TYPES)
        candidate.type = card_type.capitalize() if card_type else UNKNOWN_TYPE
        candidate.attack = parse_number(ATK_PATTERN, full_text)
        candidate.defense = parse_number(DEF_PATTERN, full_text)
        candidate.level = parse_number(LEVEL_PATTERN, full_text)
        candidate.effect_text = self._effect_from_lines(lines) or self._effect_from_words(typed)
        candidate.rarity = self._rarity_from_words(typed)

        self.logger.debug(
            "Card text classified",
            name=candidate.name,
            type=candidate.type,
            attribute=candidate.attribute,
            level=candidate.level,
            attack=candidate.attack,
            defense=candidate.defense,
            effect_length=len(candidate.effect_text),
        )
        return candidate

    @staticmethod
    def _first_token(upper_text: str, vocabulary: Sequence[str]) -> Optional[str]:
        for token in vocabulary:
            if token in upper_text:
                return token
        return None

    @staticmethod
    def _effect_from_lines(lines: List[str]) -> str:
        effect_lines = []
        for line in lines[1:]:
            if STATS_TOKEN_PATTERN.search(line):
                break
            if len(line) > EFFECT_MIN_LINE_LENGTH:
                effect_lines.append(line)
        return " ".join(effect_lines)

    @staticmethod
    def _name_from_words(typed: List[Tuple[RecognizedWord, str]]) -> str:
        title_words = [
            word.text
            for word, kind in typed
            if kind == TEXT
            and word.confidence > NAME_WORD_MIN_CONFIDENCE
            and word.bbox.y0 < NAME_REGION_MAX_Y
        ]
        return clean_name_line(" ".join(title_words[:NAME_FALLBACK_WORDS]))

    @staticmethod
    def _effect_from_words(typed: List[Tuple[RecognizedWord, str]]) -> str:
        return " ".join(
            word.text
            for word, kind in typed
            if kind == TEXT
            and word.confidence > EFFECT_WORD_MIN_CONFIDENCE
            and word.bbox.y0 > NAME_REGION_MAX_Y
        )

    @staticmethod
    def _rarity_from_words(typed: List[Tuple[RecognizedWord, str]]) -> Optional[str]:
        tokens: List[str] = []
        for word, kind in typed:
            token = word.text.capitalize()
            if kind == RARITY and token not in tokens:
                tokens.append(token)
        return " ".join(tokens) or None
