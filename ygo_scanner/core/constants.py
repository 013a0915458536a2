"""Tunable heuristic parameters and fixed vocabularies.

The numeric thresholds below were picked by hand against phone photos of
printed cards. They are knobs, not measured constants.
"""

from typing import Final, Tuple

# Preprocessing (standard strategy)
PREPROCESS_MAX_DIM: Final[int] = 1200          # fit inside this box, never enlarge
PREPROCESS_THRESHOLD: Final[int] = 128         # fixed binarization cut
# Preprocessing (enhanced strategy)
ENHANCED_MIN_LONG_EDGE: Final[int] = 1600      # upscale small photos to at least this
ENHANCED_CLAHE_CLIP: Final[float] = 2.0
ENHANCED_CLAHE_TILE: Final[int] = 8

# Word filtering (recognizer confidence is 0-100)
WORD_MIN_CONFIDENCE: Final[int] = 30           # any word considered at all
NAME_WORD_MIN_CONFIDENCE: Final[int] = 60      # words used for the name fallback
EFFECT_WORD_MIN_CONFIDENCE: Final[int] = 50    # words used for the effect fallback
NAME_REGION_MAX_Y: Final[int] = 200            # px; name words sit above, effect words below
NAME_FALLBACK_WORDS: Final[int] = 3

# Name cleanup
NAME_MAX_LENGTH: Final[int] = 50               # names this long or longer are rejected
NAME_TRUNCATE_TOKENS: Final[int] = 4           # overlong lines keep this many tokens

# Effect text
EFFECT_MIN_LINE_LENGTH: Final[int] = 10        # lines this short or shorter are dropped

# Catalog lookup
CATALOG_MIN_NAME_LENGTH: Final[int] = 2        # names this short or shorter skip lookup
FUZZY_QUERY_TOKENS: Final[int] = 2
FUZZY_MIN_QUERY_LENGTH: Final[int] = 3         # truncated queries this short are skipped

# Text quality bands for diagnostics
TEXT_QUALITY_HIGH: Final[int] = 70
TEXT_QUALITY_MEDIUM: Final[int] = 50

# Enhancement corroboration (rapidfuzz partial ratio, 0-100)
HINT_CORROBORATION_MIN: Final[int] = 80
MANUAL_BASE_CONFIDENCE: Final[float] = 60.0
HINT_CONFIDENCE_BONUS: Final[float] = 20.0

# Vocabularies
ATTRIBUTES: Final[Tuple[str, ...]] = ("DARK", "LIGHT", "EARTH", "WIND", "WATER", "FIRE", "DIVINE")
CARD_TYPES: Final[Tuple[str, ...]] = ("MONSTER", "SPELL", "TRAP")
RARITY_TOKENS: Final[Tuple[str, ...]] = ("COMMON", "RARE", "SUPER", "ULTRA", "SECRET", "PARALLEL", "STARFOIL")

UNKNOWN_TYPE: Final[str] = "Unknown"
PLACEHOLDER_NAME_PREFIX: Final[str] = "Scanned Card"
DEFAULT_RARITY: Final[str] = "Common"
PLACEHOLDER_DESCRIPTION: Final[str] = (
    "Card scanned from image. Use the edit feature to add card details manually."
)

# Backoff schedule for the external catalog (seconds)
BACKOFF_S: Final[Tuple[float, ...]] = (0.2, 1.0, 3.0)
