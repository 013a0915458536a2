"""Image preprocessing and source handling."""

from .preprocess import ENHANCED, STANDARD, ImagePreprocessor, PreprocessOutcome
from .source import ImagePayload, ImageSourceResolver, sniff_content_type

__all__ = [
    "ENHANCED",
    "STANDARD",
    "ImagePreprocessor",
    "PreprocessOutcome",
    "ImagePayload",
    "ImageSourceResolver",
    "sniff_content_type",
]
