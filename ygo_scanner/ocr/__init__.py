"""Text recognition and field classification."""

from .classifier import FieldClassifier, classify_word
from .recognizer import TextRecognizer

__all__ = ["FieldClassifier", "TextRecognizer", "classify_word"]
