"""Image preprocessing ahead of text recognition."""

from dataclasses import dataclass, field
from typing import Callable, List

import cv2
import numpy as np

from ..core.constants import (
    ENHANCED_CLAHE_CLIP,
    ENHANCED_CLAHE_TILE,
    ENHANCED_MIN_LONG_EDGE,
    PREPROCESS_MAX_DIM,
    PREPROCESS_THRESHOLD,
)
from ..utils.error_handler import RecoverablePreprocessingError
from ..utils.log import LoggerMixin

STANDARD = "standard"
ENHANCED = "enhanced"

_SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float32)


@dataclass
class PreprocessOutcome:
    """Bytes handed to the recognizer plus what was done to produce them."""

    data: bytes
    strategy: str
    steps: List[str] = field(default_factory=list)
    fell_back: bool = False


class ImagePreprocessor(LoggerMixin):
    """Normalizes a card photo for OCR.

    Every failure degrades to the original buffer: recognition on a raw photo
    is worse than on a cleaned one, but it is still attempted.
    """

    def __init__(self, max_dim: int = PREPROCESS_MAX_DIM, threshold: int = PREPROCESS_THRESHOLD):
        self.max_dim = max_dim
        self.threshold = threshold

    def preprocess(self, data: bytes, strategy: str = STANDARD) -> PreprocessOutcome:
        steps: List[str] = []
        try:
            image = self._run_step("decode", self._decode, data, steps)
            if strategy == ENHANCED:
                pipeline = [
                    ("upscale", self._upscale),
                    ("greyscale", self._greyscale),
                    ("denoise", self._denoise),
                    ("clahe", self._clahe),
                    ("adaptive_threshold", self._adaptive_threshold),
                ]
            else:
                pipeline = [
                    ("resize", self._resize),
                    ("sharpen", self._sharpen),
                    ("normalize", self._normalize),
                    ("greyscale", self._greyscale),
                    ("threshold", self._threshold),
                ]
            for name, step in pipeline:
                image = self._run_step(name, step, image, steps)
            encoded = self._run_step("encode", self._encode, image, steps)
        except RecoverablePreprocessingError as e:
            self.logger.warning(
                "Preprocessing failed, using original image",
                strategy=strategy,
                error=e.message,
                failed_step=e.details.get("step"),
            )
            return PreprocessOutcome(data=data, strategy=strategy, steps=steps, fell_back=True)

        self.logger.debug("Preprocessing completed", strategy=strategy, steps=steps, size=len(encoded))
        return PreprocessOutcome(data=encoded, strategy=strategy, steps=steps)

    def _run_step(self, name: str, step: Callable, value, steps: List[str]):
        try:
            result = step(value)
        except RecoverablePreprocessingError:
            raise
        except Exception as e:
            raise RecoverablePreprocessingError(
                f"{name} step failed: {e}", details={"step": name}
            ) from e
        steps.append(name)
        return result

    def _decode(self, data: bytes) -> np.ndarray:
        if not data:
            raise RecoverablePreprocessingError("Empty image buffer", details={"step": "decode"})
        image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            raise RecoverablePreprocessingError("Unsupported or corrupt image", details={"step": "decode"})
        return image

    def _resize(self, image: np.ndarray) -> np.ndarray:
        height, width = image.shape[:2]
        scale = min(self.max_dim / width, self.max_dim / height, 1.0)
        if scale >= 1.0:
            return image
        size = (max(1, int(width * scale)), max(1, int(height * scale)))
        return cv2.resize(image, size, interpolation=cv2.INTER_AREA)

    def _upscale(self, image: np.ndarray) -> np.ndarray:
        height, width = image.shape[:2]
        long_edge = max(height, width)
        if long_edge >= ENHANCED_MIN_LONG_EDGE:
            return image
        scale = ENHANCED_MIN_LONG_EDGE / long_edge
        return cv2.resize(image, (int(width * scale), int(height * scale)), interpolation=cv2.INTER_CUBIC)

    def _sharpen(self, image: np.ndarray) -> np.ndarray:
        return cv2.filter2D(image, -1, _SHARPEN_KERNEL)

    def _normalize(self, image: np.ndarray) -> np.ndarray:
        return cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX)

    def _greyscale(self, image: np.ndarray) -> np.ndarray:
        if len(image.shape) == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        return image

    def _threshold(self, gray: np.ndarray) -> np.ndarray:
        _, binary = cv2.threshold(gray, self.threshold, 255, cv2.THRESH_BINARY)
        return binary

    def _denoise(self, gray: np.ndarray) -> np.ndarray:
        return cv2.bilateralFilter(gray, 9, 75, 75)

    def _clahe(self, gray: np.ndarray) -> np.ndarray:
        clahe = cv2.createCLAHE(
            clipLimit=ENHANCED_CLAHE_CLIP,
            tileGridSize=(ENHANCED_CLAHE_TILE, ENHANCED_CLAHE_TILE),
        )
        return clahe.apply(gray)

    def _adaptive_threshold(self, gray: np.ndarray) -> np.ndarray:
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 31, 10
        )

    def _encode(self, image: np.ndarray) -> bytes:
        ok, buffer = cv2.imencode(".png", image)
        if not ok:
            raise RecoverablePreprocessingError("PNG encoding failed", details={"step": "encode"})
        return buffer.tobytes()
