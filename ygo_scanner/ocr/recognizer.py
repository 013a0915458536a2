"""Tesseract text recognition for card images."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np
import pytesseract

from ..core.types import BoundingBox, RecognitionResult, RecognizedWord
from ..utils.config import find_tesseract, settings
from ..utils.error_handler import RecognitionFailure, RecognitionTimeout
from ..utils.log import LoggerMixin


class TextRecognizer(LoggerMixin):
    """Runs one OCR pass per call on a bounded worker pool.

    Tesseract is CPU-bound and slow; calls are pushed off the event loop and
    capped by a timeout so a stuck pass ends the scan as failed.
    """

    def __init__(
        self,
        language: Optional[str] = None,
        timeout_s: Optional[float] = None,
        max_workers: Optional[int] = None,
        tesseract_cmd: Optional[str] = None,
    ):
        self.language = language or settings.OCR_LANGUAGE
        self.timeout_s = timeout_s or settings.OCR_TIMEOUT_S
        self.max_workers = max_workers or settings.OCR_MAX_WORKERS
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="ocr"
        )

        self.tesseract_cmd = tesseract_cmd or find_tesseract()
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        self.logger.info(
            "Text recognizer initialized",
            tesseract_path=self.tesseract_cmd,
            language=self.language,
            timeout_s=self.timeout_s,
            max_workers=self.max_workers,
        )

    async def recognize(self, data: bytes) -> RecognitionResult:
        """Recognize text in an encoded image buffer."""
        loop = asyncio.get_running_loop()
        context = self.log_start("Text recognition", size=len(data))
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._recognize_sync, data),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            error = RecognitionTimeout(
                f"Recognition exceeded {self.timeout_s}s", details={"timeout_s": self.timeout_s}
            )
            self.log_error(context, error)
            raise error from e
        except RecognitionFailure as e:
            self.log_error(context, e)
            raise

        self.log_success(
            context,
            confidence=result.overall_confidence,
            words=len(result.words),
            text_found=not result.is_empty,
        )
        return result

    def _recognize_sync(self, data: bytes) -> RecognitionResult:
        image = None
        if data:
            image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise RecognitionFailure("Recognizer could not decode image", details={"size": len(data or b"")})

        try:
            raw = pytesseract.image_to_data(
                image,
                lang=self.language,
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout_s,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise RecognitionFailure("Tesseract is not installed") from e
        except RuntimeError as e:
            # pytesseract signals its own subprocess timeout with a bare RuntimeError
            if "timeout" in str(e).lower():
                raise RecognitionTimeout(str(e), details={"timeout_s": self.timeout_s}) from e
            raise RecognitionFailure(f"Tesseract failed: {e}") from e
        except (pytesseract.TesseractError, OSError) as e:
            raise RecognitionFailure(f"Tesseract failed: {e}") from e

        return self.build_result(raw)

    @staticmethod
    def build_result(raw: Dict[str, List[Any]]) -> RecognitionResult:
        """Assemble words, lines and confidence from ``image_to_data`` output."""
        words: List[RecognizedWord] = []
        lines: Dict[Tuple[int, int, int, int], List[str]] = {}

        for i, text in enumerate(raw.get("text", [])):
            text = (text or "").strip()
            try:
                confidence = float(raw["conf"][i])
            except (KeyError, IndexError, TypeError, ValueError):
                confidence = -1.0
            if not text or confidence < 0:
                continue

            left, top = int(raw["left"][i]), int(raw["top"][i])
            words.append(
                RecognizedWord(
                    text=text,
                    confidence=confidence,
                    bbox=BoundingBox(
                        x0=left,
                        y0=top,
                        x1=left + int(raw["width"][i]),
                        y1=top + int(raw["height"][i]),
                    ),
                )
            )
            key = (
                int(raw.get("page_num", [0] * (i + 1))[i]),
                int(raw.get("block_num", [0] * (i + 1))[i]),
                int(raw.get("par_num", [0] * (i + 1))[i]),
                int(raw.get("line_num", [0] * (i + 1))[i]),
            )
            lines.setdefault(key, []).append(text)

        full_text = "\n".join(" ".join(tokens) for tokens in lines.values())
        overall = sum(w.confidence for w in words) / len(words) if words else 0.0
        return RecognitionResult(
            full_text=full_text,
            overall_confidence=round(overall, 2),
            words=words,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)
