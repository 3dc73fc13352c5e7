# ──────────────────────────────────────────────────────────────────────────────
# File: services/ocr_service.py
# ──────────────────────────────────────────────────────────────────────────────
"""
OCR collaborator for image captures.

Images are addressed by locator: an http(s) URL is downloaded, anything else
is read from disk (relative paths resolve under ``media_dir``).  Text is
detected with tesseract through pytesseract.  OCR is treated as slow and
unreliable: every failure is wrapped in ``OCRServiceError``.
"""

import io
import logging
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

import requests

# Optional dependencies for OCR
try:
    from PIL import Image
    PIL_AVAILABLE = True
except ImportError:
    PIL_AVAILABLE = False

try:
    import pytesseract
    TESSERACT_AVAILABLE = True
except ImportError:
    TESSERACT_AVAILABLE = False

from services.capture_errors import OCRServiceError
from services.text_sanitizer import sanitize_text

logger = logging.getLogger(__name__)


class OCRService:
    """Detects text in images referenced by URL or path."""

    def __init__(
        self,
        language: str = "eng",
        media_dir: Optional[Path] = None,
        fetch_timeout: int = 30,
        ocr_timeout: int = 0,
        session: Optional[requests.Session] = None,
    ):
        self.language = language
        self.media_dir = Path(media_dir) if media_dir else None
        self.fetch_timeout = fetch_timeout
        self.ocr_timeout = ocr_timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> "OCRService":
        return cls(
            language=settings.ocr_language,
            media_dir=settings.media_dir,
            fetch_timeout=settings.ocr_fetch_timeout_seconds,
            ocr_timeout=settings.ocr_timeout_seconds,
        )

    @property
    def available(self) -> bool:
        return PIL_AVAILABLE and TESSERACT_AVAILABLE

    def _load_image_bytes(self, image_locator: str) -> bytes:
        scheme = urlparse(image_locator).scheme.lower()
        if scheme in ("http", "https"):
            response = self.session.get(image_locator, timeout=self.fetch_timeout)
            response.raise_for_status()
            return response.content

        path = Path(image_locator[len("file://"):] if scheme == "file" else image_locator)
        if not path.is_absolute() and self.media_dir is not None:
            path = self.media_dir / path
        return path.read_bytes()

    def _open_image(self, image_locator: str):
        if not image_locator:
            raise OCRServiceError("No image URL provided")
        if not self.available:
            raise OCRServiceError("OCR not available. Install: pip install pytesseract pillow")

        try:
            data = self._load_image_bytes(image_locator)
            image = Image.open(io.BytesIO(data))
            image.load()
            # Convert to RGB if necessary
            if image.mode not in ('RGB', 'L'):
                image = image.convert('RGB')
        except Exception as e:
            logger.error(f"Failed to load image for OCR ({image_locator}): {e}")
            raise OCRServiceError(f"OCR failed: could not load image: {e}") from e
        return image

    def detect_text(self, image_locator: str) -> str:
        """Return the raw text found in the image ("" when there is none)."""
        image = self._open_image(image_locator)
        try:
            logger.info(f"Performing OCR on {image_locator}")
            text = pytesseract.image_to_string(image, lang=self.language, timeout=self.ocr_timeout)
        except Exception as e:
            logger.error(f"OCR failed for {image_locator}: {e}")
            raise OCRServiceError(f"OCR failed: {e}") from e

        text = text or ""
        logger.debug(f"OCR extracted {len(text)} characters")
        return text

    def detect_text_with_confidence(self, image_locator: str) -> Tuple[str, float]:
        """Return sanitized text plus the mean word confidence in [0, 1]."""
        image = self._open_image(image_locator)
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                timeout=self.ocr_timeout,
                output_type=pytesseract.Output.DICT,
            )
        except Exception as e:
            logger.error(f"OCR failed for {image_locator}: {e}")
            raise OCRServiceError(f"OCR failed: {e}") from e

        words = []
        confidences = []
        line_key = None
        lines = []
        for word, conf, block, par, line in zip(
            data.get("text", []),
            data.get("conf", []),
            data.get("block_num", []),
            data.get("par_num", []),
            data.get("line_num", []),
        ):
            if not word or not word.strip():
                continue
            key = (block, par, line)
            if key != line_key and words:
                lines.append(" ".join(words))
                words = []
            line_key = key
            words.append(word.strip())
            try:
                value = float(conf)
            except (TypeError, ValueError):
                continue
            if value >= 0:
                confidences.append(value / 100.0)
        if words:
            lines.append(" ".join(words))

        if not lines:
            return "", 0.0

        average = sum(confidences) / len(confidences) if confidences else 0.0
        return sanitize_text("\n".join(lines)), round(average, 4)
