"""
OCR service producing ranked text observations from screenshots.
"""

import io
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import pytesseract
from PIL import Image, ImageEnhance, UnidentifiedImageError

from summa.config import settings
from summa.utils.candidates import TextObservation

logger = logging.getLogger(__name__)


class OCRError(Exception):
    """Text recognition could not run on the given image."""


@dataclass
class _Line:
    """Words grouped into one recognized line."""
    words: List[str]
    confidences: List[float]
    top: int
    height: int

    @property
    def text(self) -> str:
        return " ".join(self.words)

    @property
    def confidence(self) -> float:
        return sum(self.confidences) / len(self.confidences) / 100.0


def _field(data: Dict[str, List], name: str, i: int) -> int:
    values = data.get(name)
    return int(values[i]) if values else 0


def rank_by_prominence(heights: List[float]) -> List[int]:
    """
    Assign prominence ranks by height, tallest first.

    Equal heights share a rank; the next distinct height gets its 1-based
    position ("1, 1, 3").

    Returns:
        Ranks aligned with the input order
    """
    order = sorted(range(len(heights)), key=lambda i: -heights[i])
    ranks = [0] * len(heights)
    current_rank = 1
    last_height = None

    for position, i in enumerate(order):
        if last_height is not None and heights[i] < last_height:
            current_rank = position + 1
        ranks[i] = current_rank
        last_height = heights[i]

    return ranks


class OCRService:
    """Service for recognizing text lines in balance screenshots."""

    def __init__(self, tesseract_cmd: Optional[str] = None, timeout: Optional[float] = None):
        """Initialize OCR service with Tesseract configuration."""
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd or settings.TESSERACT_CMD
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_CALL_TIMEOUT_SECONDS

    def recognize(self, image_data: bytes) -> List[TextObservation]:
        """
        Recognize text lines, ordered by prominence (largest text first).

        Args:
            image_data: Raw image bytes (PNG, JPEG)

        Returns:
            List of TextObservation, possibly empty

        Raises:
            OCRError: If the image cannot be decoded or Tesseract fails
        """
        try:
            image = Image.open(io.BytesIO(image_data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise OCRError(f"Invalid image data: {e}") from e

        image = self._preprocess_image(image)

        try:
            data = pytesseract.image_to_data(
                image,
                config=r'--oem 3 --psm 11',
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, RuntimeError) as e:
            raise OCRError(f"Text recognition failed: {e}") from e

        return self.observations_from_data(data)

    def observations_from_data(self, data: Dict[str, List]) -> List[TextObservation]:
        """
        Convert pytesseract.image_to_data() output into ranked observations.

        Args:
            data: {'text': [...], 'conf': [...], 'top': [...], 'height': [...],
                   'block_num': [...], 'par_num': [...], 'line_num': [...]}
        """
        lines = self._group_lines(data)
        if not lines:
            return []

        ranks = rank_by_prominence([float(line.height) for line in lines])

        ranked = sorted(zip(ranks, lines), key=lambda item: (item[0], item[1].top))
        return [
            TextObservation(
                text=line.text,
                confidence=line.confidence,
                prominence_rank=rank,
                height=float(line.height),
            )
            for rank, line in ranked
        ]

    def _group_lines(self, data: Dict[str, List]) -> List[_Line]:
        lines: Dict[Tuple[int, int, int], _Line] = {}

        for i, raw_text in enumerate(data.get('text', [])):
            text = (raw_text or "").strip()
            if not text:
                continue

            # Tesseract reports -1 for non-word boxes
            conf = float(data['conf'][i])
            if conf < 0:
                continue

            key = (_field(data, "block_num", i), _field(data, "par_num", i), _field(data, "line_num", i))
            top = int(data['top'][i])
            height = int(data['height'][i])

            line = lines.get(key)
            if line is None:
                lines[key] = _Line(words=[text], confidences=[conf], top=top, height=height)
            else:
                line.words.append(text)
                line.confidences.append(conf)
                line.top = min(line.top, top)
                line.height = max(line.height, height)

        return list(lines.values())

    def _preprocess_image(self, image: Image.Image) -> Image.Image:
        """
        Preprocess image to improve OCR accuracy.

        Dark-mode banking apps render white text on dark bands; those
        bands are inverted so Tesseract sees dark-on-light text.
        """
        try:
            if image.mode != 'RGB':
                image = image.convert('RGB')

            image = image.convert('L')

            arr = np.array(image)
            band_height = max(1, arr.shape[0] // 40)
            for y in range(0, arr.shape[0], band_height):
                band = arr[y:y + band_height, :]
                if band.mean() < 80:
                    arr[y:y + band_height, :] = 255 - band
            image = Image.fromarray(arr)

            enhancer = ImageEnhance.Contrast(image)
            return enhancer.enhance(2.0)

        except (ValueError, OSError) as e:
            logger.warning("Error preprocessing image", extra={"error": str(e)})
            return image
