"""
Service for generating visual fingerprints from screenshots.

A fingerprint is a small grayscale thumbnail, standardized to zero mean and
unit length, so that two screenshots of the same banking screen end up
close together regardless of brightness or the balance digits shown.
"""

import io
import logging
from typing import Optional

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from summa.models.snapshot import Fingerprint

logger = logging.getLogger(__name__)

FINGERPRINT_ALGORITHM_VERSION = 1
FINGERPRINT_SIZE = 16


class FingerprintError(Exception):
    """Fingerprint generation or comparison failed."""


class FingerprintService:
    """Generates and compares visual fingerprints."""

    algorithm_version = FINGERPRINT_ALGORITHM_VERSION

    def __init__(self, size: int = FINGERPRINT_SIZE):
        self.size = size

    def generate(self, image_data: bytes) -> Fingerprint:
        """
        Generate a fingerprint from image data.

        Args:
            image_data: Raw image bytes

        Returns:
            Fingerprint tagged with the algorithm version

        Raises:
            FingerprintError: If the image cannot be decoded
        """
        try:
            with Image.open(io.BytesIO(image_data)) as image:
                thumb = ImageOps.grayscale(image).resize((self.size, self.size), Image.BICUBIC)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise FingerprintError(f"Invalid image data: {e}") from e

        v = np.asarray(thumb, dtype=np.float64).reshape(-1)
        v = v - v.mean()
        norm = float(np.linalg.norm(v))
        if norm > 0:
            v = v / norm

        return Fingerprint(vector=v.tolist(), algorithm_version=self.algorithm_version)

    def distance(self, first: Fingerprint, second: Fingerprint) -> float:
        """
        Distance between two same-version fingerprints.

        Returns:
            0.0 for identical fingerprints, up to 1.0 for opposite ones

        Raises:
            FingerprintError: If the fingerprints are not comparable
        """
        if first.algorithm_version != second.algorithm_version:
            raise FingerprintError(
                f"Cannot compare fingerprint versions "
                f"{first.algorithm_version} and {second.algorithm_version}"
            )
        if len(first.vector) != len(second.vector):
            raise FingerprintError("Fingerprint vectors differ in length")

        a = np.asarray(first.vector, dtype=np.float64)
        b = np.asarray(second.vector, dtype=np.float64)
        return float(np.linalg.norm(a - b)) / 2.0

    def safe_distance(self, first: Fingerprint, second: Fingerprint) -> Optional[float]:
        """Distance, or None when the comparison fails."""
        try:
            return self.distance(first, second)
        except FingerprintError as e:
            logger.debug("Fingerprint comparison failed", extra={"error": str(e)})
            return None
