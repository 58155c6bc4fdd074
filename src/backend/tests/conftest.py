"""
Shared fixtures and fakes for the test suite.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import io
import sqlite3
from typing import Dict, List

import pytest
from PIL import Image

from summa.models.snapshot import Fingerprint
from summa.services.fingerprint import FingerprintError
from summa.services.ocr import OCRError
from summa.services.storage import SQLiteSnapshotStore
from summa.utils.candidates import TextObservation


def make_png(color=(255, 255, 255), size=(64, 64), draw=None) -> bytes:
    """Render a small PNG; `draw(image)` may paint on it first."""
    image = Image.new("RGB", size, color)
    if draw is not None:
        draw(image)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class FakeFingerprintService:
    """
    One-dimensional fingerprints looked up by image bytes.

    Distance is the absolute difference, so tests can place screenshots at
    exact distances from each other.
    """

    def __init__(self, positions: Dict[bytes, float], algorithm_version: int = 1):
        self.positions = positions
        self.algorithm_version = algorithm_version
        self.calls = 0

    def fingerprint_for(self, image_data: bytes) -> Fingerprint:
        return Fingerprint(vector=[self.positions[image_data]], algorithm_version=self.algorithm_version)

    def generate(self, image_data: bytes) -> Fingerprint:
        self.calls += 1
        if image_data not in self.positions:
            raise FingerprintError("Invalid image data")
        return self.fingerprint_for(image_data)

    def safe_distance(self, first: Fingerprint, second: Fingerprint):
        if first.algorithm_version != second.algorithm_version:
            return None
        return abs(first.vector[0] - second.vector[0])


class FakeRecognizer:
    """Returns canned observations per image; unknown images yield no text."""

    def __init__(self, results: Dict[bytes, List[TextObservation]] = None, on_recognize=None):
        self.results = results or {}
        self.on_recognize = on_recognize
        self.calls: List[bytes] = []

    def recognize(self, image_data: bytes) -> List[TextObservation]:
        self.calls.append(image_data)
        if self.on_recognize is not None:
            self.on_recognize(image_data)
        result = self.results.get(image_data, [])
        if isinstance(result, Exception):
            raise result
        return result


def balance_screen(amount_text: str, confidence: float = 0.95) -> List[TextObservation]:
    """Typical banking screen: big balance, smaller labels."""
    return [
        TextObservation(text=amount_text, confidence=confidence, prominence_rank=1),
        TextObservation(text="Available balance", confidence=0.97, prominence_rank=2),
        TextObservation(text="Account 4711", confidence=0.9, prominence_rank=3),
    ]


def failing_recognition(message: str = "Text recognition failed: tesseract crashed") -> OCRError:
    return OCRError(message)


def corrupt_column(store, snapshot_id, column, value):
    """Write a raw value into a SQLite store behind its back."""
    con = sqlite3.connect(store.db_path)
    con.execute(f"UPDATE value_snapshots SET {column}=? WHERE id=?", (value, snapshot_id))
    con.commit()
    con.close()


@pytest.fixture
def store(tmp_path):
    return SQLiteSnapshotStore(str(tmp_path / "summa.sqlite"))
