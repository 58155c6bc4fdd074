"""
Service for extracting the balance shown in a screenshot.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Protocol

from summa.utils.candidates import TextObservation
from summa.utils.scoring import (
    DEFAULT_WEIGHTS,
    ScoringWeights,
    select_best_candidate,
    select_top_amounts,
)

logger = logging.getLogger(__name__)

NO_VALUE_MESSAGE = "No monetary value detected in screenshot"


class AnalysisError(Exception):
    """Screenshot could not be analyzed (as opposed to: no value found)."""


class TextRecognizer(Protocol):
    def recognize(self, image_data: bytes) -> List[TextObservation]:
        ...


@dataclass
class ExtractionResult:
    """Winning amount with the evidence it was chosen on."""
    value: Decimal
    text: str
    confidence: float
    score: float


class ScreenshotAnalysisService:
    """Runs text recognition and picks the most likely balance."""

    def __init__(self, recognizer: TextRecognizer, weights: ScoringWeights = DEFAULT_WEIGHTS):
        self.recognizer = recognizer
        self.weights = weights

    def extract(self, image_data: Optional[bytes]) -> Optional[ExtractionResult]:
        """
        Extract the monetary value from a screenshot.

        Args:
            image_data: Raw screenshot bytes

        Returns:
            ExtractionResult, or None if no candidate passes the threshold

        Raises:
            AnalysisError: No image, or no text recognized at all
            OCRError: Text recognition failed
        """
        if not image_data:
            raise AnalysisError("No screenshot data available")

        observations = self.recognizer.recognize(image_data)
        if not observations:
            raise AnalysisError("No text detected in screenshot")

        best = select_best_candidate(observations, self.weights)
        if best is None:
            logger.debug("No amount candidate above threshold", extra={
                "observation_count": len(observations),
                "closest_candidates": self.describe_top_candidates(observations)
            })
            return None

        logger.debug("Selected amount candidate", extra={
            "text": best.raw_text,
            "score": round(best.score, 3),
            "prominence_rank": best.observation.prominence_rank
        })

        return ExtractionResult(
            value=best.value,
            text=best.raw_text,
            confidence=best.observation.confidence,
            score=best.score,
        )

    def describe_top_candidates(self, observations: List[TextObservation], top_n: int = 3) -> List[dict]:
        """Best-scoring candidates with their score breakdown, threshold ignored."""
        return [
            {
                "text": candidate.raw_text,
                "value": str(candidate.value),
                "score": round(candidate.score, 3),
                "prominence": round(candidate.prominence_score, 3),
                "confidence": round(candidate.confidence_score, 3),
                "currency": candidate.currency_score,
                "format": round(candidate.format_score, 3),
            }
            for candidate in select_top_amounts(observations, top_n, self.weights)
        ]
