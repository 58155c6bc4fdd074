"""
Candidate dataclasses for amount extraction scoring.

A TextObservation is what the text-recognition service reports for one
line of text; an AmountCandidate is an observation that parsed into a
number, carrying the score breakdown used for selection.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .money import parse_amount


@dataclass(frozen=True)
class TextObservation:
    """
    One piece of recognized text.

    - text: Raw recognized string
    - confidence: Recognition confidence in [0, 1]
    - prominence_rank: 1 = most prominent (largest text), ties share a rank
    - height: Rendered text height in pixels, when known
    """
    text: str
    confidence: float
    prominence_rank: int
    height: Optional[float] = None

    def __post_init__(self):
        if self.prominence_rank < 1:
            raise ValueError(f"prominence_rank must be >= 1, got {self.prominence_rank}")


@dataclass
class AmountCandidate:
    """
    Parseable observation with its weighted score.

    Score terms are stored unweighted (each in [0, 1]) so that debug
    output shows why a candidate won or lost.
    """
    value: Decimal
    observation: TextObservation
    index: int  # Position in the input list (tie-breaker)
    prominence_score: float = 0.0
    confidence_score: float = 0.0
    currency_score: float = 0.0
    format_score: float = 0.0
    score: float = 0.0

    @property
    def raw_text(self) -> str:
        return self.observation.text


def create_amount_candidate(
    observation: TextObservation,
    index: int
) -> Optional[AmountCandidate]:
    """
    Build an AmountCandidate when the observation parses to a number.

    Args:
        observation: Recognized text
        index: Position of the observation in the recognition output

    Returns:
        Unscored AmountCandidate, or None if the text is not an amount
    """
    value = parse_amount(observation.text)
    if value is None:
        return None

    return AmountCandidate(value=value, observation=observation, index=index)
