"""
Scoring functions for amount candidates.

Each term returns a value from 0.0 (worst) to 1.0 (best); the weighted sum
is the candidate score. The highest-scoring candidate at or above the
acceptance threshold is selected.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence
import re

from .candidates import AmountCandidate, TextObservation, create_amount_candidate
from .money import contains_currency_marker, strip_currency

__all__ = [
    'ScoringWeights', 'DEFAULT_WEIGHTS',
    'score_prominence', 'score_confidence', 'score_currency', 'assess_number_format',
    'score_observation', 'score_candidates',
    'select_best_candidate', 'select_best_amount', 'select_top_amounts',
]

_SEPARATORS = (',', '.', "'")
_TWO_DIGIT_FRACTION = re.compile(r'[.,]\d{2}$')


@dataclass(frozen=True)
class ScoringWeights:
    """Weights and thresholds for amount detection, tuned from field data."""
    prominence_weight: float = 0.4   # text size / prominence
    confidence_weight: float = 0.3   # OCR confidence
    currency_weight: float = 0.2     # has currency symbol or code
    format_weight: float = 0.1       # number formatting

    min_confidence: float = 0.75     # below this the confidence term is 0
    max_considered_rank: int = 3     # ranks beyond this score 0 on prominence
    min_score: float = 0.6           # acceptance threshold

    # Format-quality increments
    separator_bonus: float = 0.3
    fraction_bonus: float = 0.4
    digit_count_bonus: float = 0.3
    min_digits: int = 3
    max_digits: int = 12


DEFAULT_WEIGHTS = ScoringWeights()


def score_prominence(rank: int, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """
    Rank 1 -> 1.0, rank 2 -> 0.667, rank 3 -> 0.333, rank 4+ -> 0.0.
    """
    return max(0.0, 1.0 - (rank - 1) / weights.max_considered_rank)


def score_confidence(confidence: float, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    if confidence < weights.min_confidence:
        return 0.0
    return min(1.0, float(confidence))


def score_currency(text: str) -> float:
    return 1.0 if contains_currency_marker(text) else 0.0


def assess_number_format(text: str, weights: ScoringWeights = DEFAULT_WEIGHTS) -> float:
    """
    Assess how much the text looks like a formatted monetary amount.

    - Separator (',', '.', "'") present: +0.3
    - Ends in a two-digit decimal fraction (currency markers ignored): +0.4
    - Digit count between 3 and 12: +0.3

    Returns:
        Score from 0.0 to 1.0
    """
    score = 0.0

    if any(sep in text for sep in _SEPARATORS):
        score += weights.separator_bonus

    if _TWO_DIGIT_FRACTION.search(strip_currency(text)):
        score += weights.fraction_bonus

    digit_count = sum(1 for ch in text if ch.isdigit())
    if weights.min_digits <= digit_count <= weights.max_digits:
        score += weights.digit_count_bonus

    return min(score, 1.0)


def score_observation(
    candidate: AmountCandidate,
    weights: ScoringWeights = DEFAULT_WEIGHTS
) -> float:
    """
    Compute the weighted score of a candidate and record the term breakdown.

    Args:
        candidate: AmountCandidate to score (mutated with its terms)
        weights: Weights and thresholds

    Returns:
        Score from 0.0 to 1.0
    """
    observation = candidate.observation

    candidate.prominence_score = score_prominence(observation.prominence_rank, weights)
    candidate.confidence_score = score_confidence(observation.confidence, weights)
    candidate.currency_score = score_currency(observation.text)
    candidate.format_score = assess_number_format(observation.text, weights)

    candidate.score = (
        candidate.prominence_score * weights.prominence_weight
        + candidate.confidence_score * weights.confidence_weight
        + candidate.currency_score * weights.currency_weight
        + candidate.format_score * weights.format_weight
    )
    return candidate.score


def score_candidates(
    observations: Sequence[TextObservation],
    weights: ScoringWeights = DEFAULT_WEIGHTS
) -> List[AmountCandidate]:
    """Parse and score every observation; unparseable text is skipped."""
    candidates = []
    for index, observation in enumerate(observations):
        candidate = create_amount_candidate(observation, index)
        if candidate is None:
            continue
        score_observation(candidate, weights)
        candidates.append(candidate)
    return candidates


def select_best_candidate(
    observations: Sequence[TextObservation],
    weights: ScoringWeights = DEFAULT_WEIGHTS
) -> Optional[AmountCandidate]:
    """
    Select the best-scoring candidate at or above the acceptance threshold.

    Ties go to the earliest observation, since recognition output is
    already ordered by prominence.

    Returns:
        Winning AmountCandidate or None
    """
    best = None
    for candidate in score_candidates(observations, weights):
        if candidate.score < weights.min_score:
            continue
        if best is None or candidate.score > best.score:
            best = candidate
    return best


def select_best_amount(
    observations: Sequence[TextObservation],
    weights: ScoringWeights = DEFAULT_WEIGHTS
) -> Optional[Decimal]:
    """
    Select the most likely balance among recognized text observations.

    Args:
        observations: Recognition output
        weights: Weights and thresholds

    Returns:
        Parsed amount of the winning candidate, or None
    """
    best = select_best_candidate(observations, weights)
    return best.value if best is not None else None


def select_top_amounts(
    observations: Sequence[TextObservation],
    top_n: int = 3,
    weights: ScoringWeights = DEFAULT_WEIGHTS
) -> List[AmountCandidate]:
    """Select top N scored candidates (threshold ignored) for review/debug output."""
    candidates = score_candidates(observations, weights)
    candidates.sort(key=lambda c: (-c.score, c.index))
    return candidates[:top_n]
