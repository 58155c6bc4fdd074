"""
Matching snapshots to series based on visual fingerprints.

Every series-assigned snapshot's fingerprint is a reference for that
series; there is no separate training step. The functions here are pure:
they never change a snapshot's series themselves.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from summa.models.snapshot import Fingerprint, ValueSnapshot

logger = logging.getLogger(__name__)

# Best-match distance must be strictly below this for auto-assignment
AUTO_ASSIGNMENT_THRESHOLD = 0.25

DistanceFunc = Callable[[Fingerprint, Fingerprint], Optional[float]]


@dataclass
class SeriesMatch:
    """Best-match result for one series."""
    series_id: str
    best_distance: float
    compared_count: int


def group_reference_fingerprints(
    snapshots: Iterable[ValueSnapshot],
    exclude_id: Optional[str] = None
) -> Dict[str, List[Fingerprint]]:
    """
    Group fingerprints of series-assigned snapshots by series id.

    Series appear in the order their first snapshot is encountered, which
    is the iteration order used for tie-breaking.

    Args:
        snapshots: All snapshots
        exclude_id: Snapshot to leave out (the one being matched)
    """
    grouped: Dict[str, List[Fingerprint]] = {}
    for snapshot in snapshots:
        if snapshot.id == exclude_id:
            continue
        if snapshot.fingerprint is None or snapshot.series_id is None:
            continue
        grouped.setdefault(snapshot.series_id, []).append(snapshot.fingerprint)
    return grouped


def detailed_match_results(
    fingerprint: Fingerprint,
    references_by_series: Mapping[str, Sequence[Fingerprint]],
    distance: DistanceFunc
) -> List[SeriesMatch]:
    """
    Best-match distance per series, closest first.

    Only references with the same algorithm version as the new fingerprint
    are compared; series left without a comparable reference are omitted.
    Equal distances keep the input iteration order.
    """
    results = []

    for series_id, references in references_by_series.items():
        best = None
        compared = 0

        for reference in references:
            if reference.algorithm_version != fingerprint.algorithm_version:
                continue
            d = distance(fingerprint, reference)
            if d is None:
                continue
            compared += 1
            if best is None or d < best:
                best = d

        if best is not None:
            results.append(SeriesMatch(series_id=series_id, best_distance=best, compared_count=compared))

    # sort() is stable, so ties keep iteration order
    results.sort(key=lambda m: m.best_distance)
    return results


def match_series(
    fingerprint: Fingerprint,
    references_by_series: Mapping[str, Sequence[Fingerprint]],
    distance: DistanceFunc,
    threshold: float = AUTO_ASSIGNMENT_THRESHOLD
) -> Optional[str]:
    """
    Find the series a new fingerprint should be auto-assigned to.

    Args:
        fingerprint: Fingerprint of the snapshot being matched
        references_by_series: Reference fingerprints per series id
        distance: Distance function (smaller = more similar, None = failed)
        threshold: Best distance must be strictly below this

    Returns:
        Series id of the closest series, or None to leave unassigned.
        Exact ties go to the first series in iteration order.
    """
    results = detailed_match_results(fingerprint, references_by_series, distance)
    if not results:
        return None

    best = results[0]

    if best.best_distance < threshold:
        logger.debug("Fingerprint matched series", extra={
            "series_id": best.series_id,
            "distance": best.best_distance,
            "compared_count": best.compared_count
        })
        return best.series_id

    logger.debug("No series within threshold", extra={
        "closest_series_id": best.series_id,
        "distance": best.best_distance,
        "threshold": threshold
    })
    return None
