"""
Per-snapshot progress selectors.

Instead of a single processing state, each concern has its own flag or
optional field, and each phase selects its work with a pure predicate.
A snapshot may need any combination of the three phases at once.
Evaluating a predicate never changes anything, so selection can be
repeated as often as needed.
"""

from typing import Callable, Iterable, List

from summa.models.snapshot import ValueSnapshot

STATUS_PROCESSING = "processing"
STATUS_NEEDS_REVIEW = "needs_review"
STATUS_DONE = "done"


def needs_fingerprint(snapshot: ValueSnapshot) -> bool:
    return snapshot.has_image and snapshot.fingerprint is None


def needs_value_extraction(snapshot: ValueSnapshot) -> bool:
    return (
        snapshot.has_image
        and snapshot.value is None
        and not snapshot.value_extraction_attempted
        and not snapshot.human_confirmed
    )


def needs_series_match(snapshot: ValueSnapshot) -> bool:
    return (
        snapshot.has_image
        and snapshot.fingerprint is not None
        and snapshot.series_id is None
    )


def select(
    snapshots: Iterable[ValueSnapshot],
    predicate: Callable[[ValueSnapshot], bool]
) -> List[ValueSnapshot]:
    """Snapshots matching the predicate, in input order."""
    return [snapshot for snapshot in snapshots if predicate(snapshot)]


def processing_status(snapshot: ValueSnapshot) -> str:
    """
    Presentation status derived from the flags.

    - processing: fingerprinting or value extraction still pending
    - needs_review: automation is finished but value or series is missing,
      or the last extraction reported an error
    - done: nothing left for automation or for the user
    """
    if snapshot.human_confirmed:
        return STATUS_DONE if snapshot.value is not None else STATUS_NEEDS_REVIEW

    if needs_fingerprint(snapshot) or needs_value_extraction(snapshot):
        return STATUS_PROCESSING

    if snapshot.analysis_error or snapshot.value is None or snapshot.series_id is None:
        return STATUS_NEEDS_REVIEW

    return STATUS_DONE
