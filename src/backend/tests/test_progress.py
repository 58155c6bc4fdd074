"""
Test suite for per-snapshot progress predicates and derived status.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from summa.models.snapshot import Fingerprint, ValueSnapshot
from summa.services.progress import (
    STATUS_DONE,
    STATUS_NEEDS_REVIEW,
    STATUS_PROCESSING,
    needs_fingerprint,
    needs_series_match,
    needs_value_extraction,
    processing_status,
    select,
)
from decimal import Decimal
import pytest

FP = Fingerprint(vector=[0.0], algorithm_version=1)


class TestPredicates:
    """Each concern is selected independently of the others."""

    def test_new_screenshot_needs_fingerprint_and_value(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")

        assert needs_fingerprint(snapshot)
        assert needs_value_extraction(snapshot)
        assert not needs_series_match(snapshot)

    def test_fingerprinted_screenshot_needs_series(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.fingerprint = FP

        assert not needs_fingerprint(snapshot)
        assert needs_series_match(snapshot)

    def test_listed_snapshot_without_bytes_still_selected(self):
        # Listings flag the image without carrying it
        listed = ValueSnapshot.from_screenshot(b"img").model_copy(update={"source_image": None})

        assert listed.has_image
        assert needs_fingerprint(listed)
        assert needs_value_extraction(listed)

    def test_manual_entry_needs_nothing(self):
        snapshot = ValueSnapshot.manual(Decimal("10"))

        assert not needs_fingerprint(snapshot)
        assert not needs_value_extraction(snapshot)
        assert not needs_series_match(snapshot)

    def test_attempted_extraction_not_reselected(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.value_extraction_attempted = True
        assert not needs_value_extraction(snapshot)

    def test_human_confirmed_never_extracted(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.human_confirmed = True
        assert not needs_value_extraction(snapshot)

    def test_existing_value_not_extracted(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.value = Decimal("1")
        assert not needs_value_extraction(snapshot)

    def test_assigned_series_not_rematched(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.fingerprint = FP
        snapshot.series_id = "s1"
        assert not needs_series_match(snapshot)

    def test_select_is_repeatable(self):
        snapshots = [
            ValueSnapshot.from_screenshot(b"a"),
            ValueSnapshot.manual(Decimal("1")),
            ValueSnapshot.from_screenshot(b"b"),
        ]
        before = [s.model_dump() for s in snapshots]

        first = select(snapshots, needs_fingerprint)
        second = select(snapshots, needs_fingerprint)

        assert [s.id for s in first] == [snapshots[0].id, snapshots[2].id]
        assert [s.id for s in first] == [s.id for s in second]
        assert [s.model_dump() for s in snapshots] == before


class TestProcessingStatus:

    def test_new_screenshot_is_processing(self):
        assert processing_status(ValueSnapshot.from_screenshot(b"img")) == STATUS_PROCESSING

    def test_fully_analyzed_is_done(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.fingerprint = FP
        snapshot.value_extraction_attempted = True
        snapshot.value = Decimal("12.50")
        snapshot.series_id = "s1"
        assert processing_status(snapshot) == STATUS_DONE

    def test_failed_extraction_needs_review(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.fingerprint = FP
        snapshot.value_extraction_attempted = True
        snapshot.series_id = "s1"
        snapshot.analysis_error = "No monetary value detected in screenshot"
        assert processing_status(snapshot) == STATUS_NEEDS_REVIEW

    def test_unassigned_needs_review(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.fingerprint = FP
        snapshot.value_extraction_attempted = True
        snapshot.value = Decimal("12.50")
        assert processing_status(snapshot) == STATUS_NEEDS_REVIEW

    def test_confirmed_with_value_is_done(self):
        assert processing_status(ValueSnapshot.manual(Decimal("5"))) == STATUS_DONE

    def test_confirmed_without_value_needs_review(self):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.human_confirmed = True
        assert processing_status(snapshot) == STATUS_NEEDS_REVIEW


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
