"""
Test suite for the analysis coordinator.

Tests cover:
- Full cycle: fingerprint, extract, match in one pass
- Idempotence of repeated cycles
- Human-confirmed data is never overwritten
- Series assignments are never changed
- Failures, timeouts and store outages
- Trigger coalescing
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import asyncio
import time
from collections import Counter
from decimal import Decimal

from conftest import (
    FakeFingerprintService,
    FakeRecognizer,
    balance_screen,
    corrupt_column,
    failing_recognition,
)
from summa.models.snapshot import Fingerprint, ValueSnapshot
from summa.services.coordinator import AnalysisCoordinator
from summa.services.extraction import NO_VALUE_MESSAGE, ScreenshotAnalysisService
from summa.services.storage import SnapshotStore, SQLiteSnapshotStore, StoreError
from summa.utils.candidates import TextObservation
import pytest


def reference(store, image, series_id, position, version=1):
    """A reviewed snapshot that already belongs to a series."""
    snapshot = ValueSnapshot.from_screenshot(image)
    snapshot.value = Decimal("100.00")
    snapshot.human_confirmed = True
    snapshot.series_id = series_id
    snapshot.fingerprint = Fingerprint(vector=[position], algorithm_version=version)
    store.save_snapshot(snapshot)
    return snapshot


def screenshot(store, image):
    snapshot = ValueSnapshot.from_screenshot(image)
    store.save_snapshot(snapshot)
    return snapshot


def make_coordinator(store, positions=None, results=None, timeout=5.0, on_recognize=None):
    recognizer = FakeRecognizer(results, on_recognize=on_recognize)
    coordinator = AnalysisCoordinator(
        store=store,
        fingerprint_service=FakeFingerprintService(positions or {}),
        analysis_service=ScreenshotAnalysisService(recognizer),
        timeout=timeout,
    )
    return coordinator, recognizer


class FailingStore(SnapshotStore):
    """Store whose backend is unreachable."""

    def list_snapshots(self):
        raise StoreError("connection refused")

    def get_snapshot(self, snapshot_id):
        raise StoreError("connection refused")

    def save_snapshot(self, snapshot):
        raise StoreError("connection refused")

    def list_series(self):
        raise StoreError("connection refused")

    def save_series(self, series):
        raise StoreError("connection refused")

    def delete_series(self, series_id):
        raise StoreError("connection refused")


class FlakyStore(SQLiteSnapshotStore):
    """SQLite store that fails chosen upcoming writes of chosen snapshots."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.writes = Counter()
        self.failing_writes = set()

    def fail_write(self, snapshot_id, nth=1):
        """Make the nth write of this snapshot from now on fail."""
        self.failing_writes.add((snapshot_id, self.writes[snapshot_id] + nth))

    def save_snapshot(self, snapshot):
        self.writes[snapshot.id] += 1
        if (snapshot.id, self.writes[snapshot.id]) in self.failing_writes:
            raise StoreError("database is locked")
        super().save_snapshot(snapshot)


@pytest.fixture
def flaky_store(tmp_path):
    return FlakyStore(str(tmp_path / "flaky.sqlite"))


class TestFullCycle:
    """A new screenshot is completed in a single cycle."""

    async def test_new_screenshot_analyzed_and_assigned(self, store):
        reference(store, b"ref", "checking", 0.0)
        new = screenshot(store, b"new")
        coordinator, recognizer = make_coordinator(
            store,
            positions={b"new": 0.1},
            results={b"new": balance_screen("$1,234.56")},
        )

        await coordinator.run_cycle()

        saved = store.get_snapshot(new.id)
        assert saved.fingerprint.vector == [0.1]
        assert saved.value == Decimal("1234.56")
        assert saved.extracted_value == Decimal("1234.56")
        assert saved.extracted_text == "$1,234.56"
        assert saved.analysis_confidence == pytest.approx(0.95)
        assert saved.analysis_date is not None
        assert saved.analysis_error is None
        assert saved.value_extraction_attempted is True
        assert saved.human_confirmed is False
        assert saved.series_id == "checking"
        assert recognizer.calls == [b"new"]

        summary = coordinator.last_summary
        assert summary.fingerprints.succeeded == 1
        assert summary.extraction.succeeded == 1
        assert summary.matching.succeeded == 1
        assert summary.finished_at >= summary.started_at

    async def test_second_cycle_changes_nothing(self, store):
        reference(store, b"ref", "checking", 0.0)
        new = screenshot(store, b"new")
        coordinator, recognizer = make_coordinator(
            store,
            positions={b"new": 0.1},
            results={b"new": balance_screen("$1,234.56")},
        )

        await coordinator.run_cycle()
        after_first = [s.model_dump() for s in store.list_snapshots()]

        await coordinator.run_cycle()

        assert [s.model_dump() for s in store.list_snapshots()] == after_first
        assert len(recognizer.calls) == 1
        assert coordinator.fingerprint_service.calls == 1
        summary = coordinator.last_summary
        assert summary.fingerprints.selected == 0
        assert summary.extraction.selected == 0
        assert summary.matching.selected == 0
        assert store.get_snapshot(new.id).series_id == "checking"

    async def test_no_match_leaves_unassigned(self, store):
        reference(store, b"ref", "checking", 0.0)
        new = screenshot(store, b"new")
        coordinator, _ = make_coordinator(store, positions={b"new": 0.25})

        await coordinator.run_cycle()

        assert store.get_snapshot(new.id).series_id is None

    async def test_other_algorithm_versions_ignored(self, store):
        reference(store, b"ref", "checking", 0.0, version=2)
        new = screenshot(store, b"new")
        coordinator, _ = make_coordinator(store, positions={b"new": 0.0})

        await coordinator.run_cycle()

        assert store.get_snapshot(new.id).series_id is None

    async def test_references_fixed_within_a_cycle(self, store):
        reference(store, b"ref", "checking", 0.0)
        near = screenshot(store, b"near")
        far = screenshot(store, b"far")
        coordinator, _ = make_coordinator(store, positions={b"near": 0.2, b"far": 0.4})

        await coordinator.run_cycle()
        assert store.get_snapshot(near.id).series_id == "checking"
        assert store.get_snapshot(far.id).series_id is None

        # Next cycle sees "near" as a reference
        await coordinator.run_cycle()
        assert store.get_snapshot(far.id).series_id == "checking"


class TestHumanDataProtected:

    async def test_confirmed_snapshot_not_extracted(self, store):
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.human_confirmed = True
        store.save_snapshot(snapshot)
        coordinator, recognizer = make_coordinator(
            store, positions={b"img": 0.5}, results={b"img": balance_screen("$5.00")}
        )

        await coordinator.run_cycle()

        saved = store.get_snapshot(snapshot.id)
        assert recognizer.calls == []
        assert saved.value is None
        assert saved.value_extraction_attempted is False
        assert saved.fingerprint is not None

    async def test_confirmed_snapshot_without_series_gets_matched(self, store):
        reference(store, b"ref", "checking", 0.0)
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.human_confirmed = True
        snapshot.value = Decimal("50.00")
        store.save_snapshot(snapshot)
        coordinator, recognizer = make_coordinator(store, positions={b"img": 0.1})

        await coordinator.run_cycle()

        saved = store.get_snapshot(snapshot.id)
        assert saved.series_id == "checking"
        assert saved.value == Decimal("50.00")
        assert saved.value_extraction_attempted is False
        assert recognizer.calls == []

    async def test_review_during_extraction_wins(self, store):
        snapshot = screenshot(store, b"img")

        def user_reviews(_):
            current = store.get_snapshot(snapshot.id)
            current.human_confirmed = True
            current.value = Decimal("99.00")
            current.series_id = "savings"
            store.save_snapshot(current)

        coordinator, _ = make_coordinator(
            store,
            results={b"img": balance_screen("$1,234.56")},
            on_recognize=user_reviews,
        )

        await coordinator.run_cycle()

        saved = store.get_snapshot(snapshot.id)
        assert saved.value == Decimal("99.00")
        assert saved.human_confirmed is True
        assert saved.extracted_value is None
        assert saved.series_id == "savings"
        assert coordinator.last_summary.extraction.skipped == 1

    async def test_attempt_recorded_before_recognition(self, store):
        snapshot = screenshot(store, b"img")
        seen = []

        coordinator, _ = make_coordinator(
            store,
            results={b"img": balance_screen("$1.00")},
            on_recognize=lambda _: seen.append(store.get_snapshot(snapshot.id).value_extraction_attempted),
        )

        await coordinator.run_cycle()

        assert seen == [True]

    async def test_existing_series_never_changed(self, store):
        reference(store, b"ref", "checking", 0.0)
        snapshot = ValueSnapshot.from_screenshot(b"img")
        snapshot.series_id = "savings"
        store.save_snapshot(snapshot)
        coordinator, _ = make_coordinator(store, positions={b"img": 0.0})

        await coordinator.run_cycle()

        assert store.get_snapshot(snapshot.id).series_id == "savings"


class TestFailures:

    async def test_no_value_found(self, store):
        snapshot = screenshot(store, b"img")
        observations = [TextObservation(text="Welcome back", confidence=0.99, prominence_rank=1)]
        coordinator, _ = make_coordinator(store, results={b"img": observations})

        await coordinator.run_cycle()

        saved = store.get_snapshot(snapshot.id)
        assert saved.value is None
        assert saved.value_extraction_attempted is True
        assert saved.analysis_error == NO_VALUE_MESSAGE
        assert coordinator.last_summary.extraction.failed == 1

    async def test_recognition_error_not_retried(self, store):
        snapshot = screenshot(store, b"img")
        coordinator, recognizer = make_coordinator(store, results={b"img": failing_recognition()})

        await coordinator.run_cycle()
        await coordinator.run_cycle()

        saved = store.get_snapshot(snapshot.id)
        assert saved.value_extraction_attempted is True
        assert "tesseract crashed" in saved.analysis_error
        assert len(recognizer.calls) == 1

    async def test_no_text_detected(self, store):
        snapshot = screenshot(store, b"img")
        coordinator, _ = make_coordinator(store, results={b"img": []})

        await coordinator.run_cycle()

        assert store.get_snapshot(snapshot.id).analysis_error == "No text detected in screenshot"

    async def test_recognition_timeout(self, store):
        snapshot = screenshot(store, b"img")
        coordinator, _ = make_coordinator(
            store,
            results={b"img": balance_screen("$1.00")},
            timeout=0.05,
            on_recognize=lambda _: time.sleep(0.5),
        )

        await coordinator.run_cycle()

        saved = store.get_snapshot(snapshot.id)
        assert saved.value is None
        assert saved.value_extraction_attempted is True
        assert saved.analysis_error == "Text recognition timed out after 0.05s"

    async def test_fingerprint_failure_retried_next_cycle(self, store):
        snapshot = screenshot(store, b"unreadable")
        coordinator, _ = make_coordinator(store)

        await coordinator.run_cycle()
        assert store.get_snapshot(snapshot.id).fingerprint is None
        assert coordinator.last_summary.fingerprints.failed == 1

        await coordinator.run_cycle()
        assert coordinator.fingerprint_service.calls == 2

    async def test_unexpected_fingerprint_error_contained(self, store):
        snapshot = screenshot(store, b"img")
        coordinator, _ = make_coordinator(store, results={b"img": balance_screen("$3.50")})

        def explode(_):
            raise RuntimeError("boom")

        coordinator.fingerprint_service.generate = explode

        await coordinator.run_cycle()

        saved = store.get_snapshot(snapshot.id)
        assert saved.fingerprint is None
        assert saved.value == Decimal("3.50")

    async def test_fingerprint_timeout_retried_next_cycle(self, store):
        snapshot = screenshot(store, b"img")
        coordinator, _ = make_coordinator(store, positions={b"img": 0.3}, timeout=0.05)
        service = coordinator.fingerprint_service
        fingerprint = service.fingerprint_for(b"img")

        def slow_generate(image_data):
            time.sleep(0.5)
            return fingerprint

        service.generate = slow_generate
        await coordinator.run_cycle()

        assert store.get_snapshot(snapshot.id).fingerprint is None
        assert coordinator.last_summary.fingerprints.failed == 1

        del service.generate
        await coordinator.run_cycle()

        assert store.get_snapshot(snapshot.id).fingerprint == fingerprint

    async def test_malformed_row_does_not_block_others(self, store):
        broken = screenshot(store, b"broken")
        healthy = screenshot(store, b"ok")
        corrupt_column(store, broken.id, "analysis_date", "garbage")
        coordinator, _ = make_coordinator(
            store,
            positions={b"broken": 0.5, b"ok": 0.6},
            results={b"broken": balance_screen("$9.00"), b"ok": balance_screen("$2.00")},
        )

        await coordinator.run_cycle()

        saved = store.get_snapshot(healthy.id)
        assert saved.value == Decimal("2.00")
        assert saved.fingerprint is not None
        assert coordinator.last_summary.extraction.selected == 1

    async def test_failed_claim_isolated_and_retried(self, flaky_store):
        first = screenshot(flaky_store, b"a")
        second = screenshot(flaky_store, b"b")
        flaky_store.fail_write(first.id)
        coordinator, recognizer = make_coordinator(
            flaky_store,
            results={b"a": balance_screen("$1.00"), b"b": balance_screen("$2.00")},
        )

        await coordinator.run_cycle()

        assert flaky_store.get_snapshot(first.id).value is None
        assert flaky_store.get_snapshot(first.id).value_extraction_attempted is False
        assert flaky_store.get_snapshot(second.id).value == Decimal("2.00")
        assert coordinator.last_summary.extraction.failed == 1
        assert coordinator.last_summary.extraction.succeeded == 1

        await coordinator.run_cycle()

        assert flaky_store.get_snapshot(first.id).value == Decimal("1.00")
        assert recognizer.calls == [b"b", b"a"]

    async def test_failed_result_write_not_retried(self, flaky_store):
        snapshot = screenshot(flaky_store, b"a")
        # First write is the claim, second the result
        flaky_store.fail_write(snapshot.id, nth=2)
        coordinator, recognizer = make_coordinator(flaky_store, results={b"a": balance_screen("$1.00")})

        await coordinator.run_cycle()

        saved = flaky_store.get_snapshot(snapshot.id)
        assert saved.value_extraction_attempted is True
        assert saved.value is None
        assert coordinator.last_summary.extraction.failed == 1

        await coordinator.run_cycle()
        assert len(recognizer.calls) == 1

    async def test_failed_fingerprint_write_retried(self, flaky_store):
        snapshot = screenshot(flaky_store, b"a")
        flaky_store.fail_write(snapshot.id)
        coordinator, _ = make_coordinator(flaky_store, positions={b"a": 0.1})

        await coordinator.run_cycle()
        assert flaky_store.get_snapshot(snapshot.id).fingerprint is None
        assert coordinator.last_summary.fingerprints.failed == 1

        await coordinator.run_cycle()
        assert flaky_store.get_snapshot(snapshot.id).fingerprint is not None

    async def test_store_outage_never_raises(self):
        coordinator, recognizer = make_coordinator(FailingStore())

        await coordinator.run_cycle()

        summary = coordinator.last_summary
        assert summary.fingerprints.selected == 0
        assert summary.extraction.selected == 0
        assert summary.matching.selected == 0
        assert recognizer.calls == []


class TestTrigger:

    async def test_triggers_coalesce_into_one_follow_up(self, store):
        coordinator, _ = make_coordinator(store)
        cycles = []

        async def counting_cycle():
            cycles.append(len(cycles))
            await asyncio.sleep(0.01)

        coordinator.run_cycle = counting_cycle

        await asyncio.gather(*(coordinator.trigger() for _ in range(5)))
        assert len(cycles) == 2
        assert coordinator.is_running is False

        await coordinator.trigger()
        assert len(cycles) == 3

    async def test_trigger_runs_real_cycle(self, store):
        snapshot = screenshot(store, b"img")
        coordinator, _ = make_coordinator(store, results={b"img": balance_screen("1.234,56 EUR")})

        await coordinator.trigger()

        assert store.get_snapshot(snapshot.id).value == Decimal("1234.56")
        assert coordinator.last_summary is not None


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
