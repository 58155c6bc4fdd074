"""
Analysis coordinator running three independent, self-selecting phases:
1. Generate fingerprints for snapshots with images but no fingerprint
2. Extract values from snapshots that haven't been tried yet
3. Match series for snapshots with fingerprints but no series

Each phase reloads the collection from the store, so work finished in an
earlier phase (or an earlier, interrupted cycle) is picked up immediately.
Every write re-reads the snapshot first and applies its change onto the
current stored state; nothing a human or another cycle wrote in the
meantime is overwritten.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from summa.config import settings
from summa.models.snapshot import ValueSnapshot
from summa.services.extraction import (
    NO_VALUE_MESSAGE,
    AnalysisError,
    ExtractionResult,
    ScreenshotAnalysisService,
)
from summa.services.fingerprint import FingerprintError, FingerprintService
from summa.services.matcher import group_reference_fingerprints, match_series
from summa.services.ocr import OCRError
from summa.services.progress import (
    needs_fingerprint,
    needs_series_match,
    needs_value_extraction,
    select,
)
from summa.services.storage import SnapshotStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class PhaseSummary:
    """Counts for one phase of one cycle."""
    selected: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class CycleSummary:
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    fingerprints: PhaseSummary = field(default_factory=PhaseSummary)
    extraction: PhaseSummary = field(default_factory=PhaseSummary)
    matching: PhaseSummary = field(default_factory=PhaseSummary)


class AnalysisCoordinator:
    """Coordinates fingerprinting, value extraction and series matching."""

    def __init__(
        self,
        store: SnapshotStore,
        fingerprint_service: FingerprintService,
        analysis_service: ScreenshotAnalysisService,
        timeout: Optional[float] = None
    ):
        self.store = store
        self.fingerprint_service = fingerprint_service
        self.analysis_service = analysis_service
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_CALL_TIMEOUT_SECONDS

        self.last_summary: Optional[CycleSummary] = None
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._rerun_requested = False

    @property
    def is_running(self) -> bool:
        return self._running or self._cycle_lock.locked()

    # Triggering

    async def trigger(self):
        """
        Run a cycle, coalescing triggers that arrive while one is running.

        At most one trigger-driven cycle is in flight; any number of
        triggers during it collapse into a single follow-up cycle.
        """
        if self._running:
            self._rerun_requested = True
            return

        self._running = True
        try:
            while True:
                self._rerun_requested = False
                await self.run_cycle()
                if not self._rerun_requested:
                    break
        finally:
            self._running = False

    async def run_cycle(self):
        """Run all three phases in order. Never raises."""
        async with self._cycle_lock:
            summary = CycleSummary()
            summary.fingerprints = await self.generate_missing_fingerprints()
            summary.extraction = await self.extract_pending_values()
            summary.matching = await self.match_unassigned_series()
            summary.finished_at = datetime.now(timezone.utc)
            self.last_summary = summary

    # Phases

    async def generate_missing_fingerprints(self) -> PhaseSummary:
        """
        Generate fingerprints for all snapshots with images but no fingerprint.

        Failures leave the snapshot untouched, so it is retried next cycle.
        """
        summary = PhaseSummary()
        snapshots = self._select(needs_fingerprint, "fingerprint")
        if not snapshots:
            return summary

        summary.selected = len(snapshots)
        logger.info("Generating fingerprints", extra={"count": len(snapshots)})

        for snapshot in snapshots:
            image_data = self._load_image(snapshot.id)
            if image_data is None:
                summary.failed += 1
                continue

            try:
                fingerprint = await self._call_external(
                    self.fingerprint_service.generate, image_data
                )
            except asyncio.TimeoutError:
                logger.warning("Fingerprint generation timed out", extra={"snapshot_id": snapshot.id})
                summary.failed += 1
                continue
            except FingerprintError as e:
                logger.warning("Failed to generate fingerprint", extra={
                    "snapshot_id": snapshot.id,
                    "error": str(e)
                })
                summary.failed += 1
                continue
            except Exception as e:
                logger.error("Unexpected fingerprint failure", extra={
                    "snapshot_id": snapshot.id,
                    "error": str(e)
                }, exc_info=True)
                summary.failed += 1
                continue

            def apply(current: ValueSnapshot) -> bool:
                if current.fingerprint is not None:
                    return False
                current.fingerprint = fingerprint
                return True

            self._count(summary, self._update(snapshot.id, apply))

        self._log_phase("Fingerprint generation complete", summary)
        return summary

    async def extract_pending_values(self) -> PhaseSummary:
        """
        Extract values from snapshots that haven't been tried yet.

        The attempted flag is persisted before recognition starts, so a
        snapshot whose analysis crashes or hangs is never retried
        automatically; the user enters the value instead.
        """
        summary = PhaseSummary()
        snapshots = self._select(needs_value_extraction, "value extraction")
        if not snapshots:
            return summary

        summary.selected = len(snapshots)
        logger.info("Extracting values", extra={"count": len(snapshots)})

        for snapshot in snapshots:
            def mark_attempted(current: ValueSnapshot) -> bool:
                # Claims the snapshot; a concurrent claim makes this a no-op
                if not needs_value_extraction(current):
                    return False
                current.value_extraction_attempted = True
                current.analysis_error = None
                return True

            claimed = self._update(snapshot.id, mark_attempted)
            if not claimed:
                self._count(summary, claimed)
                continue

            result, error_message = await self._extract(snapshot.id, self._load_image(snapshot.id))

            def apply(current: ValueSnapshot) -> bool:
                if current.human_confirmed or current.value is not None:
                    return False
                current.analysis_date = datetime.now(timezone.utc)
                if result is not None:
                    current.value = result.value
                    current.extracted_value = result.value
                    current.extracted_text = result.text
                    current.analysis_confidence = result.confidence
                    current.analysis_error = None
                else:
                    current.analysis_error = error_message
                return True

            saved = self._update(snapshot.id, apply)
            if saved and result is not None:
                summary.succeeded += 1
            elif saved is False:
                summary.skipped += 1
            else:
                summary.failed += 1

        self._log_phase("Value extraction complete", summary)
        return summary

    async def match_unassigned_series(self) -> PhaseSummary:
        """
        Match series for snapshots with fingerprints but no series.

        References are grouped once per phase from the stored collection and
        are not updated by assignments made within the phase.
        """
        summary = PhaseSummary()
        try:
            all_snapshots = self.store.list_snapshots()
        except StoreError as e:
            logger.error("Failed to load snapshots for series matching", extra={"error": str(e)})
            return summary

        snapshots = select(all_snapshots, needs_series_match)
        if not snapshots:
            return summary

        summary.selected = len(snapshots)
        references = group_reference_fingerprints(all_snapshots)
        logger.info("Matching series", extra={
            "count": len(snapshots),
            "series_with_references": len(references)
        })

        for snapshot in snapshots:
            series_id = match_series(
                snapshot.fingerprint,
                references,
                self.fingerprint_service.safe_distance,
            )
            if series_id is None:
                logger.debug("No match found, leaving series unassigned", extra={"snapshot_id": snapshot.id})
                continue

            def apply(current: ValueSnapshot) -> bool:
                if current.series_id is not None:
                    return False
                current.series_id = series_id
                return True

            self._count(summary, self._update(snapshot.id, apply))

        self._log_phase("Series matching complete", summary)
        return summary

    # Helpers

    async def _extract(self, snapshot_id: str, image_data: Optional[bytes]):
        """Run extraction; returns (result, error_message)."""
        try:
            result: Optional[ExtractionResult] = await self._call_external(
                self.analysis_service.extract, image_data
            )
        except asyncio.TimeoutError:
            logger.warning("Text recognition timed out", extra={"snapshot_id": snapshot_id})
            return None, f"Text recognition timed out after {self.timeout:g}s"
        except (AnalysisError, OCRError) as e:
            logger.warning("Analysis failed", extra={"snapshot_id": snapshot_id, "error": str(e)})
            return None, str(e)
        except Exception as e:
            logger.error("Unexpected analysis failure", extra={
                "snapshot_id": snapshot_id,
                "error": str(e)
            }, exc_info=True)
            return None, f"Analysis failed: {e}"

        if result is None:
            return None, NO_VALUE_MESSAGE
        return result, None

    def _load_image(self, snapshot_id: str) -> Optional[bytes]:
        """Image bytes of one snapshot; listings do not carry them."""
        try:
            current = self.store.get_snapshot(snapshot_id)
        except StoreError as e:
            logger.error("Failed to load snapshot image", extra={
                "snapshot_id": snapshot_id,
                "error": str(e)
            })
            return None
        return current.source_image if current is not None else None

    async def _call_external(self, func: Callable, *args):
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    def _select(self, predicate, phase: str) -> List[ValueSnapshot]:
        try:
            return select(self.store.list_snapshots(), predicate)
        except StoreError as e:
            logger.error("Failed to load snapshots", extra={"phase": phase, "error": str(e)})
            return []

    def _update(self, snapshot_id: str, apply: Callable[[ValueSnapshot], bool]) -> Optional[bool]:
        """
        Apply a change onto the current stored snapshot and persist it.

        Returns:
            True if saved, False if `apply` declined (nothing written),
            None if the store failed
        """
        try:
            current = self.store.get_snapshot(snapshot_id)
            if current is None or not apply(current):
                return False
            self.store.save_snapshot(current)
            return True
        except StoreError as e:
            logger.error("Failed to persist snapshot", extra={
                "snapshot_id": snapshot_id,
                "error": str(e)
            }, exc_info=True)
            return None

    def _count(self, summary: PhaseSummary, outcome: Optional[bool]):
        if outcome:
            summary.succeeded += 1
        elif outcome is None:
            summary.failed += 1
        else:
            summary.skipped += 1

    def _log_phase(self, message: str, summary: PhaseSummary):
        logger.info(message, extra={
            "selected": summary.selected,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "skipped": summary.skipped
        })
