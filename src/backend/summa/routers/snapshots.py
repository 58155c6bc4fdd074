"""
Snapshot API router: screenshot upload, listing and human review.
"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile

from summa.config import get_settings
from summa.dependencies import get_coordinator, get_series_service, get_store
from summa.models.snapshot import (
    ManualSnapshotCreate,
    SnapshotResponse,
    SnapshotReview,
    ValueSnapshot,
)
from summa.services.coordinator import AnalysisCoordinator
from summa.services.progress import processing_status
from summa.services.series import SeriesService
from summa.services.storage import SnapshotStore, StoreError, save_error_message
from summa.utils.image_metadata import extract_capture_date

router = APIRouter(prefix="/snapshots", tags=["snapshots"])
logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/jpg", "image/png"]


def _response(snapshot: ValueSnapshot) -> SnapshotResponse:
    return SnapshotResponse.from_snapshot(snapshot, processing_status(snapshot))


def _store_failure(e: StoreError) -> HTTPException:
    logger.error("Snapshot persistence failed", extra={"error": str(e)}, exc_info=True)
    return HTTPException(status_code=503, detail=save_error_message(e))


def _load_snapshot(store: SnapshotStore, snapshot_id: str) -> ValueSnapshot:
    try:
        snapshot = store.get_snapshot(snapshot_id)
    except StoreError as e:
        raise _store_failure(e)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Snapshot {snapshot_id} not found")
    return snapshot


@router.post("", response_model=SnapshotResponse)
async def upload_screenshot(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    store: SnapshotStore = Depends(get_store),
    coordinator: AnalysisCoordinator = Depends(get_coordinator),
):
    """
    Upload a balance screenshot.

    This endpoint:
    1. Validates file type (PNG, JPG) and size
    2. Reads the capture date from image metadata
    3. Creates an unconfirmed snapshot
    4. Schedules an analysis cycle (coalesced with running ones)
    """
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type: {file.content_type}. Allowed: JPG, PNG"
        )

    file_data = await file.read()
    file_size_mb = len(file_data) / (1024 * 1024)
    max_mb = get_settings().MAX_UPLOAD_MB

    if not file_data:
        raise HTTPException(status_code=400, detail="Empty file")
    if file_size_mb > max_mb:
        raise HTTPException(
            status_code=400,
            detail=f"File too large: {file_size_mb:.2f}MB. Maximum: {max_mb}MB"
        )

    snapshot = ValueSnapshot.from_screenshot(file_data, captured_at=extract_capture_date(file_data))

    try:
        store.save_snapshot(snapshot)
    except StoreError as e:
        raise _store_failure(e)

    logger.info("Screenshot stored", extra={
        "snapshot_id": snapshot.id,
        "filename": file.filename,
        "size_bytes": len(file_data)
    })

    background_tasks.add_task(coordinator.trigger)
    return _response(snapshot)


@router.post("/manual", response_model=SnapshotResponse)
async def create_manual_snapshot(
    request: ManualSnapshotCreate,
    store: SnapshotStore = Depends(get_store),
):
    """Record a value typed in by the user (human-confirmed from the start)."""
    if request.series_id is not None and store.get_series(request.series_id) is None:
        raise HTTPException(status_code=404, detail=f"Series {request.series_id} not found")

    snapshot = ValueSnapshot.manual(
        value=request.value,
        captured_at=request.captured_at,
        series_id=request.series_id,
    )
    try:
        store.save_snapshot(snapshot)
    except StoreError as e:
        raise _store_failure(e)

    return _response(snapshot)


@router.get("", response_model=List[SnapshotResponse])
async def list_snapshots(store: SnapshotStore = Depends(get_store)):
    try:
        snapshots = store.list_snapshots()
    except StoreError as e:
        raise _store_failure(e)
    return [_response(snapshot) for snapshot in snapshots]


@router.get("/{snapshot_id}", response_model=SnapshotResponse)
async def get_snapshot(snapshot_id: str, store: SnapshotStore = Depends(get_store)):
    snapshot = _load_snapshot(store, snapshot_id)
    return _response(snapshot)


@router.post("/{snapshot_id}/review", response_model=SnapshotResponse)
async def review_snapshot(
    snapshot_id: str,
    review: SnapshotReview,
    store: SnapshotStore = Depends(get_store),
    series_service: SeriesService = Depends(get_series_service),
):
    """
    Save a human review of a snapshot.

    The snapshot becomes human-confirmed: automatic value extraction will
    never run on it again. Fields left out of the request keep their value.
    """
    snapshot = _load_snapshot(store, snapshot_id)

    if review.series_id is not None:
        series = store.get_series(review.series_id)
        if series is None:
            raise HTTPException(status_code=404, detail=f"Series {review.series_id} not found")
        snapshot.series_id = series.id
        series_service.set_last_used_series(series)

    if review.value is not None:
        snapshot.value = review.value
    if review.captured_at is not None:
        snapshot.captured_at = review.captured_at

    snapshot.human_confirmed = True

    try:
        store.save_snapshot(snapshot)
    except StoreError as e:
        raise _store_failure(e)

    logger.info("Snapshot reviewed", extra={
        "snapshot_id": snapshot.id,
        "fields_corrected": sorted(review.model_dump(exclude_none=True).keys())
    })
    return _response(snapshot)
