"""
Series API router for listing, creating and deleting series.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from summa.dependencies import get_series_service
from summa.models.series import Series, SeriesCreate
from summa.services.series import SeriesLimitError, SeriesNotFoundError, SeriesService
from summa.services.storage import StoreError, save_error_message

router = APIRouter(prefix="/series", tags=["series"])
logger = logging.getLogger(__name__)


@router.get("", response_model=List[Series])
async def list_series(service: SeriesService = Depends(get_series_service)):
    """List series in sort order, creating the default one on first use."""
    try:
        service.ensure_default_series()
        return service.list_series()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=save_error_message(e))


@router.get("/last-used", response_model=Optional[Series])
async def last_used_series(service: SeriesService = Depends(get_series_service)):
    try:
        return service.get_last_used_series()
    except StoreError as e:
        raise HTTPException(status_code=503, detail=save_error_message(e))


@router.post("", response_model=Series)
async def create_series(request: SeriesCreate, service: SeriesService = Depends(get_series_service)):
    try:
        return service.create_series(request.name, request.color)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SeriesLimitError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=503, detail=save_error_message(e))


@router.delete("/{series_id}")
async def delete_series(
    series_id: str,
    reassign_to: Optional[str] = Query(None),
    service: SeriesService = Depends(get_series_service),
):
    """
    Delete a series.

    Its snapshots move to `reassign_to` when given, otherwise they are left
    unassigned and become eligible for automatic matching again.
    """
    try:
        moved = service.delete_series(series_id, reassign_to=reassign_to)
    except SeriesNotFoundError as e:
        raise HTTPException(status_code=404, detail=f"Series {e} not found")
    except StoreError as e:
        logger.error("Series deletion failed", extra={"series_id": series_id, "error": str(e)})
        raise HTTPException(status_code=503, detail=save_error_message(e))

    return {"deleted": series_id, "snapshots_moved": moved}
