"""
Analysis API router: trigger a cycle and inspect the last one.
"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, BackgroundTasks, Depends

from summa.dependencies import get_coordinator
from summa.services.coordinator import AnalysisCoordinator

router = APIRouter(prefix="/analysis", tags=["analysis"])
logger = logging.getLogger(__name__)


@router.post("/run", status_code=202)
async def run_analysis(
    background_tasks: BackgroundTasks,
    coordinator: AnalysisCoordinator = Depends(get_coordinator),
):
    """
    Schedule an analysis cycle.

    Triggers arriving while a cycle runs collapse into one follow-up cycle.
    """
    background_tasks.add_task(coordinator.trigger)
    logger.info("Analysis cycle requested")
    return {"status": "scheduled"}


@router.get("/status")
async def analysis_status(coordinator: AnalysisCoordinator = Depends(get_coordinator)):
    summary = coordinator.last_summary
    return {
        "running": coordinator.is_running,
        "last_cycle": asdict(summary) if summary else None,
    }
