"""
Service wiring for the API.

Services are built once per process and injected into routers with
FastAPI's Depends, so tests can swap them via dependency_overrides.
"""

from functools import lru_cache

from summa.config import get_settings
from summa.services.coordinator import AnalysisCoordinator
from summa.services.extraction import ScreenshotAnalysisService
from summa.services.fingerprint import FingerprintService
from summa.services.ocr import OCRService
from summa.services.series import LastUsedSeriesPreference, SeriesService
from summa.services.storage import SnapshotStore, create_store


@lru_cache
def get_store() -> SnapshotStore:
    return create_store(get_settings().STORE_BACKEND)


@lru_cache
def get_last_used_preference() -> LastUsedSeriesPreference:
    return LastUsedSeriesPreference(get_settings().LAST_USED_SERIES_ID)


def get_series_service() -> SeriesService:
    settings = get_settings()
    return SeriesService(
        store=get_store(),
        preference=get_last_used_preference(),
        max_series=settings.MAX_SERIES_COUNT,
        default_name=settings.DEFAULT_SERIES_NAME,
    )


@lru_cache
def get_coordinator() -> AnalysisCoordinator:
    settings = get_settings()
    return AnalysisCoordinator(
        store=get_store(),
        fingerprint_service=FingerprintService(),
        analysis_service=ScreenshotAnalysisService(
            OCRService(settings.TESSERACT_CMD, settings.EXTERNAL_CALL_TIMEOUT_SECONDS)
        ),
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
    )
