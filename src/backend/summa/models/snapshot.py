"""
Pydantic models for value snapshots and their visual fingerprints.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Fingerprint(BaseModel):
    """
    Visual feature vector of a screenshot.

    The vector and the algorithm version always travel together; vectors
    produced by different algorithm versions are not comparable.
    """
    vector: List[float]
    algorithm_version: int

    model_config = {"frozen": True}


class ValueSnapshot(BaseModel):
    """
    One captured data point: a screenshot plus whatever value, series and
    trust metadata has been derived from it.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    captured_at: Optional[datetime] = None  # None = date unknown
    value: Optional[Decimal] = None  # None = not yet extracted/entered
    series_id: Optional[str] = None  # None = unassigned

    # Processing state flags
    human_confirmed: bool = False
    value_extraction_attempted: bool = False

    # Screenshot data; listings carry has_image without the bytes
    has_image: bool = False
    source_image: Optional[bytes] = None
    image_attached_at: Optional[datetime] = None

    fingerprint: Optional[Fingerprint] = None

    # Analysis metadata (diagnostics only)
    extracted_value: Optional[Decimal] = None
    extracted_text: Optional[str] = None
    analysis_confidence: Optional[float] = None
    analysis_date: Optional[datetime] = None
    analysis_error: Optional[str] = None

    @model_validator(mode="after")
    def flag_attached_image(self) -> "ValueSnapshot":
        if self.source_image is not None:
            self.has_image = True
        return self

    @classmethod
    def from_screenshot(
        cls,
        image_data: bytes,
        captured_at: Optional[datetime] = None
    ) -> "ValueSnapshot":
        """Create a snapshot that still needs analysis."""
        return cls(
            captured_at=captured_at,
            source_image=image_data,
            image_attached_at=_utcnow(),
            human_confirmed=False,
        )

    @classmethod
    def manual(
        cls,
        value: Decimal,
        captured_at: Optional[datetime] = None,
        series_id: Optional[str] = None
    ) -> "ValueSnapshot":
        """Create a snapshot entered by hand (trusted from the start)."""
        return cls(
            captured_at=captured_at,
            value=value,
            series_id=series_id,
            human_confirmed=True,
        )


class SnapshotResponse(BaseModel):
    """Model for snapshot API responses (image bytes are never returned)."""
    id: str
    captured_at: Optional[datetime] = None
    value: Optional[Decimal] = None
    series_id: Optional[str] = None
    human_confirmed: bool
    value_extraction_attempted: bool
    has_image: bool
    has_fingerprint: bool
    extracted_text: Optional[str] = None
    analysis_confidence: Optional[float] = None
    analysis_date: Optional[datetime] = None
    analysis_error: Optional[str] = None
    status: str

    @classmethod
    def from_snapshot(cls, snapshot: ValueSnapshot, status: str) -> "SnapshotResponse":
        return cls(
            id=snapshot.id,
            captured_at=snapshot.captured_at,
            value=snapshot.value,
            series_id=snapshot.series_id,
            human_confirmed=snapshot.human_confirmed,
            value_extraction_attempted=snapshot.value_extraction_attempted,
            has_image=snapshot.has_image,
            has_fingerprint=snapshot.fingerprint is not None,
            extracted_text=snapshot.extracted_text,
            analysis_confidence=snapshot.analysis_confidence,
            analysis_date=snapshot.analysis_date,
            analysis_error=snapshot.analysis_error,
            status=status,
        )


class SnapshotReview(BaseModel):
    """Human correction of a snapshot's value and/or series."""
    value: Optional[Decimal] = None
    series_id: Optional[str] = None
    captured_at: Optional[datetime] = None


class ManualSnapshotCreate(BaseModel):
    """Model for a snapshot entered by hand, without a screenshot."""
    value: Decimal
    captured_at: Optional[datetime] = None
    series_id: Optional[str] = None
