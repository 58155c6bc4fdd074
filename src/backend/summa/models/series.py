"""
Pydantic models for series (user-defined snapshot buckets).
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class Series(BaseModel):
    """A user-defined bucket grouping snapshots, e.g. one per account."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    color: str = ""  # Hex color
    sort_order: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SeriesCreate(BaseModel):
    """Model for creating a series."""
    name: str
    color: Optional[str] = None

