"""
Series lifecycle and utilities.

Responsibilities:
- Creates a default series when none exist
- Picks colors from a predefined palette
- Enforces the maximum series count
- Reads/writes the "last used series" preference owned by the caller
- Deletes series, reassigning or orphaning their snapshots first
"""

import logging
from typing import List, Optional

from summa.models.series import Series
from summa.services.storage import SnapshotStore

logger = logging.getLogger(__name__)

PREDEFINED_COLORS = [
    "#FF3B30",  # Red
    "#FF9500",  # Orange
    "#FFCC00",  # Yellow
    "#34C759",  # Green
    "#007AFF",  # Blue
    "#5856D6",  # Purple
    "#AF52DE",  # Pink
    "#00C7BE",  # Teal
    "#A2845E",  # Brown
    "#8E8E93",  # Gray
]
DEFAULT_SERIES_COLOR = PREDEFINED_COLORS[4]


class SeriesNotFoundError(Exception):
    pass


class SeriesLimitError(Exception):
    pass


class LastUsedSeriesPreference:
    """Holds the id of the series the user picked last."""

    def __init__(self, series_id: Optional[str] = None):
        self.series_id = series_id

    def get(self) -> Optional[str]:
        return self.series_id

    def set(self, series_id: Optional[str]):
        self.series_id = series_id


class SeriesService:
    """Service for managing series; constructed explicitly and injected."""

    def __init__(
        self,
        store: SnapshotStore,
        preference: Optional[LastUsedSeriesPreference] = None,
        max_series: int = 10,
        default_name: str = "Default"
    ):
        self.store = store
        self.preference = preference or LastUsedSeriesPreference()
        self.max_series = max_series
        self.default_name = default_name

    def list_series(self) -> List[Series]:
        return self.store.list_series()

    def ensure_default_series(self) -> Optional[Series]:
        """
        Create the default series if no series exist yet.

        Returns:
            The created series, or None if series already existed
        """
        if self.store.list_series():
            return None

        series = Series(name=self.default_name, color=DEFAULT_SERIES_COLOR, sort_order=0)
        self.store.save_series(series)
        self.preference.set(series.id)

        logger.info("Created default series", extra={"series_id": series.id})
        return series

    def next_color(self, existing: List[Series]) -> str:
        """First palette color not in use, cycling once all are taken."""
        used = {series.color.upper() for series in existing}
        for color in PREDEFINED_COLORS:
            if color not in used:
                return color
        return PREDEFINED_COLORS[len(existing) % len(PREDEFINED_COLORS)]

    def create_series(self, name: str, color: Optional[str] = None) -> Series:
        """
        Create a new series at the end of the sort order.

        Raises:
            ValueError: Blank name
            SeriesLimitError: Maximum number of series reached
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Series name must not be empty")

        existing = self.store.list_series()
        if len(existing) >= self.max_series:
            raise SeriesLimitError(f"At most {self.max_series} series are allowed")

        sort_order = max((s.sort_order for s in existing), default=-1) + 1
        series = Series(
            name=name,
            color=color or self.next_color(existing),
            sort_order=sort_order,
        )
        self.store.save_series(series)

        logger.info("Created series", extra={"series_id": series.id, "series_name": name})
        return series

    def delete_series(self, series_id: str, reassign_to: Optional[str] = None) -> int:
        """
        Delete a series after moving its snapshots.

        Snapshots go to `reassign_to` when given, otherwise they become
        unassigned (and eligible for automatic matching again).

        Returns:
            Number of snapshots moved

        Raises:
            SeriesNotFoundError: Unknown series or reassignment target
        """
        if self.store.get_series(series_id) is None:
            raise SeriesNotFoundError(series_id)
        if reassign_to is not None and (
            reassign_to == series_id or self.store.get_series(reassign_to) is None
        ):
            raise SeriesNotFoundError(reassign_to)

        moved = 0
        for snapshot in self.store.list_snapshots():
            if snapshot.series_id != series_id:
                continue
            snapshot.series_id = reassign_to
            self.store.save_snapshot(snapshot)
            moved += 1

        self.store.delete_series(series_id)

        if self.preference.get() == series_id:
            self.preference.set(reassign_to)

        logger.info("Deleted series", extra={
            "series_id": series_id,
            "reassigned_to": reassign_to,
            "snapshots_moved": moved
        })
        return moved

    def get_last_used_series(self, all_series: Optional[List[Series]] = None) -> Optional[Series]:
        """Last used series, falling back to the first series."""
        if all_series is None:
            all_series = self.store.list_series()

        last_used_id = self.preference.get()
        for series in all_series:
            if series.id == last_used_id:
                return series
        return all_series[0] if all_series else None

    def set_last_used_series(self, series: Series):
        self.preference.set(series.id)
