"""
Persistence for snapshots and series.

Two backends share one interface: a local SQLite file and Supabase
(PostgREST). Every snapshot write is an upsert of the full row, so the
fingerprint vector and its algorithm version are always stored together;
only the image column is left out when the bytes were not loaded.
"""

import base64
import json
import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from summa.config import settings
from summa.models.series import Series
from summa.models.snapshot import Fingerprint, ValueSnapshot
from summa.utils.supabase import get_supabase_client

logger = logging.getLogger(__name__)

SNAPSHOT_COLUMNS = (
    'id', 'captured_at', 'value', 'series_id',
    'human_confirmed', 'value_extraction_attempted',
    'has_image', 'source_image', 'image_attached_at',
    'fingerprint_vector', 'fingerprint_algorithm_version',
    'extracted_value', 'extracted_text', 'analysis_confidence',
    'analysis_date', 'analysis_error',
)
# Listing never loads image bytes; phases fetch them per snapshot
SNAPSHOT_LIST_COLUMNS = tuple(c for c in SNAPSHOT_COLUMNS if c != 'source_image')

_FRACTION = re.compile(r'\.(\d+)')


class StoreError(Exception):
    """A read or write against the persistent store failed."""


def save_error_message(error: Exception) -> str:
    """User-facing message for a failed save."""
    text = str(error).lower()
    if "network" in text or "connection" in text or "timeout" in text:
        return "Network unavailable. Changes will sync when connection is restored."
    if "locked" in text or "conflict" in text:
        return "This item was modified elsewhere. Please try again."
    return "Unable to save changes. Please try again."


def _decimal_to_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _datetime_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _str_to_decimal(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _str_to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = value.strip()
    # PostgREST returns "Z" and trimmed fractions; fromisoformat on 3.10 takes neither
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    return datetime.fromisoformat(text)


def snapshot_to_row(snapshot: ValueSnapshot) -> Dict[str, Any]:
    """
    Flatten a snapshot into a storage row (image left as raw bytes).

    A snapshot loaded by a listing query carries has_image without the
    bytes; its row leaves the image column out so the stored image is kept.
    """
    fingerprint = snapshot.fingerprint
    row = {
        'id': snapshot.id,
        'captured_at': _datetime_to_str(snapshot.captured_at),
        'value': _decimal_to_str(snapshot.value),
        'series_id': snapshot.series_id,
        'human_confirmed': snapshot.human_confirmed,
        'value_extraction_attempted': snapshot.value_extraction_attempted,
        'has_image': snapshot.has_image,
        'source_image': snapshot.source_image,
        'image_attached_at': _datetime_to_str(snapshot.image_attached_at),
        'fingerprint_vector': json.dumps(fingerprint.vector) if fingerprint else None,
        'fingerprint_algorithm_version': fingerprint.algorithm_version if fingerprint else None,
        'extracted_value': _decimal_to_str(snapshot.extracted_value),
        'extracted_text': snapshot.extracted_text,
        'analysis_confidence': snapshot.analysis_confidence,
        'analysis_date': _datetime_to_str(snapshot.analysis_date),
        'analysis_error': snapshot.analysis_error,
    }
    if snapshot.has_image and snapshot.source_image is None:
        del row['source_image']
    return row


def snapshot_from_row(row: Dict[str, Any]) -> ValueSnapshot:
    """
    Rebuild a snapshot from a storage row.

    Raises:
        ValueError: Malformed column value (dates, decimals, vector JSON)
    """
    fingerprint = None
    vector = row.get('fingerprint_vector')
    version = row.get('fingerprint_algorithm_version')
    if vector is not None and version is not None:
        if isinstance(vector, str):
            vector = json.loads(vector)
        fingerprint = Fingerprint(vector=vector, algorithm_version=int(version))

    return ValueSnapshot(
        id=row['id'],
        captured_at=_str_to_datetime(row.get('captured_at')),
        value=_str_to_decimal(row.get('value')),
        series_id=row.get('series_id'),
        human_confirmed=bool(row.get('human_confirmed')),
        value_extraction_attempted=bool(row.get('value_extraction_attempted')),
        has_image=bool(row.get('has_image')),
        source_image=row.get('source_image'),
        image_attached_at=_str_to_datetime(row.get('image_attached_at')),
        fingerprint=fingerprint,
        extracted_value=_str_to_decimal(row.get('extracted_value')),
        extracted_text=row.get('extracted_text'),
        analysis_confidence=row.get('analysis_confidence'),
        analysis_date=_str_to_datetime(row.get('analysis_date')),
        analysis_error=row.get('analysis_error'),
    )


def decode_snapshot_rows(
    rows: Iterable[Dict[str, Any]],
    decode: Callable[[Dict[str, Any]], ValueSnapshot] = snapshot_from_row
) -> List[ValueSnapshot]:
    """Decode listed rows, skipping (and logging) rows that fail to decode."""
    snapshots = []
    for row in rows:
        try:
            snapshots.append(decode(row))
        except (ValueError, TypeError, KeyError, ArithmeticError) as e:
            logger.error("Skipping undecodable snapshot row", extra={
                "snapshot_id": row.get('id'),
                "error": str(e)
            })
    return snapshots


def decode_snapshot_row(
    row: Dict[str, Any],
    decode: Callable[[Dict[str, Any]], ValueSnapshot] = snapshot_from_row
) -> ValueSnapshot:
    """Decode a single row; a malformed row is a store failure."""
    try:
        return decode(row)
    except (ValueError, TypeError, KeyError, ArithmeticError) as e:
        raise StoreError(f"Snapshot {row.get('id')} is unreadable: {e}") from e


def series_to_row(series: Series) -> Dict[str, Any]:
    return {
        'id': series.id,
        'name': series.name,
        'color': series.color,
        'sort_order': series.sort_order,
        'created_at': _datetime_to_str(series.created_at),
    }


def series_from_row(row: Dict[str, Any]) -> Series:
    return Series(
        id=row['id'],
        name=row['name'],
        color=row['color'],
        sort_order=int(row['sort_order']),
        created_at=_str_to_datetime(row['created_at']),
    )


class SnapshotStore(ABC):
    """Interface every persistence backend implements."""

    @abstractmethod
    def list_snapshots(self) -> List[ValueSnapshot]:
        ...

    @abstractmethod
    def get_snapshot(self, snapshot_id: str) -> Optional[ValueSnapshot]:
        ...

    @abstractmethod
    def save_snapshot(self, snapshot: ValueSnapshot) -> None:
        ...

    @abstractmethod
    def list_series(self) -> List[Series]:
        ...

    @abstractmethod
    def save_series(self, series: Series) -> None:
        ...

    @abstractmethod
    def delete_series(self, series_id: str) -> None:
        ...

    def get_series(self, series_id: str) -> Optional[Series]:
        for series in self.list_series():
            if series.id == series_id:
                return series
        return None


class SQLiteSnapshotStore(SnapshotStore):
    """Single-file SQLite store, for local use and tests."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.init_db()

    @contextmanager
    def _conn(self):
        try:
            con = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e
        con.row_factory = sqlite3.Row
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            yield con
            con.commit()
        except sqlite3.Error as e:
            con.rollback()
            raise StoreError(str(e)) from e
        finally:
            con.close()

    def init_db(self):
        with self._conn() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS series (
                  id TEXT PRIMARY KEY,
                  name TEXT NOT NULL,
                  color TEXT NOT NULL,
                  sort_order INTEGER NOT NULL,
                  created_at TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS value_snapshots (
                  id TEXT PRIMARY KEY,
                  captured_at TEXT,
                  value TEXT,
                  series_id TEXT,
                  human_confirmed INTEGER NOT NULL DEFAULT 0,
                  value_extraction_attempted INTEGER NOT NULL DEFAULT 0,
                  has_image INTEGER NOT NULL DEFAULT 0,
                  source_image BLOB,
                  image_attached_at TEXT,
                  fingerprint_vector TEXT,
                  fingerprint_algorithm_version INTEGER,
                  extracted_value TEXT,
                  extracted_text TEXT,
                  analysis_confidence REAL,
                  analysis_date TEXT,
                  analysis_error TEXT
                );
                """
            )

    def list_snapshots(self) -> List[ValueSnapshot]:
        with self._conn() as con:
            rows = con.execute(
                f"SELECT {', '.join(SNAPSHOT_LIST_COLUMNS)} FROM value_snapshots ORDER BY rowid"
            ).fetchall()
        return decode_snapshot_rows(dict(row) for row in rows)

    def get_snapshot(self, snapshot_id: str) -> Optional[ValueSnapshot]:
        with self._conn() as con:
            row = con.execute("SELECT * FROM value_snapshots WHERE id=?", (snapshot_id,)).fetchone()
        return decode_snapshot_row(dict(row)) if row else None

    def save_snapshot(self, snapshot: ValueSnapshot) -> None:
        row = snapshot_to_row(snapshot)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        updates = ", ".join(f"{column}=excluded.{column}" for column in row if column != 'id')
        with self._conn() as con:
            # Upsert keeps rowid, so list order stays insertion order
            con.execute(
                f"INSERT INTO value_snapshots({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT(id) DO UPDATE SET {updates}",
                tuple(row.values()),
            )

    def list_series(self) -> List[Series]:
        with self._conn() as con:
            rows = con.execute("SELECT * FROM series ORDER BY sort_order, created_at").fetchall()
        return [series_from_row(dict(row)) for row in rows]

    def save_series(self, series: Series) -> None:
        row = series_to_row(series)
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO series(id, name, color, sort_order, created_at) VALUES (?,?,?,?,?)",
                tuple(row.values()),
            )

    def delete_series(self, series_id: str) -> None:
        with self._conn() as con:
            con.execute("DELETE FROM series WHERE id=?", (series_id,))


class SupabaseSnapshotStore(SnapshotStore):
    """Store backed by Supabase tables (images stored base64-encoded)."""

    def __init__(self, client=None, snapshot_table: Optional[str] = None, series_table: Optional[str] = None):
        self.supabase = client or get_supabase_client()
        self.snapshot_table = snapshot_table or settings.SNAPSHOT_TABLE
        self.series_table = series_table or settings.SERIES_TABLE

    def _execute(self, query, operation: str):
        try:
            return query.execute()
        except Exception as e:
            logger.error("Supabase request failed", extra={
                "operation": operation,
                "error": str(e)
            }, exc_info=True)
            raise StoreError(f"{operation} failed: {e}") from e

    def _decode_snapshot(self, row: Dict[str, Any]) -> ValueSnapshot:
        row = dict(row)
        if row.get('source_image'):
            row['source_image'] = base64.b64decode(row['source_image'])
        return snapshot_from_row(row)

    def list_snapshots(self) -> List[ValueSnapshot]:
        response = self._execute(
            self.supabase.table(self.snapshot_table)
                .select(','.join(SNAPSHOT_LIST_COLUMNS))
                .order('image_attached_at'),
            "list_snapshots"
        )
        return decode_snapshot_rows(response.data, self._decode_snapshot)

    def get_snapshot(self, snapshot_id: str) -> Optional[ValueSnapshot]:
        response = self._execute(
            self.supabase.table(self.snapshot_table).select('*').eq('id', snapshot_id).limit(1),
            "get_snapshot"
        )
        return decode_snapshot_row(response.data[0], self._decode_snapshot) if response.data else None

    def save_snapshot(self, snapshot: ValueSnapshot) -> None:
        row = snapshot_to_row(snapshot)
        if row.get('source_image') is not None:
            row['source_image'] = base64.b64encode(row['source_image']).decode('ascii')
        if row['fingerprint_vector'] is not None:
            row['fingerprint_vector'] = snapshot.fingerprint.vector
        self._execute(self.supabase.table(self.snapshot_table).upsert(row), "save_snapshot")

    def list_series(self) -> List[Series]:
        response = self._execute(
            self.supabase.table(self.series_table).select('*').order('sort_order'),
            "list_series"
        )
        return [series_from_row(row) for row in response.data]

    def save_series(self, series: Series) -> None:
        self._execute(self.supabase.table(self.series_table).upsert(series_to_row(series)), "save_series")

    def delete_series(self, series_id: str) -> None:
        self._execute(self.supabase.table(self.series_table).delete().eq('id', series_id), "delete_series")


def create_store(backend: Optional[str] = None) -> SnapshotStore:
    """Build the store configured by STORE_BACKEND."""
    backend = backend or settings.STORE_BACKEND
    if backend == "sqlite":
        return SQLiteSnapshotStore(settings.SQLITE_PATH)
    if backend == "supabase":
        return SupabaseSnapshotStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")
