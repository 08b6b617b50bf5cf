"""GPS export: recorder SQLite → gps_points.

Sin watermark: cada corrida recorre todos los estados con coordenadas y los
reescribe por ``state_id`` (idempotente por clave primaria).
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import closing
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.engine import Engine

from common.db import get_sink_engine, get_source_engine

from .batch_writer import GPS_POINTS_UPSERT, UpsertBatchWriter, gps_point_args
from .config import GpsSyncConfig
from .errors import InvalidTimestampError
from .metadata import extract_coordinates
from .models import GpsPoint, SourceRow
from .schema import ensure_gps_points_table
from .source_queries import iter_gps_rows
from .timestamps import epoch_to_datetime

logger = logging.getLogger(__name__)


@dataclass
class GpsStats:
    rows_read: int = 0
    without_position: int = 0
    points_written: int = 0


def to_gps_point(row: SourceRow) -> Optional[GpsPoint]:
    """Devuelve None si faltan latitude o longitude.

    A malformed ``gps_accuracy`` is dropped to ``None``; the point is kept.
    """
    coords = extract_coordinates(row.shared_attrs, state_id=row.state_id)
    if not coords.has_position:
        return None

    try:
        last_updated = epoch_to_datetime(row.last_updated_ts)
    except InvalidTimestampError as e:
        raise InvalidTimestampError(f"convert last_updated_ts for state_id {row.state_id}: {e}") from e

    return GpsPoint(
        state_id=row.state_id,
        entity_id=row.entity_id,
        state=row.state,
        latitude=coords.latitude,
        longitude=coords.longitude,
        gps_accuracy=coords.accuracy,
        last_updated=last_updated,
    )


def export_gps_points(rows: Iterable[SourceRow], writer: UpsertBatchWriter[GpsPoint]) -> GpsStats:
    stats = GpsStats()
    for row in rows:
        stats.rows_read += 1
        point = to_gps_point(row)
        if point is None:
            stats.without_position += 1
            continue
        writer.append(point)
        stats.points_written += 1
    writer.flush()
    return stats


def transfer_gps_data(
    cfg: GpsSyncConfig,
    cancel_event: Optional[threading.Event] = None,
    source_engine: Optional[Engine] = None,
    sink_engine: Optional[Engine] = None,
) -> GpsStats:
    """Un ciclo completo del export GPS."""
    owns_source = source_engine is None
    owns_sink = sink_engine is None
    if source_engine is None:
        source_engine = get_source_engine(cfg.sqlite_path)
    try:
        if sink_engine is None:
            sink_engine = get_sink_engine(cfg.sink_url)
        try:
            t0 = time.monotonic()
            ensure_gps_points_table(sink_engine)

            writer: UpsertBatchWriter[GpsPoint] = UpsertBatchWriter(
                sink_engine,
                GPS_POINTS_UPSERT,
                gps_point_args,
                batch_size=cfg.batch_size,
                cancel_event=cancel_event,
            )
            rows = iter_gps_rows(source_engine, fetch_size=cfg.fetch_size, cancel_event=cancel_event)
            with closing(rows):
                stats = export_gps_points(rows, writer)

            logger.info(
                "gps_sync rows_read=%d without_position=%d written=%d ms=%.1f",
                stats.rows_read, stats.without_position, stats.points_written,
                (time.monotonic() - t0) * 1000,
            )
            return stats
        finally:
            if owns_sink:
                sink_engine.dispose()
    finally:
        if owns_source:
            source_engine.dispose()
