"""Energy sync orchestrator: recorder SQLite → energy_points.

For each source row, in ``(entity_id, last_updated)`` order:

1. skip it if its timestamp is not after the entity watermark;
2. extract metadata (a corrupt payload aborts the run);
3. voltage/current readings go to the ``MinuteAverager``; any other
   reading first closes the open group and is then written as-is;
4. every appended row advances the in-memory watermark.

At the end the open group and the partial batch are flushed. On
cancellation nothing is flushed: the next run resumes from the watermarks.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import closing
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from sqlalchemy.engine import Engine

from common.db import get_sink_engine, get_source_engine

from .averager import DEFAULT_AGGREGATE_TOKENS, MinuteAverager, should_aggregate
from .batch_writer import ENERGY_POINTS_UPSERT, UpsertBatchWriter, energy_row_args
from .config import EnergySyncConfig
from .errors import InvalidTimestampError
from .metadata import extract_metadata
from .models import OutputRow, Reading, SourceRow
from .schema import ensure_energy_points_table
from .source_queries import iter_energy_rows
from .timestamps import epoch_to_datetime, parse_numeric_state
from .watermarks import WatermarkStore

logger = logging.getLogger(__name__)


@dataclass
class SyncStats:
    rows_read: int = 0
    skipped: int = 0
    raw_rows: int = 0
    aggregated_rows: int = 0
    batches: int = 0

    @property
    def rows_written(self) -> int:
        return self.raw_rows + self.aggregated_rows


def to_reading(row: SourceRow) -> Reading:
    """SourceRow → Reading sin metadatos (se extraen después del filtro)."""
    try:
        last_updated = epoch_to_datetime(row.last_updated_ts)
    except InvalidTimestampError as e:
        raise InvalidTimestampError(f"convert last_updated_ts for state_id {row.state_id}: {e}") from e
    return Reading(
        state_id=row.state_id,
        entity_id=row.entity_id,
        state=row.state,
        numeric_state=parse_numeric_state(row.state),
        last_updated=last_updated,
    )


class EnergySyncPipeline:
    """Wires watermark filtering, minute averaging and the batch writer."""

    def __init__(
        self,
        writer: UpsertBatchWriter[OutputRow],
        watermarks: WatermarkStore,
        aggregate_tokens: tuple[str, ...] = DEFAULT_AGGREGATE_TOKENS,
    ):
        self._writer = writer
        self._watermarks = watermarks
        self._aggregate_tokens = aggregate_tokens
        self._averager = MinuteAverager(self._append_row)
        self.stats = SyncStats()

    @property
    def watermarks(self) -> WatermarkStore:
        return self._watermarks

    def _append_row(self, row: OutputRow) -> None:
        self._writer.append(row)
        self._watermarks.advance(row.entity_id, row.last_updated)
        if row.aggregated:
            self.stats.aggregated_rows += 1
        else:
            self.stats.raw_rows += 1

    def process(self, source_row: SourceRow) -> None:
        self.stats.rows_read += 1
        reading = to_reading(source_row)

        if self._watermarks.is_synced(reading.entity_id, reading.last_updated):
            self.stats.skipped += 1
            return

        reading = replace(
            reading,
            metadata=extract_metadata(source_row.shared_attrs, state_id=source_row.state_id),
        )

        if should_aggregate(reading, self._aggregate_tokens):
            self._averager.add(reading)
            return

        # Una lectura no agregable corta cualquier grupo abierto.
        self._averager.flush()
        self._append_row(OutputRow.from_reading(reading))

    def finish(self) -> None:
        self._averager.flush()
        self._writer.flush()

    def run(self, rows: Iterable[SourceRow]) -> SyncStats:
        for source_row in rows:
            self.process(source_row)
        self.finish()
        self.stats.batches = self._writer.get_stats()["total_batches"]
        return self.stats


def transfer_energy_data(
    cfg: EnergySyncConfig,
    cancel_event: Optional[threading.Event] = None,
    source_engine: Optional[Engine] = None,
    sink_engine: Optional[Engine] = None,
) -> SyncStats:
    """Un ciclo completo del export de energía."""
    owns_source = source_engine is None
    owns_sink = sink_engine is None
    if source_engine is None:
        source_engine = get_source_engine(cfg.sqlite_path)
    try:
        if sink_engine is None:
            sink_engine = get_sink_engine(cfg.sink_url)
        try:
            return _run_energy_sync(cfg, source_engine, sink_engine, cancel_event)
        finally:
            if owns_sink:
                sink_engine.dispose()
    finally:
        if owns_source:
            source_engine.dispose()


def _run_energy_sync(
    cfg: EnergySyncConfig,
    source_engine: Engine,
    sink_engine: Engine,
    cancel_event: Optional[threading.Event],
) -> SyncStats:
    t0 = time.monotonic()

    ensure_energy_points_table(sink_engine)
    watermarks = WatermarkStore.load(sink_engine)

    writer: UpsertBatchWriter[OutputRow] = UpsertBatchWriter(
        sink_engine,
        ENERGY_POINTS_UPSERT,
        energy_row_args,
        batch_size=cfg.batch_size,
        cancel_event=cancel_event,
    )
    pipeline = EnergySyncPipeline(writer, watermarks, aggregate_tokens=cfg.aggregate_tokens)

    rows = iter_energy_rows(
        source_engine, cfg.entity, fetch_size=cfg.fetch_size, cancel_event=cancel_event,
    )
    # Libera la conexión al recorder también si el run aborta.
    with closing(rows):
        stats = pipeline.run(rows)

    logger.info(
        "energy_sync entity=%s rows_read=%d skipped=%d raw=%d aggregated=%d batches=%d ms=%.1f",
        cfg.entity, stats.rows_read, stats.skipped, stats.raw_rows,
        stats.aggregated_rows, stats.batches, (time.monotonic() - t0) * 1000,
    )
    return stats
