"""Batch writer: acumula filas y las escribe como un único UPSERT multi-fila.

Each batch becomes one ``INSERT ... VALUES (...), (...) ON DUPLICATE KEY
UPDATE`` statement executed in its own transaction. Batches are written one
at a time and never retried: a failed run is simply rerun, and the
overwrite-on-conflict semantics make re-applying a batch harmless.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import SinkWriteError, SyncCancelled
from .models import GpsPoint, OutputRow
from .timestamps import to_sink_datetime

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class UpsertStatement:
    """Forma de la sentencia UPSERT para una tabla destino."""
    table: str
    columns: tuple[str, ...]
    update_columns: tuple[str, ...]

    def placeholder(self, index: int) -> str:
        binds = ", ".join(f":{col}_{index}" for col in self.columns)
        return f"\n    ({binds})"

    def render(self, value_segments: Sequence[str]) -> str:
        column_list = ", ".join(self.columns)
        updates = ",\n    ".join(f"{col} = VALUES({col})" for col in self.update_columns)
        return (
            f"INSERT INTO {self.table}({column_list}) VALUES"
            + ",".join(value_segments)
            + f"\nON DUPLICATE KEY UPDATE\n    {updates}\n"
        )


_ENERGY_COLUMNS = (
    "entity_id",
    "state",
    "numeric_state",
    "unit",
    "device_class",
    "state_class",
    "friendly_name",
    "last_updated",
)

# energy_points usa state_id autoincremental: la clave no viaja en el INSERT.
ENERGY_POINTS_UPSERT = UpsertStatement(
    table="energy_points",
    columns=_ENERGY_COLUMNS,
    update_columns=_ENERGY_COLUMNS,
)

GPS_POINTS_UPSERT = UpsertStatement(
    table="gps_points",
    columns=(
        "state_id",
        "entity_id",
        "state",
        "latitude",
        "longitude",
        "gps_accuracy",
        "last_updated",
    ),
    update_columns=(
        "entity_id",
        "state",
        "latitude",
        "longitude",
        "gps_accuracy",
        "last_updated",
    ),
)


def energy_row_args(row: OutputRow) -> tuple:
    return (
        row.entity_id,
        row.state,
        row.numeric_state,
        row.metadata.unit,
        row.metadata.device_class,
        row.metadata.state_class,
        row.metadata.label,
        to_sink_datetime(row.last_updated),
    )


def gps_point_args(point: GpsPoint) -> tuple:
    return (
        point.state_id,
        point.entity_id,
        point.state,
        point.latitude,
        point.longitude,
        point.gps_accuracy,
        to_sink_datetime(point.last_updated),
    )


class UpsertBatchWriter(Generic[T]):
    """Buffer de filas pendientes con flush automático al llegar a ``batch_size``."""

    DEFAULT_BATCH_SIZE = 500

    def __init__(
        self,
        engine: Engine,
        statement: UpsertStatement,
        to_args: Callable[[T], tuple],
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel_event: Optional[threading.Event] = None,
        on_flush_callback: Optional[Callable[[int], None]] = None,
    ):
        """Inicializa el writer.

        Args:
            engine: SQLAlchemy engine del sink
            statement: Forma del UPSERT (tabla, columnas, columnas a sobrescribir)
            to_args: Convierte una fila en sus argumentos posicionales
            batch_size: Filas por sentencia
            cancel_event: Señal de cancelación, se revisa antes de cada escritura
            on_flush_callback: Callback opcional llamado después de cada flush
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self._engine = engine
        self._statement = statement
        self._to_args = to_args
        self._batch_size = batch_size
        self._cancel_event = cancel_event
        self._on_flush_callback = on_flush_callback

        self._params: dict[str, Any] = {}
        self._value_segments: List[str] = []

        # Métricas
        self._total_rows = 0
        self._total_batches = 0

    @property
    def pending(self) -> int:
        return len(self._value_segments)

    def append(self, row: T) -> None:
        args = self._to_args(row)
        columns = self._statement.columns
        if len(args) != len(columns):
            raise ValueError(
                f"{self._statement.table}: expected {len(columns)} values, got {len(args)}"
            )

        index = len(self._value_segments)
        self._value_segments.append(self._statement.placeholder(index))
        for col, value in zip(columns, args):
            self._params[f"{col}_{index}"] = value

        if len(self._value_segments) >= self._batch_size:
            self.flush()

    def flush(self) -> None:
        row_count = len(self._value_segments)
        if row_count == 0:
            return

        if self._cancel_event is not None and self._cancel_event.is_set():
            raise SyncCancelled(f"cancelled before writing {row_count} rows to {self._statement.table}")

        sql = self._statement.render(self._value_segments)
        t0 = time.monotonic()
        try:
            with self._engine.begin() as conn:
                conn.execute(text(sql), self._params)
        except SQLAlchemyError as e:
            raise SinkWriteError(f"upsert {self._statement.table} rows: {e}") from e

        self._params = {}
        self._value_segments = []
        self._total_rows += row_count
        self._total_batches += 1

        logger.debug(
            "upsert_batch table=%s rows=%d ms=%.1f",
            self._statement.table, row_count, (time.monotonic() - t0) * 1000,
        )

        if self._on_flush_callback:
            self._on_flush_callback(row_count)

    def get_stats(self) -> dict:
        return {
            "table": self._statement.table,
            "pending": self.pending,
            "total_rows": self._total_rows,
            "total_batches": self._total_batches,
            "batch_size": self._batch_size,
        }
