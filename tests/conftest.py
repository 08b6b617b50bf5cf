"""Fixtures compartidos: recorder SQLite en memoria y sink simulado."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text

from jobs.sync.batch_writer import UpsertStatement


# =============================================================================
# HELPERS
# =============================================================================

def epoch(hh: int, mm: int, ss: float, day: int = 1) -> float:
    """Epoch (UTC) para 2026-03-<day> hh:mm:ss."""
    base = datetime(2026, 3, day, hh, mm, 0, tzinfo=timezone.utc).timestamp()
    return base + ss


def utc(hh: int, mm: int, ss: int = 0, micro: int = 0, day: int = 1) -> datetime:
    return datetime(2026, 3, day, hh, mm, ss, micro, tzinfo=timezone.utc)


def executed_batches(engine: MagicMock) -> List[tuple[str, Dict[str, Any]]]:
    """(sql, params) de cada UPSERT ejecutado contra el engine simulado."""
    conn = engine.begin.return_value.__enter__.return_value
    return [
        (str(c.args[0]), c.args[1])
        for c in conn.execute.call_args_list
        if str(c.args[0]).startswith("INSERT INTO")
    ]


def decode_rows(statement: UpsertStatement, params: Dict[str, Any]) -> List[Dict[str, Any]]:
    count = len(params) // len(statement.columns)
    return [
        {col: params[f"{col}_{i}"] for col in statement.columns}
        for i in range(count)
    ]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sink_engine() -> MagicMock:
    """Engine del sink: cada ``begin()`` entrega la misma conexión mock."""
    engine = MagicMock()
    engine.begin.return_value.__exit__.return_value = False
    # Sink vacío: la consulta de watermarks no devuelve filas.
    engine.connect.return_value.__exit__.return_value = False
    engine.connect.return_value.__enter__.return_value.execute.return_value.fetchall.return_value = []
    return engine


class Recorder:
    """Recorder de Home Assistant mínimo (states / states_meta / state_attributes)."""

    def __init__(self) -> None:
        self.engine = create_engine("sqlite://", future=True)
        self._next_state_id = 1
        self._meta_ids: Dict[str, int] = {}
        with self.engine.begin() as conn:
            conn.execute(text(
                "CREATE TABLE states_meta (metadata_id INTEGER PRIMARY KEY, entity_id TEXT)"
            ))
            conn.execute(text(
                "CREATE TABLE state_attributes (attributes_id INTEGER PRIMARY KEY, shared_attrs TEXT)"
            ))
            conn.execute(text(
                "CREATE TABLE states ("
                " state_id INTEGER PRIMARY KEY, metadata_id INTEGER, state TEXT,"
                " last_updated_ts REAL, attributes_id INTEGER)"
            ))

    def add(
        self,
        entity_id: str,
        state: str,
        last_updated_ts: Optional[float],
        attrs: Optional[Any] = None,
        state_id: Optional[int] = None,
    ) -> int:
        if state_id is None:
            state_id = self._next_state_id
        self._next_state_id = max(self._next_state_id, state_id) + 1

        with self.engine.begin() as conn:
            metadata_id = self._meta_ids.get(entity_id)
            if metadata_id is None:
                metadata_id = len(self._meta_ids) + 1
                self._meta_ids[entity_id] = metadata_id
                conn.execute(
                    text("INSERT INTO states_meta (metadata_id, entity_id) VALUES (:m, :e)"),
                    {"m": metadata_id, "e": entity_id},
                )

            attributes_id = None
            if attrs is not None:
                payload = attrs if isinstance(attrs, str) else json.dumps(attrs)
                attributes_id = conn.execute(
                    text("INSERT INTO state_attributes (shared_attrs) VALUES (:a)"),
                    {"a": payload},
                ).lastrowid

            conn.execute(
                text(
                    "INSERT INTO states (state_id, metadata_id, state, last_updated_ts, attributes_id)"
                    " VALUES (:s, :m, :v, :t, :a)"
                ),
                {"s": state_id, "m": metadata_id, "v": state, "t": last_updated_ts, "a": attributes_id},
            )
        return state_id

    def add_many(self, rows: Sequence[tuple]) -> None:
        for row in rows:
            self.add(*row)


@pytest.fixture
def recorder() -> Recorder:
    rec = Recorder()
    yield rec
    rec.engine.dispose()
