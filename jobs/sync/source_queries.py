"""Consultas al recorder SQLite de Home Assistant.

All source SQL lives here. No business logic.
"""

from __future__ import annotations

import threading
from typing import Iterator, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .errors import SyncCancelled
from .models import SourceRow

_STATES_SELECT = """
SELECT
    s.state_id,
    sm.entity_id,
    s.state,
    s.last_updated_ts,
    COALESCE(sa.shared_attrs, '')
FROM states s
JOIN states_meta sm ON s.metadata_id = sm.metadata_id
"""

# El orden (entity_id, last_updated_ts) es un requisito del MinuteAverager.
ENERGY_QUERY = (
    _STATES_SELECT
    + "LEFT JOIN state_attributes sa ON s.attributes_id = sa.attributes_id\n"
    + "WHERE sm.entity_id LIKE :pattern\n"
    + "ORDER BY sm.entity_id, s.last_updated_ts, s.state_id\n"
)

GPS_QUERY = (
    _STATES_SELECT
    + "JOIN state_attributes sa ON s.attributes_id = sa.attributes_id\n"
    + "WHERE sa.shared_attrs LIKE '%\"latitude\"%'\n"
    + "  AND sa.shared_attrs LIKE '%\"longitude\"%'\n"
    + "ORDER BY s.state_id\n"
)


def entity_pattern(entity_slug: str) -> str:
    return f"%{entity_slug}%"


def _iter_rows(
    engine: Engine,
    query: str,
    params: dict,
    fetch_size: int,
    cancel_event: Optional[threading.Event],
) -> Iterator[SourceRow]:
    with engine.connect() as conn:
        result = conn.execution_options(stream_results=True).execute(text(query), params)
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelled("cancelled while reading the recorder database")
            chunk = result.fetchmany(fetch_size)
            if not chunk:
                break
            for state_id, entity_id, state, last_updated_ts, shared_attrs in chunk:
                yield SourceRow(
                    state_id=int(state_id),
                    entity_id=entity_id,
                    state=state if state is not None else "",
                    last_updated_ts=float(last_updated_ts) if last_updated_ts is not None else None,
                    shared_attrs=shared_attrs or "",
                )


def iter_energy_rows(
    engine: Engine,
    entity_slug: str,
    fetch_size: int = 1000,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[SourceRow]:
    """Estados cuyo entity_id contiene ``entity_slug``, ordenados por entidad y tiempo."""
    return _iter_rows(
        engine, ENERGY_QUERY, {"pattern": entity_pattern(entity_slug)}, fetch_size, cancel_event,
    )


def iter_gps_rows(
    engine: Engine,
    fetch_size: int = 1000,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[SourceRow]:
    """Estados con atributos ``latitude`` y ``longitude``."""
    return _iter_rows(engine, GPS_QUERY, {}, fetch_size, cancel_event)
