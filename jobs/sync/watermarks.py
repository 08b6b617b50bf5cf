"""Watermarks por entidad: último ``last_updated`` ya escrito en el sink."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .timestamps import from_sink_datetime

logger = logging.getLogger(__name__)

_WATERMARK_QUERY = """
SELECT entity_id, MAX(last_updated)
FROM energy_points
GROUP BY entity_id
"""


class WatermarkStore:
    """In-memory watermark map for one sync run.

    Loaded once from the sink at startup. Filtering never mutates it; only
    ``advance`` does, and only forward.
    """

    def __init__(self, marks: Optional[Mapping[str, datetime]] = None):
        self._marks: Dict[str, datetime] = dict(marks or {})

    @classmethod
    def load(cls, engine: Engine) -> "WatermarkStore":
        return cls(load_watermarks(engine))

    def get(self, entity_id: str) -> Optional[datetime]:
        return self._marks.get(entity_id)

    def is_synced(self, entity_id: str, ts: Optional[datetime]) -> bool:
        if ts is None:
            return False
        current = self._marks.get(entity_id)
        return current is not None and ts <= current

    def advance(self, entity_id: str, ts: Optional[datetime]) -> None:
        if ts is None:
            return
        current = self._marks.get(entity_id)
        if current is None or ts > current:
            self._marks[entity_id] = ts

    def snapshot(self) -> Dict[str, datetime]:
        return dict(self._marks)

    def __len__(self) -> int:
        return len(self._marks)


def load_watermarks(engine: Engine) -> Dict[str, datetime]:
    """``SELECT entity_id, MAX(last_updated)`` sobre ``energy_points``.

    Un sink vacío devuelve ``{}``. Errores de consulta se propagan.
    """
    with engine.connect() as conn:
        rows = conn.execute(text(_WATERMARK_QUERY)).fetchall()

    watermarks: Dict[str, datetime] = {}
    for entity_id, ts in rows:
        if ts is None:
            continue
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)
        watermarks[str(entity_id)] = from_sink_datetime(ts)

    logger.info("energy watermarks cargados: %d entidades", len(watermarks))
    return watermarks
