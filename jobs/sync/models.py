"""Modelos de dominio del sync recorder → sink."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .metadata import Metadata


@dataclass(frozen=True)
class SourceRow:
    """Fila tal cual sale del recorder de Home Assistant."""
    state_id: int
    entity_id: str
    state: str
    last_updated_ts: Optional[float]
    shared_attrs: str = ""


@dataclass(frozen=True)
class Reading:
    """Lectura ya convertida: timestamp UTC, valor numérico y metadatos.

    Inmutable una vez leída del origen.
    """
    state_id: int
    entity_id: str
    state: str
    numeric_state: Optional[float]
    metadata: Metadata = field(default_factory=Metadata)
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class OutputRow:
    """Fila que se escribe en ``energy_points``.

    Either a reading passed through verbatim or a synthesized minute average.
    ``state_id`` is the source identity (the representative's for averages);
    it is not written to ``energy_points``, whose key is a surrogate.
    """
    entity_id: str
    state: str
    numeric_state: Optional[float]
    metadata: Metadata
    last_updated: Optional[datetime]
    state_id: Optional[int] = None
    aggregated: bool = False

    @classmethod
    def from_reading(cls, reading: Reading) -> "OutputRow":
        return cls(
            entity_id=reading.entity_id,
            state=reading.state,
            numeric_state=reading.numeric_state,
            metadata=reading.metadata,
            last_updated=reading.last_updated,
            state_id=reading.state_id,
        )


@dataclass(frozen=True)
class GpsPoint:
    """Fila de ``gps_points`` (clave natural: ``state_id``)."""
    state_id: int
    entity_id: str
    state: str
    latitude: float
    longitude: float
    gps_accuracy: Optional[float]
    last_updated: Optional[datetime]
