"""Sync job configuration."""

from __future__ import annotations

from dataclasses import dataclass

from .averager import DEFAULT_AGGREGATE_TOKENS


@dataclass(frozen=True)
class EnergySyncConfig:
    """Configuración del export de energía (recorder → energy_points)."""
    sqlite_path: str
    sink_url: str
    entity: str
    batch_size: int = 500
    fetch_size: int = 1000
    aggregate_tokens: tuple[str, ...] = DEFAULT_AGGREGATE_TOKENS


@dataclass(frozen=True)
class GpsSyncConfig:
    """Configuración del export GPS (recorder → gps_points)."""
    sqlite_path: str
    sink_url: str
    batch_size: int = 500
    fetch_size: int = 1000
