"""Sync package: Home Assistant recorder (SQLite) → MySQL/TiDB.

Modules:
- config: EnergySyncConfig / GpsSyncConfig dataclasses
- errors: SyncError taxonomy
- timestamps: epoch/float conversion helpers
- metadata: shared_attrs extraction (metadata + GPS coordinates)
- models: SourceRow, Reading, OutputRow, GpsPoint
- averager: per-minute averaging of high-frequency signals
- batch_writer: multi-row idempotent upsert batches
- watermarks: per-entity watermark store
- source_queries: recorder SQL
- schema: sink table provisioning
- pipeline: energy orchestrator (transfer_energy_data)
- gps: GPS orchestrator (transfer_gps_data)
- cli: CLI entry point (main)
"""

from .config import EnergySyncConfig, GpsSyncConfig
from .pipeline import EnergySyncPipeline, transfer_energy_data
from .gps import transfer_gps_data
from .cli import main

__all__ = [
    "EnergySyncConfig",
    "GpsSyncConfig",
    "EnergySyncPipeline",
    "transfer_energy_data",
    "transfer_gps_data",
    "main",
]
