"""Exception taxonomy for the sync jobs.

Every error aborts the run. Nothing here is retried: reruns are safe
because every write is an idempotent upsert and already-synced readings
are filtered by watermark.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base error for the recorder → sink sync jobs."""


class MetadataParseError(SyncError):
    """Attribute payload is not a JSON object (data corruption)."""

    def __init__(self, message: str, state_id: Optional[int] = None):
        self.state_id = state_id
        if state_id is not None:
            message = f"parse attributes for state_id {state_id}: {message}"
        super().__init__(message)


class InvalidTimestampError(SyncError, ValueError):
    """Epoch value cannot be converted to a timestamp (NaN, inf, overflow)."""


class SinkWriteError(SyncError):
    """Upsert execution failed; the batch was not committed."""


class SyncCancelled(SyncError):
    """Cancellation signal observed at an I/O boundary."""
