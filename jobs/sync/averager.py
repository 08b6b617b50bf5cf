"""Agregación por minuto de señales de alta frecuencia.

Voltage and current sensors report several times per second. For those
entities the sync collapses every (entity, wall-clock minute) group into a
single averaged row before it reaches the sink.

Precondition: readings arrive ordered by ``(entity_id, last_updated)``.
Only one group is open at a time, and it is closed as soon as a reading
for another entity or another minute shows up.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from .metadata import Metadata
from .models import OutputRow, Reading
from .timestamps import format_float, truncate_to_minute

logger = logging.getLogger(__name__)

DEFAULT_AGGREGATE_TOKENS: tuple[str, ...] = ("_voltage", "_current", "_current_consumption")

EmitFn = Callable[[OutputRow], None]


def needs_minute_average(entity_id: str, tokens: Iterable[str] = DEFAULT_AGGREGATE_TOKENS) -> bool:
    lowered = entity_id.lower()
    return any(token in lowered for token in tokens)


def should_aggregate(reading: Reading, tokens: Iterable[str] = DEFAULT_AGGREGATE_TOKENS) -> bool:
    return (
        reading.last_updated is not None
        and reading.numeric_state is not None
        and needs_minute_average(reading.entity_id, tokens)
    )


class MinuteAverager:
    """Acumulador de un único grupo (entity_id, minuto) abierto.

    ``add`` and ``flush`` call ``emit`` at most once each. If ``emit``
    raises, the error propagates and the group is already reset.
    """

    def __init__(self, emit: EmitFn):
        self._emit = emit
        self._reset()

    @property
    def active(self) -> bool:
        return self._active

    def _reset(self) -> None:
        self._active = False
        self._entity_id: str = ""
        self._minute: Optional[datetime] = None
        self._sum = 0.0
        self._count = 0
        self._max_time: Optional[datetime] = None
        self._state_id = 0
        self._meta = Metadata()

    def add(self, reading: Reading) -> None:
        if reading.last_updated is None or reading.numeric_state is None:
            raise ValueError(f"reading state_id={reading.state_id} is not aggregatable")

        minute = truncate_to_minute(reading.last_updated)
        if self._active and (reading.entity_id != self._entity_id or minute != self._minute):
            self.flush()

        if not self._active:
            self._active = True
            self._entity_id = reading.entity_id
            self._minute = minute
            self._sum = 0.0
            self._count = 0
            self._max_time = None

        self._sum += reading.numeric_state
        self._count += 1

        # Representante: el más reciente; en empate gana el state_id mayor.
        if (
            self._max_time is None
            or reading.last_updated > self._max_time
            or (reading.last_updated == self._max_time and reading.state_id > self._state_id)
        ):
            self._max_time = reading.last_updated
            self._state_id = reading.state_id
            self._meta = reading.metadata

    def flush(self) -> None:
        if not self._active:
            return
        try:
            if self._count == 0 or self._max_time is None:
                logger.debug("minute group entity=%s vacío, se descarta", self._entity_id)
                return

            avg = self._sum / self._count
            row = OutputRow(
                entity_id=self._entity_id,
                state=format_float(avg),
                numeric_state=avg,
                metadata=self._meta,
                last_updated=self._max_time,
                state_id=self._state_id,
                aggregated=True,
            )
            logger.debug(
                "minute_average entity=%s minute=%s count=%d avg=%s",
                self._entity_id, self._minute, self._count, row.state,
            )
        finally:
            self._reset()

        self._emit(row)
