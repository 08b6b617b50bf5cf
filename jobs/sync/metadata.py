"""Extracción de metadatos desde ``state_attributes.shared_attrs``.

The recorder stores attributes as a JSON object. Only a handful of keys
matter to the sink, so the payload is decoded into a typed bag of
optional fields with explicit coercion per field:

- text fields accept non-empty strings only;
- numeric fields accept int, float and numeric strings, and anything else
  (booleans, garbage strings, NaN/inf, nested objects) becomes ``None``
  instead of a wrong value.

A payload that is not a JSON object raises ``MetadataParseError``; callers
abort the run on it.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import MetadataParseError
from .timestamps import parse_float_text


@dataclass(frozen=True)
class Metadata:
    unit: Optional[str] = None
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class Coordinates:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def pick_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value != "":
        return value
    return None


def pick_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return parse_float_text(value)
    if not isinstance(value, (int, float)):
        return None
    try:
        result = float(value)
    except OverflowError:
        # Enteros JSON fuera del rango de un double.
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


class AttributeBag(BaseModel):
    """Campos opcionales que nos interesan de ``shared_attrs``."""

    model_config = ConfigDict(extra="ignore")

    unit_of_measurement: Optional[str] = None
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    friendly_name: Optional[str] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    gps_accuracy: Optional[float] = None

    @field_validator(
        "unit_of_measurement", "device_class", "state_class", "friendly_name",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v):
        return pick_string(v)

    @field_validator("latitude", "longitude", "gps_accuracy", mode="before")
    @classmethod
    def _coerce_number(cls, v):
        return pick_float(v)


def _reject_constant(name: str) -> Any:
    # json acepta NaN/Infinity, que no son JSON válido.
    raise ValueError(f"invalid literal {name}")


def parse_attributes(raw: Optional[str], state_id: Optional[int] = None) -> AttributeBag:
    trimmed = (raw or "").strip()
    if not trimmed:
        return AttributeBag()

    try:
        attrs = json.loads(trimmed, parse_constant=_reject_constant)
    except ValueError as e:
        raise MetadataParseError(f"unmarshal shared_attrs: {e}", state_id=state_id) from e

    if not isinstance(attrs, dict):
        raise MetadataParseError(
            f"unmarshal shared_attrs: expected object, got {type(attrs).__name__}",
            state_id=state_id,
        )

    return AttributeBag.model_validate(attrs)


def extract_metadata(raw: Optional[str], state_id: Optional[int] = None) -> Metadata:
    bag = parse_attributes(raw, state_id)
    return Metadata(
        unit=bag.unit_of_measurement,
        device_class=bag.device_class,
        state_class=bag.state_class,
        label=bag.friendly_name,
    )


def extract_coordinates(raw: Optional[str], state_id: Optional[int] = None) -> Coordinates:
    bag = parse_attributes(raw, state_id)
    return Coordinates(
        latitude=bag.latitude,
        longitude=bag.longitude,
        accuracy=bag.gps_accuracy,
    )
