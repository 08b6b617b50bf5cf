"""Tests de conversión de timestamps y valores numéricos."""

from datetime import datetime, timezone

import pytest

from jobs.sync.errors import InvalidTimestampError
from jobs.sync.timestamps import (
    epoch_to_datetime,
    format_float,
    from_sink_datetime,
    parse_numeric_state,
    to_sink_datetime,
    truncate_to_minute,
)


class TestEpochToDatetime:
    """Recorder ``last_updated_ts`` → datetime UTC."""

    def test_none_stays_none(self):
        assert epoch_to_datetime(None) is None

    def test_whole_seconds(self):
        assert epoch_to_datetime(0.0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_fraction_is_sub_second(self):
        ts = epoch_to_datetime(1772359205.25)
        assert ts.tzinfo is timezone.utc
        assert ts.microsecond == 250000
        assert int(ts.timestamp()) == 1772359205

    def test_fraction_is_truncated_not_rounded(self):
        # 10:00:59.9999996 sigue en el minuto 10:00.
        ts = epoch_to_datetime(1772359259.9999996)
        assert ts.second == 59
        assert ts.microsecond == 999999
        assert truncate_to_minute(ts) == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_nan_is_hard_error(self):
        with pytest.raises(InvalidTimestampError):
            epoch_to_datetime(float("nan"))

    def test_infinity_is_hard_error(self):
        with pytest.raises(InvalidTimestampError):
            epoch_to_datetime(float("inf"))

    def test_invalid_timestamp_is_value_error(self):
        # Permite a los llamadores genéricos capturar ValueError.
        with pytest.raises(ValueError):
            epoch_to_datetime(float("-inf"))


class TestMinuteAndSinkConversion:

    def test_truncate_to_minute(self):
        ts = datetime(2026, 3, 1, 10, 0, 40, 123456, tzinfo=timezone.utc)
        assert truncate_to_minute(ts) == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_sink_datetime_is_naive_utc(self):
        ts = datetime(2026, 3, 1, 10, 0, 40, tzinfo=timezone.utc)
        naive = to_sink_datetime(ts)
        assert naive.tzinfo is None
        assert from_sink_datetime(naive) == ts

    def test_sink_conversion_passes_none(self):
        assert to_sink_datetime(None) is None
        assert from_sink_datetime(None) is None


class TestFormatFloat:
    """Representación decimal más corta que reconstruye el float."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (3.0, "3"),
            (6.0, "6"),
            (230.5, "230.5"),
            (0.1 + 0.2, "0.30000000000000004"),
            (1e16, "10000000000000000"),
            (1e-7, "0.0000001"),
            (-2.5, "-2.5"),
        ],
    )
    def test_rendering(self, value, expected):
        assert format_float(value) == expected

    def test_round_trip(self):
        value = 229.33333333333334
        assert float(format_float(value)) == value


class TestParseNumericState:

    @pytest.mark.parametrize(
        "raw", ["", "unavailable", "unknown", "nan", "inf", "1_000", None, " 230 ", "230\n", "١٢"],
    )
    def test_not_numeric(self, raw):
        assert parse_numeric_state(raw) is None

    @pytest.mark.parametrize("raw,expected", [("230.1", 230.1), ("0", 0.0), ("-4", -4.0), ("1e3", 1000.0)])
    def test_numeric(self, raw, expected):
        assert parse_numeric_state(raw) == expected
