"""Tests del export GPS."""

import json
from unittest.mock import MagicMock, patch

import pytest

from conftest import decode_rows, epoch, executed_batches, utc
from jobs.sync.batch_writer import GPS_POINTS_UPSERT, UpsertBatchWriter, gps_point_args
from jobs.sync.config import GpsSyncConfig
from jobs.sync.errors import MetadataParseError
from jobs.sync.gps import export_gps_points, to_gps_point, transfer_gps_data
from jobs.sync.models import SourceRow
from jobs.sync.source_queries import iter_gps_rows


class TestToGpsPoint:

    def test_full_point(self):
        row = SourceRow(
            10, "device_tracker.phone", "home", epoch(10, 0, 5),
            json.dumps({"latitude": 40.4, "longitude": -3.7, "gps_accuracy": 15}),
        )
        point = to_gps_point(row)
        assert point.state_id == 10
        assert point.latitude == 40.4
        assert point.longitude == -3.7
        assert point.gps_accuracy == 15.0
        assert point.last_updated == utc(10, 0, 5)

    def test_missing_latitude_is_excluded(self):
        row = SourceRow(11, "device_tracker.phone", "home", epoch(10, 0, 5), json.dumps({"longitude": -3.7}))
        assert to_gps_point(row) is None

    def test_malformed_accuracy_keeps_point(self):
        row = SourceRow(
            12, "device_tracker.phone", "away", epoch(10, 0, 5),
            json.dumps({"latitude": "40.4", "longitude": "-3.7", "gps_accuracy": "n/a"}),
        )
        point = to_gps_point(row)
        assert point is not None
        assert point.gps_accuracy is None

    def test_malformed_payload_raises(self):
        row = SourceRow(13, "device_tracker.phone", "home", epoch(10, 0, 5), "{\"latitude\": 4")
        with pytest.raises(MetadataParseError):
            to_gps_point(row)


class TestGpsExport:

    def test_export_writes_only_points_with_position(self, sink_engine):
        rows = [
            SourceRow(1, "device_tracker.phone", "home", epoch(10, 0, 0),
                      json.dumps({"latitude": 40.0, "longitude": -3.0, "gps_accuracy": "bad"})),
            SourceRow(2, "device_tracker.phone", "home", epoch(10, 1, 0),
                      json.dumps({"latitude": 40.0})),
            SourceRow(3, "device_tracker.car", "away", epoch(10, 2, 0),
                      json.dumps({"latitude": 41.0, "longitude": -2.0, "gps_accuracy": 5})),
        ]
        writer = UpsertBatchWriter(sink_engine, GPS_POINTS_UPSERT, gps_point_args)
        stats = export_gps_points(rows, writer)

        assert stats.rows_read == 3
        assert stats.without_position == 1
        assert stats.points_written == 2

        (sql, params), = executed_batches(sink_engine)
        assert sql.startswith("INSERT INTO gps_points(state_id")
        written = decode_rows(GPS_POINTS_UPSERT, params)
        assert [r["state_id"] for r in written] == [1, 3]
        assert written[0]["gps_accuracy"] is None
        assert written[1]["gps_accuracy"] == 5.0

    def test_gps_query_filters_coordinates(self, recorder):
        recorder.add("device_tracker.phone", "home", epoch(10, 0, 0), {"latitude": 40.0, "longitude": -3.0})
        recorder.add("sensor.plug_power", "10", epoch(10, 0, 0), {"unit_of_measurement": "W"})
        recorder.add("device_tracker.car", "away", epoch(10, 0, 1), {"latitude": 41.0})

        rows = list(iter_gps_rows(recorder.engine))
        assert [r.entity_id for r in rows] == ["device_tracker.phone"]

    def test_transfer_gps_data(self, recorder, sink_engine):
        recorder.add("device_tracker.phone", "home", epoch(10, 0, 0),
                     {"latitude": 40.0, "longitude": -3.0, "gps_accuracy": 10})
        cfg = GpsSyncConfig(sqlite_path=":memory:", sink_url="mysql+pymysql://u:p@h/db")

        stats = transfer_gps_data(cfg, source_engine=recorder.engine, sink_engine=sink_engine)

        assert stats.points_written == 1
        (_, params), = executed_batches(sink_engine)
        assert decode_rows(GPS_POINTS_UPSERT, params)[0]["latitude"] == 40.0

    def test_aborted_export_closes_source_stream(self, sink_engine):
        closed = []

        def stream():
            try:
                yield SourceRow(1, "device_tracker.phone", "home", epoch(10, 0, 0), "{\"latitude\": 4")
            finally:
                closed.append(True)

        cfg = GpsSyncConfig(sqlite_path=":memory:", sink_url="mysql+pymysql://u:p@h/db")
        with patch("jobs.sync.gps.iter_gps_rows", return_value=stream()):
            with pytest.raises(MetadataParseError):
                transfer_gps_data(cfg, source_engine=MagicMock(), sink_engine=sink_engine)
            assert closed == [True]
