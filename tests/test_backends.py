"""Both backends must answer every operation identically."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from telemetry_engine import FileBackend, QueryError, Reading, SQLiteBackend, Tier
from telemetry_engine.tiers import unit_id


T0 = datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)


def fill(backend, tier, readings, uid=None):
    assert backend.open_unit(tier, uid or unit_id(tier, T0))
    for reading in readings:
        assert backend.append(tier, reading)


def series(n, start=T0, step=1):
    return [Reading(20.0 + i, start + timedelta(seconds=i * step)) for i in range(n)]


class TestReadWrite:

    def test_range_is_inclusive_and_ordered(self, backend):
        readings = series(10)
        fill(backend, Tier.RAW, readings)

        result = backend.query_range(readings[2].timestamp, readings[5].timestamp)
        assert result == readings[2:6]

    def test_range_spans_units(self, backend):
        first = series(3)
        second = series(3, start=T0 + timedelta(hours=1))
        fill(backend, Tier.RAW, first)
        fill(backend, Tier.RAW, second, uid=unit_id(Tier.RAW, T0 + timedelta(hours=1)))

        result = backend.query_range(T0, T0 + timedelta(hours=2))
        assert result == first + second

    def test_average(self, backend):
        fill(backend, Tier.RAW, series(5))  # 20..24
        assert backend.query_average(T0, T0 + timedelta(seconds=4)) == pytest.approx(22.0)
        assert backend.query_average(T0, T0 + timedelta(seconds=1)) == pytest.approx(20.5)

    def test_average_of_empty_range_is_zero(self, backend):
        fill(backend, Tier.RAW, series(5))
        assert backend.query_average(T0 - timedelta(days=2), T0 - timedelta(days=1)) == 0.0

    def test_recent_newest_first(self, backend):
        readings = series(5)
        fill(backend, Tier.RAW, readings)

        assert backend.query_recent(3) == [readings[4], readings[3], readings[2]]
        assert backend.query_recent(0) == []
        assert len(backend.query_recent(50)) == 5

    def test_tiers_are_separate(self, backend):
        fill(backend, Tier.RAW, series(4))
        fill(backend, Tier.HOURLY, [Reading(21.5, T0)])

        assert backend.count(Tier.RAW) == 4
        assert backend.count(Tier.HOURLY) == 1
        assert backend.count(Tier.DAILY) == 0
        assert backend.query_range(T0, T0, Tier.HOURLY) == [Reading(21.5, T0)]

    def test_values_survive_exactly(self, backend):
        reading = Reading(25.3, T0.replace(microsecond=654321))
        fill(backend, Tier.RAW, [reading])
        assert backend.query_recent(1) == [reading]

    def test_append_without_active_unit_fails(self, backend):
        result = backend.append(Tier.RAW, Reading(1.0, T0))
        assert not result
        assert result.kind == "write"


class TestUnits:

    def test_list_units_with_timestamps(self, backend):
        fill(backend, Tier.RAW, series(2))
        assert backend.list_units(Tier.RAW) == [("raw_temperature_20240115_140000", T0)]
        assert backend.list_units(Tier.DAILY) == []

    def test_close_unit_keeps_data(self, backend):
        fill(backend, Tier.RAW, series(2))
        backend.close_unit(Tier.RAW)
        assert backend.count() == 2
        assert not backend.append(Tier.RAW, Reading(1.0, T0))

    def test_delete_unit_is_idempotent(self, backend):
        uid = unit_id(Tier.RAW, T0)
        fill(backend, Tier.RAW, series(3))

        assert backend.delete_unit(Tier.RAW, uid)
        assert backend.count() == 0
        assert backend.list_units(Tier.RAW) == []
        assert backend.delete_unit(Tier.RAW, uid)

    def test_deleting_active_unit_deactivates_it(self, backend):
        uid = unit_id(Tier.RAW, T0)
        fill(backend, Tier.RAW, series(1))
        backend.delete_unit(Tier.RAW, uid)
        assert not backend.append(Tier.RAW, Reading(1.0, T0))

    def test_reopen_existing_unit_appends(self, backend):
        fill(backend, Tier.RAW, series(2))
        backend.close_unit(Tier.RAW)
        fill(backend, Tier.RAW, series(2, start=T0 + timedelta(seconds=10)))
        assert backend.count() == 4
        assert len(backend.list_units(Tier.RAW)) == 1


class TestLifecycle:

    def test_queries_on_closed_backend_raise(self, backend):
        fill(backend, Tier.RAW, series(2))
        backend.close()
        with pytest.raises(QueryError):
            backend.query_range(T0, T0 + timedelta(hours=1))
        with pytest.raises(QueryError):
            backend.query_recent(1)
        backend.close()

    def test_data_persists_across_reopen(self, backend):
        readings = series(3)
        fill(backend, Tier.RAW, readings)
        backend.close()
        assert backend.open()
        assert backend.query_recent(3) == list(reversed(readings))

    def test_open_is_idempotent(self, backend):
        assert backend.open()
        assert backend.get_stats()["backend"] in ("file", "sqlite")


class TestFileBackend:

    def test_unit_file_layout(self, tmp_path):
        backend = FileBackend(str(tmp_path))
        assert backend.open()
        fill(backend, Tier.HOURLY, [Reading(21.5, T0)])
        backend.close()

        lines = (tmp_path / "hourly_average_20240115.txt").read_text().splitlines()
        assert lines[0] == "# Hourly Average Log File"
        assert lines[1].startswith("# Created: ")
        assert lines[2] == "# Format: Timestamp, Value"
        assert lines[3] == "2024-01-15 14:00:00.000000, 21.5"

    def test_header_only_unit_reads_empty(self, tmp_path):
        backend = FileBackend(str(tmp_path))
        assert backend.open()
        assert backend.open_unit(Tier.RAW, unit_id(Tier.RAW, T0))
        assert backend.count() == 0
        assert backend.query_recent(5) == []
        backend.close()

    def test_open_fails_when_path_is_a_file(self, tmp_path):
        blocker = tmp_path / "store"
        blocker.write_text("not a directory")

        result = FileBackend(str(blocker)).open()
        assert not result
        assert result.kind == "configuration"

    def test_range_starting_on_legacy_row(self, tmp_path):
        (tmp_path / "raw_temperature_20240115_140000.txt").write_text(
            "# Temperature Log File\n# Created: 2024-01-15 14:00:00\n# Format: Timestamp, Value\n"
            "2024-01-15 14:00:05, 19.5\n"
        )
        backend = FileBackend(str(tmp_path))
        assert backend.open()

        start = T0 + timedelta(seconds=5)
        assert backend.query_range(start, start + timedelta(seconds=5)) == [Reading(19.5, start)]
        assert backend.query_average(start, start) == 19.5
        assert backend.query_range(start + timedelta(microseconds=1), start + timedelta(seconds=5)) == []
        backend.close()

    def test_stats(self, tmp_path):
        backend = FileBackend(str(tmp_path))
        assert backend.open()
        fill(backend, Tier.RAW, series(3))
        stats = backend.get_stats()
        assert stats["raw_units"] == 1
        assert stats["hourly_units"] == 0
        assert stats["raw_size_mb"] > 0
        backend.close()


class TestSQLiteBackend:

    def test_schema(self, tmp_path):
        path = tmp_path / "telemetry.db"
        backend = SQLiteBackend(str(path))
        assert backend.open()
        fill(backend, Tier.RAW, series(2))
        backend.close()

        with sqlite3.connect(str(path)) as conn:
            columns = [row[1] for row in conn.execute("PRAGMA table_info(raw_temperature)")]
            rows = conn.execute("SELECT timestamp, unit FROM raw_temperature ORDER BY id").fetchall()
        conn.close()
        assert columns == ["id", "value", "timestamp", "unit", "created_at"]
        assert rows[0] == ("2024-01-15 14:00:00.000000", "raw_temperature_20240115_140000")

    def test_legacy_timestamps_are_read(self, tmp_path):
        path = tmp_path / "telemetry.db"
        backend = SQLiteBackend(str(path))
        assert backend.open()
        backend.connection.execute(
            "INSERT INTO raw_temperature (value, timestamp, unit) VALUES (?, ?, ?)",
            (19.5, "2024-01-15 14:00:05", "raw_temperature_20240115_140000"),
        )
        backend.connection.commit()

        assert backend.query_recent(1) == [Reading(19.5, T0 + timedelta(seconds=5))]
        backend.close()

    def test_range_starting_on_legacy_row(self, tmp_path):
        backend = SQLiteBackend(str(tmp_path / "telemetry.db"))
        assert backend.open()
        backend.connection.execute(
            "INSERT INTO raw_temperature (value, timestamp, unit) VALUES (?, ?, ?)",
            (19.5, "2024-01-15 14:00:05", "raw_temperature_20240115_140000"),
        )
        backend.connection.commit()
        fill(backend, Tier.RAW, [Reading(20.5, T0 + timedelta(seconds=5))])

        start = T0 + timedelta(seconds=5)
        result = backend.query_range(start, start + timedelta(seconds=5))
        assert result == [Reading(19.5, start), Reading(20.5, start)]
        assert backend.query_average(start, start) == 20.0
        backend.close()

    def test_in_memory_database(self):
        backend = SQLiteBackend(":memory:")
        assert backend.open()
        fill(backend, Tier.DAILY, [Reading(18.0, T0)])
        assert backend.count(Tier.DAILY) == 1
        backend.close()

    def test_open_fails_on_directory(self, tmp_path):
        result = SQLiteBackend(str(tmp_path)).open()
        assert not result
        assert result.kind == "configuration"
