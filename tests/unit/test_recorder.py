import csv
from pathlib import Path

import numpy as np
import pytest

from pinpoint.core.recorder import (
    RECORD_COLUMNS,
    CsvRecordWriter,
    EchoRecord,
    MemoryRecordSink,
    NpzRecordWriter,
    build_record_writer,
    format_number,
)


def _record(t: float = 1.5, mid: str = "1") -> EchoRecord:
    return EchoRecord(
        timestamp=t,
        manipulator_id=mid,
        position=(1.0, 2.0, 3.0, 4.25),
        angles=(0.0, 90.0, 0.0),
        tip_world=(0.1, -0.2, 0.3),
    )


def test_record_row_schema() -> None:
    row = _record().as_row()
    assert len(row) == len(RECORD_COLUMNS) == 13
    assert row[:3] == ["ephys_link", "1.5", "1"]
    assert row[3:7] == ["1.0", "2.0", "3.0", "4.25"]
    assert row[-3:] == ["0.1", "-0.2", "0.3"]


def test_format_number_uses_point_decimal() -> None:
    assert format_number(1234.5) == "1234.5"
    assert format_number(1e-5) == "1e-05"
    assert format_number(3) == "3.0"


def test_memory_sink_collects() -> None:
    sink = MemoryRecordSink()
    sink.write(_record())
    sink.close()
    assert len(sink.records) == 1


def test_csv_writer_is_lazy_and_streams(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "echo.csv"
    writer = CsvRecordWriter(str(path))
    assert not path.exists()
    writer.write(_record(0.0))
    writer.write(_record(0.1, "2"))
    writer.close()
    assert writer.count == 2
    with open(path, "r", encoding="utf-8", newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == list(RECORD_COLUMNS)
    assert rows[2][2] == "2"


def test_npz_writer_arrays(tmp_path: Path) -> None:
    path = tmp_path / "echo.npz"
    writer = NpzRecordWriter(str(path))
    for i in range(3):
        writer.write(_record(float(i)))
    writer.close()
    with np.load(path) as data:
        assert data["position"].shape == (3, 4)
        assert data["tip_world"].shape == (3, 3)
        np.testing.assert_allclose(data["timestamp"], [0.0, 1.0, 2.0])
        assert list(data["manipulator_id"]) == ["1", "1", "1"]


def test_empty_npz_writer_still_writes(tmp_path: Path) -> None:
    path = tmp_path / "empty.npz"
    writer = NpzRecordWriter(str(path))
    writer.close()
    with np.load(path) as data:
        assert data["angles"].shape == (0, 3)


def test_build_record_writer_by_extension(tmp_path: Path) -> None:
    assert isinstance(build_record_writer(str(tmp_path / "a.csv")), CsvRecordWriter)
    assert isinstance(build_record_writer(str(tmp_path / "a.bin"), "npz"), NpzRecordWriter)
    with pytest.raises(ValueError):
        build_record_writer(str(tmp_path / "a.las"))
