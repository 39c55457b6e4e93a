from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import csv
import pathlib
import numpy as np

from .utils import get_logger

_log = get_logger()

RECORD_COLUMNS: Sequence[str] = (
    "tag", "timestamp", "manipulator_id",
    "x", "y", "z", "w",
    "phi", "theta", "spin",
    "tip_x", "tip_y", "tip_z",
)


def format_number(value: float) -> str:
    """Locale-independent decimal rendering (``repr`` of a Python float)."""
    return repr(float(value))


@dataclass(frozen=True)
class EchoRecord:
    """One row of the manipulator echo log."""
    timestamp: float
    manipulator_id: str
    position: tuple[float, float, float, float]
    angles: tuple[float, float, float]
    tip_world: tuple[float, float, float]
    tag: str = "ephys_link"

    def as_row(self) -> List[str]:
        numbers = [*self.position, *self.angles, *self.tip_world]
        return [self.tag, format_number(self.timestamp), str(self.manipulator_id)] + [
            format_number(v) for v in numbers
        ]


@dataclass
class MemoryRecordSink:
    records: List[EchoRecord] = field(default_factory=list)

    def write(self, record: EchoRecord) -> None:
        self.records.append(record)

    def close(self) -> None:
        pass


@dataclass
class CsvRecordWriter:
    """Streaming CSV writer; the file is opened lazily on the first record."""
    path: str
    header: bool = True

    def __post_init__(self) -> None:
        self._fh = None
        self._writer = None
        self.count = 0

    def write(self, record: EchoRecord) -> None:
        if self._writer is None:
            path = pathlib.Path(self.path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(path, "w", encoding="utf-8", newline="")
            self._writer = csv.writer(self._fh)
            if self.header:
                self._writer.writerow(RECORD_COLUMNS)
            _log.info("Opened %s for echo records", path.name)
        self._writer.writerow(record.as_row())
        self.count += 1

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._writer = None


@dataclass
class NpzRecordWriter:
    """Buffers records and writes a numpy archive on close."""
    path: str
    compress: bool = True

    def __post_init__(self) -> None:
        self._rows: List[EchoRecord] = []
        self._closed = False

    @property
    def count(self) -> int:
        return len(self._rows)

    def write(self, record: EchoRecord) -> None:
        self._rows.append(record)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        path = pathlib.Path(self.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        n = len(self._rows)
        arrays = {
            "timestamp": np.array([r.timestamp for r in self._rows], dtype=np.float64),
            "manipulator_id": np.array([str(r.manipulator_id) for r in self._rows], dtype=str),
            "position": np.array([r.position for r in self._rows], dtype=np.float64).reshape(n, 4),
            "angles": np.array([r.angles for r in self._rows], dtype=np.float64).reshape(n, 3),
            "tip_world": np.array([r.tip_world for r in self._rows], dtype=np.float64).reshape(n, 3),
        }
        saver = np.savez_compressed if self.compress else np.savez
        saver(path, **arrays)
        _log.info("Wrote %d echo records to %s", n, path.name)


def build_record_writer(path: str, fmt: Optional[str] = None):
    fmt = (fmt or pathlib.Path(path).suffix.lstrip(".")).lower()
    if fmt == "csv":
        return CsvRecordWriter(path)
    if fmt == "npz":
        return NpzRecordWriter(path)
    raise ValueError(f"Unsupported record format: {fmt}")
