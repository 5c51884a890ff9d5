from __future__ import annotations
import csv, os, shutil, tempfile
from typing import Sequence

from ..domain.decoding import CSV_HEADER, format_rows
from ..domain.errors import SinkError
from ..domain.models import OrderEvent
from ..ports.storage import EventSink


class CsvEventSink(EventSink):
    """
    CSV artifact: fixed header, one row per OrderEvent.
    Each append is a single atomic replace (copy -> append -> fsync -> rename),
    so a crash mid-chunk never leaves a partial row behind.
    """
    def __init__(self, path: str) -> None:
        self.path = path

    def initialize(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "w", newline="") as f:
                csv.writer(f, lineterminator="\n").writerow(CSV_HEADER)
                f.flush(); os.fsync(f.fileno())
        except OSError as e:
            raise SinkError(f"Cannot initialize output file {self.path}: {e}") from e

    def append(self, events: Sequence[OrderEvent]) -> None:
        if not events:
            return
        rows = format_rows(events)
        if not os.path.exists(self.path):
            raise SinkError(f"Output file {self.path} was not initialized")
        fd, tmp = tempfile.mkstemp(prefix=os.path.basename(self.path) + ".", suffix=".tmp",
                                   dir=os.path.dirname(self.path) or ".")
        os.close(fd)
        try:
            shutil.copyfile(self.path, tmp)
            shutil.copymode(self.path, tmp)
            with open(tmp, "a", newline="") as f:
                csv.writer(f, lineterminator="\n").writerows(rows)
                f.flush(); os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise SinkError(f"Cannot append {len(rows)} rows to {self.path}: {e}") from e
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)

    def verify(self, expected_row_count: int) -> bool:
        return verify_csv(self.path, expected_row_count)


def verify_csv(path: str, expected_row_count: int) -> bool:
    """True iff the header matches exactly and the file has `expected_row_count` non-empty data rows."""
    try:
        with open(path, "r", newline="") as f:
            reader = csv.reader(f)
            header = next(reader, None)
            if header is None or ",".join(header) != ",".join(CSV_HEADER):
                return False
            rows = sum(1 for row in reader if any(cell.strip() for cell in row))
    except (OSError, csv.Error, UnicodeDecodeError):
        return False
    return rows == expected_row_count
