"""Append-only CSV sink for ordered result rows.

The header is written when the sink is opened; afterwards rows only ever get
appended, so a partially processed job always has a valid, in-order prefix on
disk.
"""

import csv
import logging
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger("enricher.csv_sink")


class CsvAppendSink:
    def __init__(self, path: Path | str, columns: list[str]):
        self.path = Path(path)
        self.columns = list(columns)
        self.rows_written = 0
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8", newline="") as f:
            self._writer(f).writeheader()

    def _writer(self, f) -> csv.DictWriter:
        return csv.DictWriter(
            f,
            fieldnames=self.columns,
            extrasaction="ignore",
            restval="",
            lineterminator="\n",
        )

    def append(self, rows: list[tuple[int, Any]]) -> None:
        if not rows:
            return
        with self._lock:
            with open(self.path, "a", encoding="utf-8", newline="") as f:
                writer = self._writer(f)
                for _, record in rows:
                    writer.writerow({k: ("" if v is None else v) for k, v in dict(record).items()})
            self.rows_written += len(rows)
        logger.debug("Appended %d rows to %s (total %d)", len(rows), self.path.name, self.rows_written)


def read_csv_rows(path: Path | str) -> list[dict[str, str]]:
    with open(path, encoding="utf-8", newline="") as f:
        return list(csv.DictReader(f))
