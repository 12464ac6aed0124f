"""Ordered snapshot writer.

Results arrive in completion order; output must follow row_id order. Records
are parked in a pending map until the row at the cursor is present, then the
contiguous run starting at the cursor is flushed to the sink in one append.
Nothing is ever emitted ahead of a missing row.
"""

import logging
import threading
from typing import Any, Optional, Protocol

logger = logging.getLogger("enricher.ordered_writer")


class RowSink(Protocol):
    def append(self, rows: list[tuple[int, Any]]) -> None:
        ...


class OrderedSnapshotWriter:
    """Pending map keyed by row_id plus a monotonic next-expected cursor."""

    def __init__(self, sink: Optional[RowSink] = None):
        self._sink = sink
        self._cursor = 0
        self._pending: dict[int, Any] = {}
        self._flushed: list[Any] = []
        self._lock = threading.Lock()

    @property
    def cursor(self) -> int:
        """row_id of the next row to flush."""
        return self._cursor

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_complete(self, total: int) -> bool:
        return self._cursor >= total and not self._pending

    def submit(self, row_id: int, record: Any) -> list[tuple[int, Any]]:
        """Store a record and flush whatever became contiguous.

        Returns the (row_id, record) pairs flushed by this call. A second
        submission for a pending row replaces the first.
        """
        if not isinstance(row_id, int) or row_id < 0:
            raise ValueError(f"row_id must be a non-negative integer, got {row_id!r}")

        with self._lock:
            if row_id < self._cursor:
                # Append-only sinks cannot take the row back.
                self._flushed[row_id] = record
                logger.warning("Row %d resubmitted after flush; sink not updated", row_id)
                return []

            self._pending[row_id] = record
            run: list[tuple[int, Any]] = []
            while self._cursor in self._pending:
                current = self._pending.pop(self._cursor)
                run.append((self._cursor, current))
                self._flushed.append(current)
                self._cursor += 1

            if run and self._sink is not None:
                self._sink.append(run)
            if run:
                logger.debug("Flushed rows %d-%d", run[0][0], run[-1][0])
            return run

    def materialize(self) -> list[Any]:
        """Records flushed so far, in row_id order."""
        with self._lock:
            return list(self._flushed)
