"""Running progress counts for a batch of contacts."""

import threading

from .models import ProgressSnapshot, StatusCode, TERMINAL_STATUSES
from .signals import normalize_status_bucket

STATUS_BUCKETS = tuple(s.value for s in TERMINAL_STATUSES) + ("other",)


class ProgressTracker:
    """Aggregates terminal statuses; record() once per terminal contact."""

    def __init__(self, total_contacts: int, skipped_rows: int = 0):
        if total_contacts < 0:
            raise ValueError("total_contacts must be >= 0")
        self._lock = threading.Lock()
        self.total_contacts = total_contacts
        self.skipped_rows = skipped_rows
        self.processed_contacts = 0
        self.status_counts: dict[str, int] = {bucket: 0 for bucket in STATUS_BUCKETS}

    def record(self, status: StatusCode | str | None) -> ProgressSnapshot:
        bucket = normalize_status_bucket(status)
        with self._lock:
            if self.processed_contacts >= self.total_contacts:
                raise ValueError(
                    f"All {self.total_contacts} contacts already recorded; got another {bucket!r}"
                )
            self.processed_contacts += 1
            self.status_counts[bucket] = self.status_counts.get(bucket, 0) + 1
            return self._snapshot()

    @property
    def is_complete(self) -> bool:
        return self.processed_contacts >= self.total_contacts

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            total_contacts=self.total_contacts,
            processed_contacts=self.processed_contacts,
            status_counts=dict(self.status_counts),
            skipped_rows=self.skipped_rows,
        )
