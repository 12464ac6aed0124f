import pytest

from engine.models import StatusCode
from engine.progress import STATUS_BUCKETS, ProgressTracker


def test_invariant_holds_after_every_record() -> None:
    statuses = [
        StatusCode.valid,
        "catchall_default",
        StatusCode.not_found_valid_emails,
        StatusCode.error,
        StatusCode.valid,
    ]
    tracker = ProgressTracker(len(statuses))

    for status in statuses:
        snapshot = tracker.record(status)
        assert snapshot.processed_contacts == sum(snapshot.status_counts.values())

    final = tracker.snapshot()
    assert final.processed_contacts == final.total_contacts == 5
    assert final.status_counts["valid"] == 2
    assert tracker.is_complete


def test_unknown_and_empty_statuses_count_as_other() -> None:
    tracker = ProgressTracker(3)

    tracker.record("mystery")
    tracker.record(None)
    snapshot = tracker.record("")

    assert snapshot.status_counts["other"] == 3
    assert set(snapshot.status_counts) == set(STATUS_BUCKETS)


def test_recording_past_total_raises() -> None:
    tracker = ProgressTracker(1)
    tracker.record(StatusCode.valid)

    with pytest.raises(ValueError):
        tracker.record(StatusCode.valid)
    assert tracker.snapshot().processed_contacts == 1


def test_snapshots_are_immutable_copies() -> None:
    tracker = ProgressTracker(2, skipped_rows=4)
    first = tracker.record(StatusCode.error)
    tracker.record(StatusCode.valid)

    assert first.processed_contacts == 1
    assert first.status_counts["valid"] == 0
    with pytest.raises(Exception):
        first.processed_contacts = 9


def test_payload_shape() -> None:
    tracker = ProgressTracker(2, skipped_rows=1)
    tracker.record(StatusCode.valid)

    assert tracker.snapshot().to_payload() == {
        "totalContacts": 2,
        "processedContacts": 1,
        "statusCounts": {
            "valid": 1,
            "catchall_default": 0,
            "not_found_valid_emails": 0,
            "error": 0,
            "other": 0,
        },
        "skippedRows": 1,
    }


def test_negative_total_rejected() -> None:
    with pytest.raises(ValueError):
        ProgressTracker(-1)
