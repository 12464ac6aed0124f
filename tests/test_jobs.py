import asyncio
import csv
import functools

import pytest

from engine.enricher import process_contacts_in_batches
from engine.errors import CredentialFetchError, UploadValidationError
from engine.ingest import NormalizedRow
from engine.jobs import (
    build_csv_columns,
    build_result_sets,
    compose_csv_row,
    derive_message_summary,
    prepare_upload_job,
    run_upload_job,
)
from engine.models import Contact, VerifyResponse
from store.csv_sink import read_csv_rows
from store.job_store import read_metadata


async def fake_verify(email: str) -> VerifyResponse:
    if email == "jane.doe@acme.com":
        return VerifyResponse(email=email, code="ok", message="Accepted")
    if email.endswith("@wide.com"):
        return VerifyResponse(email=email, code="ko", message="Catch-All")
    return VerifyResponse(email=email, code="ko", message="Rejected")


def _leads_csv(path) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["First Name", "Last Name", "Website", "Title"])
        writer.writerow(["Jane", "Doe", "https://acme.com", "CTO"])
        writer.writerow(["John", "Roe", "", "CEO"])
        writer.writerow(["Ann", "Lee", "wide.com", "VP"])
        writer.writerow(["Bob", "Ray", "nomatch.com", "Intern"])


def test_upload_job_end_to_end(tmp_path) -> None:
    source = tmp_path / "leads.csv"
    _leads_csv(source)
    job_dir = tmp_path / "jobs" / "job1"

    job = prepare_upload_job("job1", job_dir, source, "leads.csv", user_id="u-1")

    initial = read_metadata(job_dir)
    assert initial["status"] == "processing"
    assert initial["totals"] == {"totalRows": 4, "runnableContacts": 3, "skippedRows": 1}
    assert initial["progress"]["processedContacts"] == 0
    assert initial["downloadUrl"] == "/v1/scraper/enricher/download/job1"

    enrich = functools.partial(process_contacts_in_batches, verify_email=fake_verify, wave_size=2)
    payload = asyncio.run(run_upload_job(job, enrich=enrich))

    assert payload["jobId"] == "job1"
    assert payload["userId"] == "u-1"
    assert [r["status"] for r in payload["results"]] == [
        "valid",
        "skipped_missing_fields",
        "catchall_default",
        "not_found_valid_emails",
    ]

    rows = read_csv_rows(job.output_path)
    assert [r["First Name"] for r in rows] == ["Jane", "John", "Ann", "Bob"]
    assert list(rows[0]) == ["First Name", "Last Name", "Website", "Title", "bestEmail", "status", "messageSummary"]
    assert rows[0]["bestEmail"] == "jane.doe@acme.com"
    assert rows[0]["messageSummary"] == "Accepted"
    assert rows[1]["status"] == "skipped_missing_fields"
    assert rows[1]["messageSummary"] == "Missing website/domain"
    assert rows[2]["bestEmail"] == "ann@wide.com"
    assert rows[2]["messageSummary"] == "All candidates returned Catch-All"
    assert rows[3]["bestEmail"] == ""
    assert rows[3]["messageSummary"] == "All candidates rejected or unverifiable"

    final = read_metadata(job_dir)
    assert final["status"] == "completed"
    assert final["resultCount"] == 4
    progress = final["progress"]
    assert progress["processedContacts"] == 3
    assert progress["processedContacts"] == sum(progress["statusCounts"].values())
    assert progress["statusCounts"]["valid"] == 1
    assert progress["statusCounts"]["catchall_default"] == 1
    assert progress["statusCounts"]["not_found_valid_emails"] == 1
    assert progress["skippedRows"] == 1


def test_credential_failure_marks_job_failed(tmp_path) -> None:
    source = tmp_path / "leads.csv"
    _leads_csv(source)
    job_dir = tmp_path / "job2"
    job = prepare_upload_job("job2", job_dir, source, "leads.csv")

    async def broken_enrich(contacts, on_result=None):
        raise CredentialFetchError("provider returned 503")

    with pytest.raises(CredentialFetchError):
        asyncio.run(run_upload_job(job, enrich=broken_enrich))

    metadata = read_metadata(job_dir)
    assert metadata["status"] == "failed"
    assert "provider returned 503" in metadata["error"]


def test_rejected_upload_records_failure(tmp_path) -> None:
    source = tmp_path / "leads.txt"
    source.write_text("First,Last,Website\n", encoding="utf-8")
    job_dir = tmp_path / "job3"

    with pytest.raises(UploadValidationError):
        prepare_upload_job("job3", job_dir, source, "leads.txt")

    metadata = read_metadata(job_dir)
    assert metadata["status"] == "failed"
    assert "Unsupported file type" in metadata["error"]


def test_missing_result_becomes_mismatch_error() -> None:
    contact = Contact(first_name="Jane", last_name="Doe", domain="acme.com", row_id=0)
    rows = [
        NormalizedRow(
            row_id=0,
            row_number=2,
            sanitized_row={"first": "Jane"},
            contact=contact,
            skip_reason=None,
            profile={"firstName": "Jane", "lastName": "Doe", "domain": "acme.com"},
        )
    ]

    [payload] = build_result_sets(rows, [])

    assert payload["status"] == "error"
    assert payload["details"] == {"reason": "Unexpected processing mismatch"}
    assert payload["firstName"] == "Jane"


def test_csv_columns_and_rows() -> None:
    rows = [
        NormalizedRow(0, 2, {"first": "A", "status": "old"}, None, "x"),
        NormalizedRow(1, 3, {"first": "B", "extra": "1"}, None, "y"),
    ]

    assert build_csv_columns(rows) == ["first", "status", "extra", "bestEmail", "messageSummary"]
    assert compose_csv_row({"first": "A"}, None, "valid", None) == {
        "first": "A",
        "bestEmail": "",
        "status": "valid",
        "messageSummary": "",
    }


def test_message_summary_prefers_message() -> None:
    assert derive_message_summary({"details": {"message": "m", "reason": "r"}}) == "m"
    assert derive_message_summary({"details": {"reason": "r"}}) == "r"
    assert derive_message_summary({}) == ""
    assert derive_message_summary(None) == ""
