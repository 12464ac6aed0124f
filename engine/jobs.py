"""Upload jobs: contact file in, ordered enriched CSV + progress metadata out.

prepare_upload_job() does everything that can fail fast (validation, parsing,
header detection) so the API can answer 400 before any verification starts.
run_upload_job() then enriches the runnable rows, streaming each finished
contact into the ordered CSV and the job's progress metadata.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from store.csv_sink import CsvAppendSink
from store.job_store import write_metadata

from .enricher import enrich_contacts
from .ingest import NormalizedRow, load_rows, validate_extension
from .models import Contact, ContactResult, StatusCode
from .ordered_writer import OrderedSnapshotWriter
from .progress import ProgressTracker

logger = logging.getLogger("enricher.jobs")

RESULT_COLUMNS = ("bestEmail", "status", "messageSummary")
DOWNLOAD_URL_TEMPLATE = "/v1/scraper/enricher/download/{job_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_job_id() -> str:
    return uuid.uuid4().hex


# ── Result shaping ──────────────────────────────────────────────────────────


def build_csv_columns(rows: list[NormalizedRow]) -> list[str]:
    """Union of input columns in first-seen order, then the result columns."""
    columns: list[str] = []
    for row in rows:
        for key in row.sanitized_row:
            if key not in columns:
                columns.append(key)
    for extra in RESULT_COLUMNS:
        if extra not in columns:
            columns.append(extra)
    return columns


def compose_csv_row(
    base_row: dict,
    best_email: Optional[str] = "",
    status: Optional[str] = "",
    message_summary: Optional[str] = "",
) -> dict:
    return {
        **base_row,
        "bestEmail": best_email or "",
        "status": status or "",
        "messageSummary": message_summary or "",
    }


def derive_message_summary(result: Any) -> str:
    """details.message, else details.reason, else ''."""
    if isinstance(result, ContactResult):
        return result.message_summary
    details = (result or {}).get("details") or {}
    return details.get("message") or details.get("reason") or ""


def build_result_sets(rows: list[NormalizedRow], results: list[ContactResult]) -> list[dict]:
    """One payload per normalized row, skipped rows included, in row order."""
    by_row_id = {r.contact.row_id: r for r in results if r.contact.row_id is not None}
    payloads = []
    for row in rows:
        if row.contact is None:
            payloads.append({
                **row.profile,
                "bestEmail": None,
                "status": StatusCode.skipped_missing_fields.value,
                "details": {"reason": row.skip_reason},
                "resultsPerCombo": [],
            })
            continue
        result = by_row_id.get(row.row_id)
        if result is None:
            logger.error("No enrichment result for row %d", row.row_id)
            payloads.append({
                **row.profile,
                "bestEmail": None,
                "status": StatusCode.error.value,
                "details": {"reason": "Unexpected processing mismatch"},
                "resultsPerCombo": [],
            })
            continue
        payloads.append(result.to_payload())
    return payloads


# ── Jobs ────────────────────────────────────────────────────────────────────


@dataclass
class UploadJob:
    job_id: str
    job_dir: Path
    rows: list[NormalizedRow]
    output_path: Path
    writer: OrderedSnapshotWriter
    tracker: ProgressTracker
    metadata: dict = field(default_factory=dict)

    @property
    def contacts(self) -> list[Contact]:
        return [row.contact for row in self.rows if row.contact is not None]

    @property
    def download_url(self) -> str:
        return DOWNLOAD_URL_TEMPLATE.format(job_id=self.job_id)

    def save(self, **updates) -> None:
        self.metadata = {**self.metadata, **updates}
        write_metadata(self.job_dir, self.metadata)


def prepare_upload_job(
    job_id: str,
    job_dir: Path,
    file_path: Path,
    original_filename: str,
    user_id: str = "anonymous",
) -> UploadJob:
    """Validate and parse an upload, write the initial CSV and metadata."""
    job_dir = Path(job_dir)
    metadata = {
        "jobId": job_id,
        "userId": user_id,
        "originalFilename": original_filename,
        "storedFilename": Path(file_path).name,
        "createdAt": _now(),
        "status": "processing",
    }
    write_metadata(job_dir, metadata)

    try:
        validate_extension(original_filename)
        rows = load_rows(file_path)
    except Exception as e:
        write_metadata(job_dir, {**metadata, "status": "failed", "failedAt": _now(), "error": str(e)})
        raise

    runnable = sum(1 for row in rows if row.contact is not None)
    skipped = len(rows) - runnable
    tracker = ProgressTracker(runnable, skipped_rows=skipped)

    output_filename = f"output-{job_id}-{int(time.time() * 1000)}.csv"
    output_path = job_dir / output_filename
    writer = OrderedSnapshotWriter(CsvAppendSink(output_path, build_csv_columns(rows)))

    for row in rows:
        if row.contact is None:
            writer.submit(row.row_id, compose_csv_row(
                row.sanitized_row,
                status=StatusCode.skipped_missing_fields.value,
                message_summary=row.skip_reason,
            ))

    job = UploadJob(
        job_id=job_id,
        job_dir=job_dir,
        rows=rows,
        output_path=output_path,
        writer=writer,
        tracker=tracker,
        metadata=metadata,
    )
    job.save(
        totals={"totalRows": len(rows), "runnableContacts": runnable, "skippedRows": skipped},
        progress=tracker.snapshot().to_payload(),
        outputFilename=output_filename,
        downloadUrl=job.download_url,
        resultCount=0,
        lastUpdate=_now(),
    )
    logger.info("Job %s ready: %d rows (%d runnable, %d skipped)", job_id, len(rows), runnable, skipped)
    return job


async def run_upload_job(
    job: UploadJob,
    enrich: Callable[..., Any] = enrich_contacts,
) -> dict:
    """Enrich a prepared job; returns the API payload for the finished job."""
    rows_by_id = {row.row_id: row for row in job.rows}

    def on_result(result: ContactResult) -> None:
        row = rows_by_id.get(result.contact.row_id)
        if row is not None:
            job.writer.submit(row.row_id, compose_csv_row(
                row.sanitized_row,
                best_email=result.best_email,
                status=result.status.value,
                message_summary=result.message_summary,
            ))
        else:
            logger.error("Job %s: result for unknown row %s", job.job_id, result.contact.row_id)
        snapshot = job.tracker.record(result.status)
        job.save(
            progress=snapshot.to_payload(),
            resultCount=snapshot.processed_contacts,
            lastUpdate=_now(),
        )

    contacts = job.contacts
    try:
        results = await enrich(contacts, on_result=on_result) if contacts else []
        api_results = build_result_sets(job.rows, results)
        job.save(status="completed", completedAt=_now(), resultCount=len(api_results))
    except Exception as e:
        logger.error("Job %s failed: %s", job.job_id, e)
        job.save(status="failed", failedAt=_now(), error=str(e))
        raise

    logger.info("Job %s completed: %s", job.job_id, job.tracker.snapshot().status_counts)
    return {
        "jobId": job.job_id,
        "userId": job.metadata.get("userId"),
        "outputFile": job.output_path.name,
        "outputPath": str(job.output_path),
        "downloadUrl": job.download_url,
        "results": api_results,
    }


async def process_uploaded_file(
    job_id: str,
    job_dir: Path,
    file_path: Path,
    original_filename: str,
    user_id: str = "anonymous",
    enrich: Callable[..., Any] = enrich_contacts,
) -> dict:
    job = prepare_upload_job(job_id, job_dir, file_path, original_filename, user_id)
    return await run_upload_job(job, enrich=enrich)
