"""Contact enricher HTTP API.

Endpoints:
  POST /v1/scraper/enricher/start              Enrich a JSON list of contacts (synchronous)
  POST /v1/scraper/enricher/upload             Upload a csv/xlsx file; enrichment runs in background
  GET  /v1/scraper/enricher/jobs/{job_id}      Job metadata + progress
  GET  /v1/scraper/enricher/download/{job_id}  Download the ordered result CSV
  GET  /health                                 Health check
"""

import logging
from pathlib import Path
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, ValidationError

from engine import config
from engine.enricher import enrich_contacts
from engine.errors import CredentialFetchError, UploadValidationError
from engine.jobs import UploadJob, new_job_id, prepare_upload_job, run_upload_job
from engine.models import Contact
from store.job_store import job_dir_for, read_metadata

logger = logging.getLogger("enricher.server")

API_KEY = config.API_KEY

app = FastAPI(
    title="Contact Enricher",
    description="Find verified email addresses for contact lists",
    version="0.1.0",
)


# --- Auth ---

async def verify_api_key(request: Request):
    """Verify API key from X-API-Key header or Bearer token."""
    if not API_KEY:
        return  # No auth configured
    key = request.headers.get("X-API-Key", "")
    if not key:
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            key = auth[7:]
    if key != API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


# --- Request models ---

class StartRequest(BaseModel):
    contacts: Optional[list[Any]] = None
    maxCombos: Optional[int] = None


# --- Helpers ---

def _job_dir_or_404(job_id: str) -> Path:
    try:
        return job_dir_for(job_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Job not found.")


async def _run_job_in_background(job: UploadJob) -> None:
    try:
        await run_upload_job(job, enrich=enrich_contacts)
    except Exception:
        # Failure is already recorded in the job metadata.
        logger.exception("Background job %s failed", job.job_id)


# --- Endpoints ---

@app.post("/v1/scraper/enricher/start", dependencies=[Depends(verify_api_key)])
async def start_enricher(request: StartRequest):
    """Enrich contacts inline and return one result per contact, in input order."""
    if not request.contacts:
        raise HTTPException(status_code=400, detail="contacts array is required")
    try:
        contacts = [Contact.model_validate(c) for c in request.contacts]
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid contact: {e.errors()[0]['msg']}")

    try:
        results = await enrich_contacts(contacts, max_combos=request.maxCombos)
    except CredentialFetchError as e:
        logger.error("Enrichment aborted: %s", e)
        raise HTTPException(status_code=502, detail=str(e))

    return {"results": [r.to_payload() for r in results]}


@app.post(
    "/v1/scraper/enricher/upload",
    status_code=202,
    dependencies=[Depends(verify_api_key)],
)
async def upload_contacts_file(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    x_user_id: Optional[str] = Header(default=None),
):
    """Accept a contact file and start enrichment in the background."""
    job_id = new_job_id()
    job_dir = job_dir_for(job_id)
    job_dir.mkdir(parents=True, exist_ok=True)

    original_filename = file.filename or ""
    stored_path = job_dir / f"upload{Path(original_filename).suffix.lower()}"
    stored_path.write_bytes(await file.read())

    try:
        job = prepare_upload_job(
            job_id,
            job_dir,
            stored_path,
            original_filename,
            user_id=x_user_id or "anonymous",
        )
    except UploadValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(_run_job_in_background, job)
    return {
        "jobId": job_id,
        "status": job.metadata.get("status", "processing"),
        "totals": job.metadata.get("totals"),
        "progress": job.metadata.get("progress"),
        "downloadUrl": job.download_url,
    }


@app.get("/v1/scraper/enricher/jobs/{job_id}", dependencies=[Depends(verify_api_key)])
async def job_status(job_id: str):
    """Job metadata, including progress counts while the job runs."""
    metadata = read_metadata(_job_dir_or_404(job_id))
    if metadata is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    return metadata


@app.get("/v1/scraper/enricher/download/{job_id}", dependencies=[Depends(verify_api_key)])
async def download_job_result(job_id: str):
    """Download the result CSV (rows in original input order)."""
    job_dir = _job_dir_or_404(job_id)
    metadata = read_metadata(job_dir) or {}
    output_filename = metadata.get("outputFilename")
    if not output_filename:
        raise HTTPException(status_code=404, detail="Result file not found.")
    output_path = job_dir / output_filename
    if not output_path.exists():
        raise HTTPException(status_code=404, detail="Result file not found.")
    return FileResponse(output_path, filename=output_filename, media_type="text/csv")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "enricher",
        "version": "0.1.0",
    }


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        app,
        host=os.environ.get("ENRICHER_HOST", "0.0.0.0"),
        port=int(os.environ.get("ENRICHER_PORT", "8025")),
    )
