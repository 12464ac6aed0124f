"""JSON metadata store for upload jobs.

Each job lives in its own directory under ENRICHER_JOBS_DIR and holds the
uploaded file, the output CSV and a metadata.json that the API polls.
"""

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Optional

from engine import config

logger = logging.getLogger("enricher.job_store")

METADATA_FILENAME = "metadata.json"

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_write_lock = threading.Lock()


def jobs_root(root: Optional[Path] = None) -> Path:
    return Path(root) if root is not None else config.JOBS_DIR


def job_dir_for(job_id: str, root: Optional[Path] = None) -> Path:
    """Directory for a job id; rejects ids that could escape the jobs root."""
    if not _JOB_ID_RE.match(job_id or ""):
        raise ValueError(f"Invalid job id: {job_id!r}")
    return jobs_root(root) / job_id


def write_metadata(job_dir: Path, metadata: dict) -> None:
    """Replace metadata.json atomically."""
    job_dir = Path(job_dir)
    job_dir.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(metadata, indent=2, default=str)
    with _write_lock:
        fd, tmp_path = tempfile.mkstemp(dir=job_dir, prefix=".metadata-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, job_dir / METADATA_FILENAME)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise


def read_metadata(job_dir: Path) -> Optional[dict]:
    path = Path(job_dir) / METADATA_FILENAME
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.error("Corrupt metadata at %s: %s", path, e)
        return None
