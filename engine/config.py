"""Runtime configuration read from the environment.

Every setting has a default so the engine imports cleanly in tests and scripts.
"""

import os
from pathlib import Path

# Base URL for the MailTester Ninja API
MAILTESTER_BASE_URL = os.environ.get("MAILTESTER_BASE_URL", "https://happy.mailtester.ninja/ninja")
# Key provider that hands out the MailTester subscription key (governs pacing)
KEY_PROVIDER_URL = os.environ.get(
    "KEY_PROVIDER_URL", "https://api.daddy-leads.com/mailtester/key/available"
)

# Contacts advanced per wave during combo processing
COMBO_BATCH_SIZE = int(os.environ.get("COMBO_BATCH_SIZE", "25") or 25)
# Candidates tried per contact before the exhaustion policy applies
MAX_COMBOS = int(os.environ.get("MAX_COMBOS", "8") or 8)
# Minimum spacing between two verification requests, process-wide
MIN_DELAY_MS = float(os.environ.get("MAILTESTER_MIN_DELAY_MS", "0") or 0)

MAILTESTER_TIMEOUT_SECONDS = float(os.environ.get("MAILTESTER_TIMEOUT_SECONDS", "30"))
KEY_PROVIDER_TIMEOUT_SECONDS = float(os.environ.get("KEY_PROVIDER_TIMEOUT_SECONDS", "15"))

# Upload jobs
JOBS_DIR = Path(os.environ.get("ENRICHER_JOBS_DIR", str(Path(__file__).parent.parent / "jobs")))
MAX_ROWS = int(os.environ.get("ENRICHER_MAX_ROWS", "10000"))

# HTTP API
API_KEY = os.environ.get("ENRICHER_API_KEY", "")
