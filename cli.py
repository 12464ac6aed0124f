"""Contact enricher CLI.

Commands:
  enrich    Enrich a csv/xlsx contact file into an ordered result CSV
  verify    Verify a single email address against MailTester
  patterns  Show the candidate emails generated for a name + domain
  key       Fetch a MailTester key from the key provider
"""

import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path

import click
from tqdm import tqdm

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent))

from engine import config
from engine.credentials import CredentialGate
from engine.enricher import enrich_contacts
from engine.errors import CredentialFetchError, UploadValidationError
from engine.jobs import new_job_id, prepare_upload_job, run_upload_job
from engine.mailtester import verify_email
from engine.patterns import generate_candidates
from store.job_store import job_dir_for

EXIT_CREDENTIALS = 2

STATUS_ICONS = {
    "valid": "✓",
    "catchall_default": "~",
    "not_found_valid_emails": "✗",
    "error": "!",
    "skipped_missing_fields": "-",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Contact enricher: find verified emails for name + domain lists."""
    _setup_logging(verbose)


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(), help="Copy the result CSV here")
@click.option("--max-combos", type=int, default=None, help=f"Candidates per contact (default {config.MAX_COMBOS})")
@click.option("--wave-size", type=int, default=None, help=f"Contacts per wave (default {config.COMBO_BATCH_SIZE})")
@click.option("--jobs-dir", type=click.Path(file_okay=False), default=None, help="Where job folders are created")
def enrich(filepath: str, output: str, max_combos: int, wave_size: int, jobs_dir: str):
    """Enrich a contact file (CSV/XLSX with First Name, Last Name, Website)."""
    source = Path(filepath)
    job_id = new_job_id()
    job_dir = job_dir_for(job_id, Path(jobs_dir) if jobs_dir else None)
    job_dir.mkdir(parents=True, exist_ok=True)

    try:
        job = prepare_upload_job(job_id, job_dir, source, source.name, user_id="cli")
    except UploadValidationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    totals = job.metadata["totals"]
    click.echo(
        f"Enriching {totals['runnableContacts']} contacts "
        f"({totals['skippedRows']} rows skipped)..."
    )
    pbar = tqdm(total=totals["runnableContacts"], desc="Enriching", unit="contact")

    async def enrich_with_progress(contacts, on_result=None):
        def on_progress(result):
            if on_result is not None:
                on_result(result)
            pbar.update(1)

        return await enrich_contacts(
            contacts,
            on_result=on_progress,
            max_combos=max_combos,
            wave_size=wave_size,
        )

    try:
        payload = asyncio.run(run_upload_job(job, enrich=enrich_with_progress))
    except CredentialFetchError as e:
        pbar.close()
        click.echo(f"Error: {e}", err=True)
        click.echo(f"Partial results: {job.output_path}", err=True)
        sys.exit(EXIT_CREDENTIALS)
    pbar.close()

    result_path = job.output_path
    if output:
        shutil.copyfile(job.output_path, output)
        result_path = Path(output)

    _print_summary(payload["results"])
    click.echo(f"Results written to {result_path}")


@main.command()
@click.argument("email")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def verify(email: str, json_output: bool):
    """Verify a single email address."""
    try:
        response = asyncio.run(verify_email(email))
    except CredentialFetchError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CREDENTIALS)

    if json_output:
        click.echo(json.dumps(response.model_dump(), indent=2, default=str))
        return

    click.echo(f"\n{email}")
    click.echo(f"  Code:    {response.code}")
    click.echo(f"  Message: {response.message}")
    if response.error:
        click.echo(f"  Error:   {response.error}")


@main.command()
@click.argument("first")
@click.argument("last")
@click.argument("domain")
@click.option("--max-combos", type=int, default=None, help="Only show the first N candidates")
def patterns(first: str, last: str, domain: str, max_combos: int):
    """Show candidate emails for FIRST LAST @ DOMAIN, in try order."""
    candidates = generate_candidates(first, last, domain)
    if max_combos is not None:
        candidates = candidates[:max_combos]
    if not candidates:
        click.echo("No candidates (need a domain and at least one name).")
        return
    for index, (pattern, email) in enumerate(candidates):
        click.echo(f"  {index:>2}  {email:<40} {pattern}")


@main.command()
def key():
    """Fetch a MailTester key (waits while the provider asks to)."""
    try:
        lease = asyncio.run(CredentialGate().fetch_lease())
    except CredentialFetchError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CREDENTIALS)

    masked = lease.key[:4] + "…" if len(lease.key) > 4 else lease.key
    click.echo(f"Key:                 {masked}")
    click.echo(f"Avg request interval: {lease.avg_request_interval_ms} ms")
    if lease.next_request_allowed_at:
        click.echo(f"Next request at:     {lease.next_request_allowed_at}")


def _print_summary(results: list[dict]):
    """Print status counts for an enrichment run."""
    total = len(results)
    counts: dict[str, int] = {}
    for r in results:
        counts[r["status"]] = counts.get(r["status"], 0) + 1

    click.echo(f"\nSummary ({total} rows):")
    for status, icon in STATUS_ICONS.items():
        count = counts.get(status, 0)
        pct = (count / total * 100) if total > 0 else 0
        click.echo(f"  {icon} {status}: {count} ({pct:.1f}%)")


if __name__ == "__main__":
    main()
