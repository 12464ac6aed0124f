"""Contact enrichment entry points.

process_contacts_in_batches() is the seam used by the upload pipeline, the API
and the CLI: it runs the combo scheduler, fires `on_result` once per contact as
contacts finish, and returns the results in input order.
"""

import logging
from typing import Any, Callable, Iterable, Optional

from .credentials import CredentialGate
from .mailtester import MailTesterClient
from .models import Contact, ContactResult
from .ordered_writer import OrderedSnapshotWriter
from .patterns import generate_patterns as default_generate_patterns
from .scheduler import ComboScheduler, maybe_await
from .signals import signals_missing_mx

logger = logging.getLogger("enricher.enricher")


async def _notify(on_result, result: ContactResult) -> None:
    if on_result is not None:
        await maybe_await(on_result(result))


async def process_contacts_in_batches(
    contacts: Iterable[Any],
    *,
    verify_email: Callable[[str], Any],
    generate_patterns: Callable[[Contact], Iterable[str]] = default_generate_patterns,
    max_combos: Optional[int] = None,
    on_result: Optional[Callable[[ContactResult], Any]] = None,
    wave_size: Optional[int] = None,
    no_mx_predicate: Callable = signals_missing_mx,
) -> list[ContactResult]:
    """Enrich contacts and return their results keyed by input position."""
    contacts = list(contacts)
    scheduler = ComboScheduler(
        verify_email,
        generate_patterns,
        max_combos=max_combos,
        wave_size=wave_size,
        no_mx_predicate=no_mx_predicate,
    )
    ordered = OrderedSnapshotWriter()

    async for result in scheduler.run(contacts):
        ordered.submit(result.position, result)
        await _notify(on_result, result)

    results = ordered.materialize()
    if len(results) != len(contacts):
        raise RuntimeError(f"Expected {len(contacts)} results, got {len(results)}")
    return results


async def enrich_contacts(
    contacts: Iterable[Any],
    *,
    on_result: Optional[Callable[[ContactResult], Any]] = None,
    max_combos: Optional[int] = None,
    wave_size: Optional[int] = None,
    gate: Optional[CredentialGate] = None,
) -> list[ContactResult]:
    """Enrich contacts against MailTester with one shared HTTP session."""
    async with MailTesterClient(gate) as client:
        return await process_contacts_in_batches(
            contacts,
            verify_email=client.verify,
            generate_patterns=default_generate_patterns,
            max_combos=max_combos,
            on_result=on_result,
            wave_size=wave_size,
        )
