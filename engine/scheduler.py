"""Combo scheduler: drives every contact through its candidates in bounded waves.

Each wave takes up to `wave_size` unresolved contacts, verifies their current
candidate concurrently and advances each by one step. A contact stops on the
first "ok", on a whole-domain no-MX signal from its first candidate, or when it
runs out of candidates (exhaustion policy: Catch-All default or not found).

Contacts finish in arbitrary order; results are yielded as they finish and
carry their input position so callers can restore order.
"""

import asyncio
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Union

from . import config
from .errors import CredentialFetchError
from .models import CandidateOutcome, Contact, ContactResult, StatusCode, VerifyResponse
from .signals import is_catch_all_message, is_ok, signals_missing_mx

logger = logging.getLogger("enricher.scheduler")

REASON_NO_MX = "Domain missing MX records"
REASON_CATCH_ALL = "All candidates returned Catch-All"
REASON_EXHAUSTED = "All candidates rejected or unverifiable"

# Index of the first-name-only pattern in generated candidate lists
CATCH_ALL_PREFERRED_INDEX = 2


async def maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


@dataclass(frozen=True)
class Pending:
    index: int


@dataclass(frozen=True)
class Terminal:
    status: StatusCode
    best_email: Optional[str]
    details: dict


@dataclass
class ContactState:
    """Per-contact progress. Owned by one scheduler run, never shared."""
    position: int
    contact: Contact
    candidates: tuple[str, ...]
    phase: Union[Pending, Terminal] = field(default_factory=lambda: Pending(0))
    tried: list[CandidateOutcome] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.phase, Terminal)

    def finish(self, status: StatusCode, best_email: Optional[str], details: dict) -> ContactResult:
        if self.is_terminal:
            raise RuntimeError(f"Contact at position {self.position} is already terminal")
        self.phase = Terminal(status=status, best_email=best_email, details=details)
        return self.result()

    def result(self) -> ContactResult:
        if not isinstance(self.phase, Terminal):
            raise RuntimeError(f"Contact at position {self.position} is still pending")
        return ContactResult(
            contact=self.contact,
            best_email=self.phase.best_email,
            status=self.phase.status,
            details=dict(self.phase.details),
            results_per_combo=list(self.tried),
            position=self.position,
        )


def coerce_contact(raw: Any) -> Contact:
    if isinstance(raw, Contact):
        return raw
    return Contact.model_validate(raw)


def coerce_response(email: str, raw: Any) -> VerifyResponse:
    """Accept VerifyResponse, a plain mapping, or None from a verifier."""
    if isinstance(raw, VerifyResponse):
        return raw
    if not isinstance(raw, Mapping):
        return VerifyResponse(email=email, raw=raw)

    def _text(value):
        return str(value) if value not in (None, "") else None

    return VerifyResponse(
        email=str(raw.get("email") or email),
        code=_text(raw.get("code")),
        message=_text(raw.get("message")),
        raw=raw.get("raw"),
        error=_text(raw.get("error")),
    )


class ComboScheduler:
    """Wave-based candidate verification for a batch of contacts."""

    def __init__(
        self,
        verify_email: Callable[[str], Any],
        generate_patterns: Callable[[Contact], Iterable[str]],
        *,
        max_combos: Optional[int] = None,
        wave_size: Optional[int] = None,
        no_mx_predicate: Callable[[VerifyResponse], bool] = signals_missing_mx,
    ):
        self._verify_email = verify_email
        self._generate_patterns = generate_patterns
        self.max_combos = config.MAX_COMBOS if max_combos is None else max(0, int(max_combos))
        self.wave_size = max(1, int(wave_size or config.COMBO_BATCH_SIZE or 1))
        self._no_mx = no_mx_predicate

    def _init_state(self, position: int, contact: Contact) -> tuple[ContactState, Optional[ContactResult]]:
        try:
            candidates = tuple(self._generate_patterns(contact) or ())
        except Exception as e:
            logger.exception("Pattern generation failed for contact at position %d", position)
            state = ContactState(position=position, contact=contact, candidates=())
            return state, state.finish(StatusCode.error, None, {"errorMessage": str(e)})
        logger.debug(
            "Initialized contact %d (%s) with %d candidates",
            position, contact.domain, len(candidates),
        )
        return ContactState(position=position, contact=contact, candidates=candidates), None

    def _in_bounds(self, state: ContactState) -> bool:
        if not isinstance(state.phase, Pending):
            return False
        index = state.phase.index
        return index < self.max_combos and index < len(state.candidates)

    async def run(self, contacts: Iterable[Any]) -> AsyncIterator[ContactResult]:
        """Yield each contact's terminal result exactly once, in finish order.

        A CredentialFetchError raised during a wave lets the rest of that wave
        settle, yields its finished contacts, then propagates.
        Any other exception while advancing a contact ends only that contact,
        with status error.
        """
        states: list[ContactState] = []
        for position, raw in enumerate(contacts):
            state, early = self._init_state(position, coerce_contact(raw))
            states.append(state)
            if early is not None:
                yield early

        logger.info(
            "Processing %d contacts (max_combos=%d, wave_size=%d)",
            len(states), self.max_combos, self.wave_size,
        )

        wave_number = 0
        while True:
            pending = [s for s in states if self._in_bounds(s)]
            if not pending:
                for state in states:
                    if not state.is_terminal:
                        yield self._exhaust(state)
                break

            wave = pending[: self.wave_size]
            wave_number += 1
            logger.debug("Wave %d: %d of %d pending contacts", wave_number, len(wave), len(pending))
            settled = await asyncio.gather(
                *(self._advance(state) for state in wave),
                return_exceptions=True,
            )

            fatal: Optional[BaseException] = None
            for state, item in zip(wave, settled):
                if isinstance(item, CredentialFetchError) or (
                    isinstance(item, BaseException) and not isinstance(item, Exception)
                ):
                    fatal = fatal or item
                elif isinstance(item, Exception):
                    yield self._fail(state, item)
                elif item is not None:
                    yield item
            if fatal is not None:
                logger.error("Aborting run after wave %d: %s", wave_number, fatal)
                raise fatal

    async def _verify(self, email: str) -> VerifyResponse:
        try:
            raw = await maybe_await(self._verify_email(email))
        except CredentialFetchError:
            raise
        except Exception as e:
            logger.warning("Verification threw for %s: %s", email, e)
            return VerifyResponse(email=email, error=str(e) or e.__class__.__name__)
        return coerce_response(email, raw)

    async def _advance(self, state: ContactState) -> Optional[ContactResult]:
        """Verify the current candidate and apply the step policy."""
        index = state.phase.index
        email = state.candidates[index]
        logger.debug("Verifying candidate %d for contact %d: %s", index, state.position, email)

        response = await self._verify(email)
        state.tried.append(
            CandidateOutcome(
                email=email,
                code=response.code,
                message=response.message,
                error=response.error,
            )
        )

        if index == 0 and self._no_mx(response):
            logger.info("Contact %d: domain %s has no MX records", state.position, state.contact.domain)
            return state.finish(StatusCode.not_found_valid_emails, None, {"reason": REASON_NO_MX})

        if is_ok(response):
            logger.info("Contact %d: valid address %s", state.position, email)
            return state.finish(
                StatusCode.valid,
                email,
                {"code": response.code, "message": response.message},
            )

        state.phase = Pending(index + 1)
        if not self._in_bounds(state):
            return self._exhaust(state)
        return None

    def _exhaust(self, state: ContactState) -> ContactResult:
        """Finalize a contact that ran out of candidates without a decision."""
        tried = state.tried
        if tried and all(is_catch_all_message(o.message) for o in tried):
            candidates = state.candidates
            if len(candidates) > CATCH_ALL_PREFERRED_INDEX:
                best = candidates[CATCH_ALL_PREFERRED_INDEX]
            else:
                best = candidates[0] if candidates else None
            result = state.finish(StatusCode.catchall_default, best, {"reason": REASON_CATCH_ALL})
        else:
            details = {"reason": REASON_EXHAUSTED}
            first_error = next((o.error for o in tried if o.error), None)
            if first_error:
                details["lastError"] = first_error
            result = state.finish(StatusCode.not_found_valid_emails, None, details)

        logger.info(
            "Contact %d finalized: %s (best=%s, checked=%d)",
            state.position, result.status.value, result.best_email, len(tried),
        )
        return result

    def _fail(self, state: ContactState, exc: Exception) -> ContactResult:
        """End a contact whose step raised something other than a credential failure."""
        logger.error("Contact %d failed: %s", state.position, exc)
        if state.is_terminal:
            return state.result()
        return state.finish(StatusCode.error, None, {"errorMessage": str(exc) or exc.__class__.__name__})
