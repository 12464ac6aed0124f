"""MailTester credential gate.

One rotating subscription key is shared by every in-flight verification. The
key provider either hands out a key or tells us to wait; waits are retried
forever, anything else that goes wrong is fatal (CredentialFetchError).

The gate also owns the process-wide pacing floor: `throttle()` serializes the
moment each verification request may be sent, regardless of how many contacts
are being advanced concurrently.
"""

import asyncio
import logging
import math
import time
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from . import config
from .errors import CredentialFetchError
from .models import CredentialLease

logger = logging.getLogger("enricher.credentials")

WAIT_FIELDS = ("waitForMs", "waitMs", "retryAfterMs", "retryInMs", "nextRequestAllowedInMs")
KEY_FIELDS = ("key", "subscriptionId", "id")
DEFAULT_WAIT_MS = 1000.0


def _coerce_positive_ms(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def extract_key(data: Mapping) -> Optional[str]:
    """First of key/subscriptionId/id, with braces and whitespace stripped."""
    for field in KEY_FIELDS:
        raw = data.get(field)
        if raw is None or raw == "":
            continue
        key = str(raw).replace("{", "").replace("}", "").strip()
        return key or None
    return None


def signals_wait(data: Mapping) -> bool:
    status = data.get("status")
    if isinstance(status, str) and status.strip().lower() == "wait":
        return True
    return any(data.get(field) is not None for field in WAIT_FIELDS)


def wait_duration_ms(data: Mapping) -> float:
    """Provider-requested wait: first present wait field, else DEFAULT_WAIT_MS."""
    for field in WAIT_FIELDS:
        if data.get(field) is not None:
            return _coerce_positive_ms(data.get(field)) or DEFAULT_WAIT_MS
    return DEFAULT_WAIT_MS


def lease_from_payload(data: Mapping, key: str) -> CredentialLease:
    next_allowed = data.get("nextRequestAllowedAt")
    return CredentialLease(
        key=key,
        avg_request_interval_ms=_coerce_positive_ms(data.get("avgRequestIntervalMs")),
        next_request_allowed_at=str(next_allowed) if next_allowed is not None else None,
        raw=dict(data),
    )


async def fetch_key_payload(
    url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Any:
    """GET the key provider and return the decoded JSON body.

    Non-2xx responses raise unless their body is a wait instruction (providers
    commonly send those with 429).
    """
    url = url or config.KEY_PROVIDER_URL
    timeout = timeout or config.KEY_PROVIDER_TIMEOUT_SECONDS
    async with aiohttp.ClientSession() as session:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = None
            if resp.status >= 400 and not (isinstance(data, Mapping) and signals_wait(data)):
                raise aiohttp.ClientResponseError(
                    resp.request_info,
                    resp.history,
                    status=resp.status,
                    message=resp.reason or "",
                )
            return data


class CredentialGate:
    """Process-wide holder of the current lease and the pacing floor."""

    def __init__(
        self,
        fetch_fn: Optional[Callable[[], Awaitable[Any]]] = None,
        *,
        sleep_fn: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._fetch_fn = fetch_fn or fetch_key_payload
        self._sleep = sleep_fn or asyncio.sleep
        self._clock = clock or time.monotonic
        self.reset()

    def reset(self) -> None:
        """Drop the cached lease, any recorded fetch failure and pacing state."""
        self._lease: Optional[CredentialLease] = None
        self._last_release: Optional[float] = None
        self._fetch_error: Optional[CredentialFetchError] = None
        self._fetch_seq = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lease_lock: Optional[asyncio.Lock] = None
        self._throttle_lock: Optional[asyncio.Lock] = None

    def _bind_loop(self) -> None:
        # Locks belong to one event loop; a new asyncio.run() gets fresh ones.
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._lease_lock = asyncio.Lock()
            self._throttle_lock = asyncio.Lock()

    @property
    def lease(self) -> Optional[CredentialLease]:
        return self._lease

    def invalidate(self) -> None:
        """Force the next acquire() to fetch a fresh lease."""
        self._lease = None
        self._fetch_error = None

    async def acquire(self) -> CredentialLease:
        """Return the current lease, fetching one if none is cached.

        Callers that were queued behind a failed fetch get that same
        CredentialFetchError instead of hitting the provider again.
        """
        lease = self._lease
        if lease is not None:
            return lease
        self._bind_loop()
        seen = self._fetch_seq
        async with self._lease_lock:
            if self._lease is not None:
                return self._lease
            if self._fetch_error is not None and self._fetch_seq != seen:
                raise self._fetch_error
            return await self._fetch_locked()

    async def refresh(self) -> CredentialLease:
        self._bind_loop()
        async with self._lease_lock:
            return await self._fetch_locked()

    async def _fetch_locked(self) -> CredentialLease:
        # Counts completed fetches; waiters compare it against what they saw on entry.
        try:
            lease = await self.fetch_lease()
        except CredentialFetchError as e:
            self._fetch_error = e
            raise
        finally:
            self._fetch_seq += 1
        self._fetch_error = None
        self._lease = lease
        return lease

    async def fetch_lease(self) -> CredentialLease:
        """Run the key-provider protocol until a key arrives or it fails."""
        attempt = 0
        while True:
            attempt += 1
            try:
                data = await self._fetch_fn()
            except CredentialFetchError:
                raise
            except Exception as e:
                logger.error("Key provider request failed: %s", e)
                raise CredentialFetchError(str(e) or e.__class__.__name__) from e

            if not isinstance(data, Mapping):
                data = {}

            key = extract_key(data)
            if key:
                lease = lease_from_payload(data, key)
                logger.info(
                    "MailTester key acquired after %d attempt(s) (avg interval: %s ms)",
                    attempt,
                    lease.avg_request_interval_ms,
                )
                return lease

            if signals_wait(data):
                wait_ms = wait_duration_ms(data)
                logger.info("Key provider asked to wait %.0f ms (attempt %d)", wait_ms, attempt)
                await self._sleep(wait_ms / 1000.0)
                continue

            raise CredentialFetchError("Key provider response missing subscription key")

    async def throttle(self, min_delay_ms: float) -> None:
        """Block until min_delay_ms has passed since the previous release."""
        self._bind_loop()
        async with self._throttle_lock:
            if self._last_release is not None and min_delay_ms and min_delay_ms > 0:
                remaining = min_delay_ms / 1000.0 - (self._clock() - self._last_release)
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_release = self._clock()


_default_gate: Optional[CredentialGate] = None


def get_gate() -> CredentialGate:
    global _default_gate
    if _default_gate is None:
        _default_gate = CredentialGate()
    return _default_gate


def reset_gate() -> None:
    global _default_gate
    _default_gate = None
