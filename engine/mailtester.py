"""MailTester Ninja verification client.

verify_email() never raises for verifier-side problems: HTTP errors, timeouts
and undecodable bodies come back as VerifyResponse.error. It does raise
CredentialFetchError when no key can be obtained, because that ends the run.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from . import config
from .credentials import CredentialGate, get_gate
from .models import CredentialLease, VerifyResponse

logger = logging.getLogger("enricher.mailtester")


def _pacing_delay_ms(lease: CredentialLease, min_delay_ms: float) -> float:
    hint = lease.avg_request_interval_ms or 0.0
    return max(min_delay_ms or 0.0, hint)


class MailTesterClient:
    """Reusable MailTester client; one aiohttp session per context."""

    def __init__(
        self,
        gate: Optional[CredentialGate] = None,
        *,
        base_url: Optional[str] = None,
        min_delay_ms: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._gate = gate
        self._base_url = base_url or config.MAILTESTER_BASE_URL
        self._min_delay_ms = config.MIN_DELAY_MS if min_delay_ms is None else min_delay_ms
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or config.MAILTESTER_TIMEOUT_SECONDS
        )
        self._session = session
        self._owns_session = session is None

    @property
    def gate(self) -> CredentialGate:
        return self._gate or get_gate()

    async def __aenter__(self) -> "MailTesterClient":
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def verify(self, email: str) -> VerifyResponse:
        gate = self.gate
        # CredentialFetchError propagates: no key means no run.
        lease = await gate.acquire()
        await gate.throttle(_pacing_delay_ms(lease, self._min_delay_ms))

        if self._session is None:
            async with aiohttp.ClientSession() as session:
                return await self._request(session, email, lease.key)
        return await self._request(self._session, email, lease.key)

    async def _request(
        self, session: aiohttp.ClientSession, email: str, key: str
    ) -> VerifyResponse:
        logger.debug("Requesting verification for %s", email)
        body = None
        try:
            async with session.get(
                self._base_url,
                params={"email": email, "key": key},
                timeout=self._timeout,
            ) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                resp.raise_for_status()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = str(e) or e.__class__.__name__
            logger.warning("Verification failed for %s: %s", email, message)
            return VerifyResponse(email=email, raw=body, error=message)

        data = body if isinstance(body, dict) else {}
        code = data.get("code") or None
        message = data.get("message") or None
        logger.debug("Response for %s: code=%s message=%s", email, code, message)
        return VerifyResponse(
            email=email,
            code=str(code) if code is not None else None,
            message=str(message) if message is not None else None,
            raw=body,
        )


async def verify_email(email: str, gate: Optional[CredentialGate] = None) -> VerifyResponse:
    """Verify one address with a throwaway session."""
    return await MailTesterClient(gate).verify(email)
