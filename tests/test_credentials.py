import asyncio

import pytest

from engine import credentials
from engine.credentials import CredentialGate, extract_key, lease_from_payload, wait_duration_ms
from engine.errors import CredentialFetchError


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _scripted_fetch(*responses):
    remaining = list(responses)
    calls = []

    async def fetch():
        calls.append(len(calls))
        response = remaining.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    return fetch, calls


def test_wait_then_key() -> None:
    clock = FakeClock()
    fetch, calls = _scripted_fetch({"status": "wait", "waitForMs": 500}, {"key": "abc"})
    gate = CredentialGate(fetch, sleep_fn=clock.sleep, clock=clock)

    lease = asyncio.run(gate.acquire())

    assert lease.key == "abc"
    assert clock.sleeps == [0.5]
    assert sum(clock.sleeps) >= 0.5
    assert len(calls) == 2


def test_wait_field_without_status() -> None:
    clock = FakeClock()
    fetch, _ = _scripted_fetch({"retryAfterMs": "250"}, {"retryInMs": "bogus"}, {"id": "k-1"})
    gate = CredentialGate(fetch, sleep_fn=clock.sleep, clock=clock)

    lease = asyncio.run(gate.acquire())

    assert lease.key == "k-1"
    assert clock.sleeps == [0.25, 1.0]


def test_key_braces_and_whitespace_are_stripped() -> None:
    assert extract_key({"subscriptionId": " {abc-123} "}) == "abc-123"
    assert extract_key({"key": "plain"}) == "plain"
    assert extract_key({"id": 42}) == "42"
    assert extract_key({"key": ""}) is None
    assert extract_key({}) is None


def test_wait_duration_defaults() -> None:
    assert wait_duration_ms({"waitMs": 0}) == 1000.0
    assert wait_duration_ms({"waitMs": -5}) == 1000.0
    assert wait_duration_ms({"nextRequestAllowedInMs": 1200}) == 1200.0
    assert wait_duration_ms({"status": "wait"}) == 1000.0


def test_lease_carries_pacing_hints() -> None:
    lease = lease_from_payload(
        {"key": "abc", "avgRequestIntervalMs": 170, "nextRequestAllowedAt": "2026-01-01T00:00:00Z"},
        "abc",
    )

    assert lease.avg_request_interval_ms == 170.0
    assert lease.next_request_allowed_at == "2026-01-01T00:00:00Z"
    assert lease.raw["key"] == "abc"


def test_transport_failure_is_fatal() -> None:
    fetch, _ = _scripted_fetch(ConnectionError("connection refused"))
    gate = CredentialGate(fetch, sleep_fn=FakeClock().sleep)

    with pytest.raises(CredentialFetchError) as exc_info:
        asyncio.run(gate.acquire())

    assert str(exc_info.value) == "Failed to retrieve MailTester key: connection refused"
    assert gate.lease is None


def test_body_without_key_or_wait_is_fatal() -> None:
    fetch, _ = _scripted_fetch({"status": "ok"})
    gate = CredentialGate(fetch, sleep_fn=FakeClock().sleep)

    with pytest.raises(CredentialFetchError, match="missing subscription key"):
        asyncio.run(gate.acquire())


def test_non_mapping_body_is_fatal() -> None:
    fetch, _ = _scripted_fetch(["not", "a", "mapping"])
    gate = CredentialGate(fetch, sleep_fn=FakeClock().sleep)

    with pytest.raises(CredentialFetchError):
        asyncio.run(gate.acquire())


def test_lease_is_cached_and_concurrent_acquires_fetch_once() -> None:
    async def fetch():
        await asyncio.sleep(0)
        return {"key": "shared"}

    calls = []

    async def counting_fetch():
        calls.append(1)
        return await fetch()

    gate = CredentialGate(counting_fetch)

    async def run():
        leases = await asyncio.gather(*(gate.acquire() for _ in range(5)))
        again = await gate.acquire()
        return leases, again

    leases, again = asyncio.run(run())

    assert {lease.key for lease in leases} == {"shared"}
    assert again.key == "shared"
    assert len(calls) == 1


def test_invalidate_and_refresh_fetch_again() -> None:
    fetch, calls = _scripted_fetch({"key": "one"}, {"key": "two"}, {"key": "three"})
    gate = CredentialGate(fetch)

    async def run():
        first = await gate.acquire()
        gate.invalidate()
        second = await gate.acquire()
        third = await gate.refresh()
        return first, second, third

    first, second, third = asyncio.run(run())

    assert (first.key, second.key, third.key) == ("one", "two", "three")
    assert gate.lease.key == "three"
    assert len(calls) == 3


def test_throttle_spaces_releases() -> None:
    clock = FakeClock()
    gate = CredentialGate(lambda: None, sleep_fn=clock.sleep, clock=clock)

    async def run():
        await gate.throttle(100)
        clock.now += 0.03
        await gate.throttle(100)
        await gate.throttle(100)

    asyncio.run(run())

    assert clock.sleeps == [pytest.approx(0.07), pytest.approx(0.1)]


def test_throttle_without_delay_never_sleeps() -> None:
    clock = FakeClock()
    gate = CredentialGate(lambda: None, sleep_fn=clock.sleep, clock=clock)

    async def run():
        for _ in range(3):
            await gate.throttle(0)

    asyncio.run(run())

    assert clock.sleeps == []


def test_reset_drops_lease() -> None:
    fetch, calls = _scripted_fetch({"key": "one"}, {"key": "two"})
    gate = CredentialGate(fetch)

    assert asyncio.run(gate.acquire()).key == "one"
    gate.reset()
    assert gate.lease is None
    assert asyncio.run(gate.acquire()).key == "two"
    assert len(calls) == 2


def test_default_gate_is_process_wide() -> None:
    credentials.reset_gate()
    try:
        assert credentials.get_gate() is credentials.get_gate()
        first = credentials.get_gate()
        credentials.reset_gate()
        assert credentials.get_gate() is not first
    finally:
        credentials.reset_gate()


def test_failed_fetch_is_shared_with_queued_callers() -> None:
    calls = []

    async def fetch():
        calls.append(1)
        await asyncio.sleep(0)
        raise OSError("provider down")

    gate = CredentialGate(fetch)

    async def run():
        return await asyncio.gather(*(gate.acquire() for _ in range(25)), return_exceptions=True)

    outcomes = asyncio.run(run())

    assert len(calls) == 1
    assert all(isinstance(o, CredentialFetchError) for o in outcomes)

    # A later call, not queued behind the failure, tries the provider again.
    with pytest.raises(CredentialFetchError):
        asyncio.run(gate.acquire())
    assert len(calls) == 2


def test_gate_survives_separate_event_loops() -> None:
    async def fetch():
        await asyncio.sleep(0)
        return {"key": "abc"}

    gate = CredentialGate(fetch)

    async def contend():
        gate.invalidate()
        await asyncio.gather(*(gate.acquire() for _ in range(3)))
        await asyncio.gather(*(gate.throttle(1) for _ in range(3)))

    asyncio.run(contend())
    asyncio.run(contend())

    assert gate.lease.key == "abc"
