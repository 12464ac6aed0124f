"""Interpretation of free-text MailTester responses.

MailTester reports whole-domain problems (no MX records) through the same
code/message fields it uses for single addresses, so the scheduler needs a
loose textual check to tell them apart.
"""

from collections.abc import Mapping
from typing import Any, Optional

from .models import StatusCode, TERMINAL_STATUSES, VerifyResponse

OK_CODE = "ok"
CATCH_ALL_MESSAGE = "Catch-All"

_NEGATION_MARKERS = ("no ", "not ", "missing", "without")

_STATUS_BUCKETS = frozenset(s.value for s in TERMINAL_STATUSES)


def _contains_no_mx_signal(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    normalized = value.lower()
    if "mx" not in normalized:
        return False
    return any(marker in normalized for marker in _NEGATION_MARKERS)


def signals_missing_mx(response: Optional[VerifyResponse]) -> bool:
    """True when any response field says the domain has no usable MX records.

    Checks code, message, raw.code, raw.message, raw.reason and error.
    """
    if response is None:
        return False
    raw = response.raw if isinstance(response.raw, Mapping) else {}
    fields = (
        response.code,
        response.message,
        raw.get("code"),
        raw.get("message"),
        raw.get("reason"),
        response.error,
    )
    return any(_contains_no_mx_signal(value) for value in fields)


def is_ok(response: Optional[VerifyResponse]) -> bool:
    return response is not None and response.code == OK_CODE


def is_catch_all_message(message: Optional[str]) -> bool:
    return message == CATCH_ALL_MESSAGE


def normalize_status_bucket(status) -> str:
    """Map a status to its progress bucket; unknown or empty -> 'other'."""
    if isinstance(status, StatusCode):
        status = status.value
    if not status:
        return "other"
    return status if status in _STATUS_BUCKETS else "other"
