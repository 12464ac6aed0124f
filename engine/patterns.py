"""Candidate email generation: (first_name, last_name, domain) -> ordered addresses.

The order is part of the contract: index 2 is always the first-name-only
pattern when both names are present, and the catch-all fallback picks it.
"""

import re
import unicodedata
from typing import Callable, Optional

from .models import Contact

PATTERNS: list[tuple[str, Callable[[str, str], str]]] = [
    ("first.last",  lambda f, l: f"{f}.{l}"),
    ("firstlast",   lambda f, l: f"{f}{l}"),
    ("first",       lambda f, l: f),
    ("flast",       lambda f, l: f"{f[0]}{l}"),
    ("f.last",      lambda f, l: f"{f[0]}.{l}"),
    ("first_last",  lambda f, l: f"{f}_{l}"),
    ("firstl",      lambda f, l: f"{f}{l[0]}"),
    ("lastf",       lambda f, l: f"{l}{f[0]}"),
    ("last.first",  lambda f, l: f"{l}.{f}"),
    ("last",        lambda f, l: l),
]

# Patterns that only need one name part
_FIRST_ONLY = {"first"}
_LAST_ONLY = {"last"}

_NON_LOCAL = re.compile(r"[^a-z0-9]")


def _local_token(name: Optional[str]) -> str:
    """Lowercase, ASCII-fold and strip everything but [a-z0-9]."""
    if not name:
        return ""
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    return _NON_LOCAL.sub("", folded.lower())


def _clean_domain(domain: Optional[str]) -> str:
    return (domain or "").strip().lower().lstrip("@").rstrip(".")


def generate_candidates(first_name: str, last_name: str, domain: str) -> list[tuple[str, str]]:
    """Return (pattern_name, email) pairs in pattern order, without duplicates."""
    first = _local_token(first_name)
    last = _local_token(last_name)
    domain = _clean_domain(domain)
    if not domain or not (first or last):
        return []

    seen: set[str] = set()
    candidates: list[tuple[str, str]] = []
    for pattern_name, fn in PATTERNS:
        if not first and pattern_name not in _LAST_ONLY:
            continue
        if not last and pattern_name not in _FIRST_ONLY:
            continue
        email = f"{fn(first, last)}@{domain}"
        if email not in seen:
            seen.add(email)
            candidates.append((pattern_name, email))
    return candidates


def generate_patterns(contact: Contact) -> list[str]:
    """Candidate addresses for a contact, most likely first."""
    return [email for _, email in generate_candidates(
        contact.first_name, contact.last_name, contact.domain
    )]
