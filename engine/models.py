"""Data models for the contact email enricher."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class StatusCode(str, Enum):
    """Terminal status of a contact."""
    valid = "valid"
    catchall_default = "catchall_default"
    not_found_valid_emails = "not_found_valid_emails"
    error = "error"
    # Assigned at ingestion, never by the scheduler
    skipped_missing_fields = "skipped_missing_fields"


TERMINAL_STATUSES = (
    StatusCode.valid,
    StatusCode.catchall_default,
    StatusCode.not_found_valid_emails,
    StatusCode.error,
)


class Contact(BaseModel):
    """A person to enrich. Accepts both snake_case and camelCase keys."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    domain: str = ""
    row_id: Optional[int] = Field(default=None, alias="rowId")

    def to_payload(self) -> dict:
        payload = {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "domain": self.domain,
        }
        if self.row_id is not None:
            payload["rowId"] = self.row_id
        return payload


class VerifyResponse(BaseModel):
    """One MailTester round trip. `error` is set on transport failures."""
    email: str = ""
    code: Optional[str] = None
    message: Optional[str] = None
    raw: Any = None
    error: Optional[str] = None


class CandidateOutcome(BaseModel):
    """Append-only record of one verification attempt."""
    model_config = ConfigDict(frozen=True)

    email: str
    code: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None


class CredentialLease(BaseModel):
    """The current MailTester key plus the provider's pacing hints."""
    model_config = ConfigDict(frozen=True)

    key: str
    avg_request_interval_ms: Optional[float] = None
    next_request_allowed_at: Optional[str] = None
    raw: dict = Field(default_factory=dict)


class ContactResult(BaseModel):
    """Terminal result for one contact."""
    contact: Contact
    best_email: Optional[str] = None
    status: StatusCode
    details: dict = Field(default_factory=dict)
    results_per_combo: list[CandidateOutcome] = Field(default_factory=list)
    position: Optional[int] = None      # index in the batch handed to the scheduler

    @property
    def message_summary(self) -> str:
        return self.details.get("message") or self.details.get("reason") or ""

    def to_payload(self) -> dict:
        """Shape used by callbacks, the HTTP API and job metadata."""
        return {
            "contact": self.contact.to_payload(),
            "bestEmail": self.best_email,
            "status": self.status.value,
            "details": dict(self.details),
            "resultsPerCombo": [o.model_dump() for o in self.results_per_combo],
        }


class ProgressSnapshot(BaseModel):
    """Immutable view of a run's progress."""
    model_config = ConfigDict(frozen=True)

    total_contacts: int = 0
    processed_contacts: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)
    skipped_rows: int = 0

    def to_payload(self) -> dict:
        return {
            "totalContacts": self.total_contacts,
            "processedContacts": self.processed_contacts,
            "statusCounts": dict(self.status_counts),
            "skippedRows": self.skipped_rows,
        }
