"""Exception hierarchy for the enricher.

Per-candidate verifier failures are not exceptions: they are recorded as
CandidateOutcome.error and the contact moves on. Only the conditions below
escape a run.
"""


class EnricherError(Exception):
    """Base class for errors raised by the enricher."""


class CredentialFetchError(EnricherError):
    """The MailTester key could not be obtained from the key provider.

    Fatal for the whole run: without a key no candidate can be verified.
    """

    def __init__(self, message: str):
        super().__init__(f"Failed to retrieve MailTester key: {message}")


class UploadValidationError(EnricherError):
    """An uploaded contact file was rejected before processing started."""
