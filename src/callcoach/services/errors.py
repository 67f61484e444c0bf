"""Error taxonomy for call intake, analysis and figures.

Intake-time errors are raised synchronously to the caller and no record is
created. Analysis-time errors are never raised to the caller; they surface
only as a ``failed`` call status.
"""

import re

CREDIT_EXHAUSTED_MESSAGE = (
    "AI scoring is unavailable: your API credit balance is too low. "
    "Add credits in Plans & Billing, or contact your administrator to raise the quota."
)

_CREDIT_PATTERN = re.compile(
    r"credit|balance|too low|payment|upgrade|quota|resource.?exhausted",
    re.IGNORECASE,
)
# Gemini reports malformed requests as 400, so only 402/429 mean credit
_CREDIT_STATUS_CODES = {402, 429}


class IntakeValidationError(Exception):
    """Missing or malformed input. The record is never created."""


class UnsupportedFileTypeError(IntakeValidationError):
    """Uploaded file is not a supported audio or transcript format."""


class AdmissionDeniedError(Exception):
    """Organization has exhausted its plan allowance for an action."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class OrganizationNotFoundError(Exception):
    """User has no organization to attribute a call to."""


class UpstreamFailure(Exception):
    """Transcription or scoring engine unreachable or errored."""


class TranscriptionError(UpstreamFailure):
    """Audio could not be transcribed."""


class ScoringEngineError(UpstreamFailure):
    """Scoring engine failed for a reason other than credit exhaustion."""


class CreditExhaustedError(ScoringEngineError):
    """Scoring engine rejected the call for insufficient credit / balance."""

    remediation = CREDIT_EXHAUSTED_MESSAGE


class SchemaDriftError(Exception):
    """Storage is missing a column the figures query expects."""


def is_credit_failure(message: str | None, status_code: int | None = None) -> bool:
    """True if an upstream failure looks like credit / balance exhaustion."""
    if status_code in _CREDIT_STATUS_CODES:
        return True
    return bool(message and _CREDIT_PATTERN.search(message))
