"""
Custom exception hierarchy for claim auditing.

Each exception type maps to one category of failure in the extraction
pipeline, so callers can degrade a single document instead of the whole job.
Missing rule inputs are NOT exceptions: rules report INSUFFICIENT_DATA.
"""

from __future__ import annotations


class ClaimAuditError(Exception):
    """Base exception for all claim auditing failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UpstreamCallError(ClaimAuditError):
    """The OCR or text-completion capability failed (network, auth, rate limit)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("UPSTREAM_CALL_FAILED", message, details)


class MalformedResponseError(ClaimAuditError):
    """No JSON object could be located in the model's response text."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("MALFORMED_RESPONSE", message, details)


class SchemaViolationError(ClaimAuditError):
    """The response parsed as JSON but does not fit the extraction schema."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("SCHEMA_VIOLATION", message, details)


class PreprocessingError(ClaimAuditError):
    """The PDF could not be turned into page-segmented text."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PREPROCESSING_FAILED", message, details)


class UnknownRuleError(ClaimAuditError):
    """A rule name outside the fixed rule set was referenced."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("UNKNOWN_RULE", message, details)


class JobStateError(ClaimAuditError):
    """An operation was attempted in the wrong job lifecycle state."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INVALID_JOB_STATE", message, details)


class JobNotFoundError(ClaimAuditError):
    """No job exists with the requested id."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("JOB_NOT_FOUND", message, details)
