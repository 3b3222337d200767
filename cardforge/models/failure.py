"""
Failure Classification: Error Taxonomy for the Dataset Pipeline.

Every failure the pipeline can hit belongs to exactly one class:

- Transient: retried automatically, then downgraded to a per-item skip
- Permanent: surfaced immediately, per-item skip
- Schema: never raised; recorded as a Diagnostic on the affected card
- Fatal: aborts the run, cancels in-flight work, no output is replaced

INVARIANT: Only FatalError subclasses may terminate a run.
Component-local errors are absorbed and reported as diagnostics or skips.
"""

from dataclasses import dataclass
from enum import Enum


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Retryable
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"

    # Permanent, per item
    NOT_FOUND = "not_found"
    CLIENT_ERROR = "client_error"
    INVALID_REQUEST = "invalid_request"
    MALFORMED_RESPONSE = "malformed_response"
    DECODE_FAILED = "decode_failed"

    # Fatal
    AUTHENTICATION_FAILED = "authentication_failed"
    CATALOG_UNAVAILABLE = "catalog_unavailable"
    EMPTY_CATALOG = "empty_catalog"
    CHECKSUM_FAILED = "checksum_failed"
    COMPACTION_FAILED = "compaction_failed"
    INTERNAL_ERROR = "internal_error"

    # Consumer side
    INVALID_DATASET = "invalid_dataset"


class DiagnosticKind(str, Enum):
    """Classification of schema irregularities found during normalization."""

    MISSING_FIELD = "missing_field"
    UNEXPECTED_VALUE = "unexpected_value"
    UNKNOWN_VALUE = "unknown_value"
    EXCLUDED = "excluded"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """
    A note about an irregular field in a catalog record.

    Attributes:
        card_id: Canonical id of the affected card (None if it had no usable id)
        field: Name of the affected field
        kind: What was wrong with the field
        message: Human-readable description including the offending value
    """

    card_id: int | None
    field: str
    kind: DiagnosticKind
    message: str

    def __str__(self) -> str:
        subject = f"card {self.card_id}" if self.card_id is not None else "record"
        return f"{subject}: {self.field}: {self.message}"


class PipelineError(Exception):
    """
    Base class for known, explainable pipeline failures.

    Subclass this for errors where the pipeline knows exactly what went wrong.
    """

    fatal = False

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        super().__init__(message)


class TransientFetchError(PipelineError):
    """
    Raised when a request kept failing with retryable errors.

    The retry budget is already spent when this reaches the caller.
    """

    def __init__(self, url: str, kind: FailureKind, detail: str | None = None):
        self.url = url
        super().__init__(
            kind=kind,
            message=f"Request to {url} failed after retries",
            detail=detail,
        )


class PermanentFetchError(PipelineError):
    """Raised for failures that retrying cannot fix (404, malformed body)."""

    def __init__(self, url: str, kind: FailureKind, detail: str | None = None):
        self.url = url
        super().__init__(
            kind=kind,
            message=f"Request to {url} failed permanently",
            detail=detail,
        )


class ArtworkDecodeError(PipelineError):
    """Raised when downloaded artwork bytes cannot be decoded or re-encoded."""

    def __init__(self, url: str, detail: str | None = None):
        self.url = url
        super().__init__(
            kind=FailureKind.DECODE_FAILED,
            message=f"Could not decode artwork from {url}",
            detail=detail,
        )


class FatalError(PipelineError):
    """
    Base class for failures that abort the whole run.

    Raising one of these cancels all in-flight work and guarantees
    the previously written dataset is left untouched.
    """

    fatal = True


class AuthenticationError(FatalError):
    """Raised when the upstream API rejects our credentials (401/403)."""

    def __init__(self, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(
            kind=FailureKind.AUTHENTICATION_FAILED,
            message=f"Upstream rejected request to {url}",
            detail=f"HTTP {status_code}",
            suggestion="Check the user agent and any API credentials.",
        )


class CatalogUnavailableError(FatalError):
    """Raised when the catalog could not be fetched and no local copy exists."""

    def __init__(self, cause: PipelineError):
        self.cause = cause
        super().__init__(
            kind=FailureKind.CATALOG_UNAVAILABLE,
            message="Card catalog could not be downloaded",
            detail=f"{cause.message} ({cause.detail})" if cause.detail else cause.message,
            suggestion="Retry later; the upstream API may be down.",
        )


class EmptyCatalogError(FatalError):
    """Raised when the catalog response holds no records."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            kind=FailureKind.EMPTY_CATALOG,
            message=f"Catalog response from {url} contained no cards",
        )


class CompactionError(FatalError):
    """Raised when the card table cannot be compacted."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(kind=FailureKind.COMPACTION_FAILED, message=message, detail=detail)


class ChecksumError(FatalError):
    """Raised when the payload checksum cannot be computed."""

    def __init__(self, detail: str | None = None):
        super().__init__(
            kind=FailureKind.CHECKSUM_FAILED,
            message="Dataset checksum computation failed",
            detail=detail,
        )


class DatasetFormatError(PipelineError):
    """
    Raised by the consumer-side decoder for blobs it must refuse to load.

    Covers wrong magic bytes, unsupported format versions, checksum
    mismatches and truncated payloads.
    """

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(kind=FailureKind.INVALID_DATASET, message=message, detail=detail)
