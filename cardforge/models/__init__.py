from cardforge.models.card import (
    STAT_UNKNOWN,
    STAT_VARIABLE,
    UNKNOWN_TEXT,
    ArtworkAsset,
    Card,
    CardCategory,
    CardLimit,
    CatalogRecord,
    SetMembership,
    SkippedArtwork,
)
from cardforge.models.failure import (
    ArtworkDecodeError,
    AuthenticationError,
    CatalogUnavailableError,
    ChecksumError,
    CompactionError,
    DatasetFormatError,
    Diagnostic,
    DiagnosticKind,
    EmptyCatalogError,
    FailureKind,
    FatalError,
    PermanentFetchError,
    PipelineError,
    TransientFetchError,
)
from cardforge.models.report import FailureDetail, RunOutcome, RunReport, SkippedItem

__all__ = [
    "STAT_UNKNOWN",
    "STAT_VARIABLE",
    "UNKNOWN_TEXT",
    "ArtworkAsset",
    "ArtworkDecodeError",
    "AuthenticationError",
    "Card",
    "CardCategory",
    "CardLimit",
    "CatalogRecord",
    "CatalogUnavailableError",
    "ChecksumError",
    "CompactionError",
    "DatasetFormatError",
    "Diagnostic",
    "DiagnosticKind",
    "EmptyCatalogError",
    "FailureDetail",
    "FailureKind",
    "FatalError",
    "PermanentFetchError",
    "PipelineError",
    "RunOutcome",
    "RunReport",
    "SetMembership",
    "SkippedArtwork",
    "SkippedItem",
    "TransientFetchError",
]
