"""
Run Report: the single summary every pipeline run ends with.

The report is produced on success AND on failure. It always lists skipped
and flagged items by card id and reason so operators can audit data quality.

Response types:
- Success: Dataset written (and any previous dataset replaced)
- Failure: Nothing written; the previous dataset is untouched
"""

from enum import Enum

from pydantic import BaseModel, Field

from cardforge.models.failure import FailureKind, PipelineError


class RunOutcome(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    FAILURE = "failure"


class FailureDetail(BaseModel):
    """Detailed information about a fatal failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="Operator-facing explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the operator",
    )

    @classmethod
    def from_error(cls, error: PipelineError) -> "FailureDetail":
        return cls(
            kind=error.kind,
            message=error.message,
            detail=error.detail,
            suggestion=error.suggestion,
        )


class SkippedItem(BaseModel):
    """A card whose artwork or data was skipped or flagged."""

    card_id: int | None
    reason: str


class RunReport(BaseModel):
    """
    Final report of a pipeline run.

    Counts are filled in as far as the run got; a run that failed during
    compaction still reports how many cards were normalized.
    """

    outcome: RunOutcome = RunOutcome.FAILURE
    cards_processed: int = 0
    records_received: int = 0
    records_excluded: int = 0
    artwork_downloaded: int = 0
    artwork_cached: int = 0
    artwork_skipped: int = 0
    requests_issued: int = 0
    retries: int = 0
    skipped: list[SkippedItem] = Field(default_factory=list)
    diagnostics: list[SkippedItem] = Field(default_factory=list)
    output_path: str | None = None
    output_bytes: int | None = None
    checksum: str | None = None
    failure: FailureDetail | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == RunOutcome.SUCCESS

    def render(self) -> str:
        """Render a human-readable summary for standard error."""
        lines: list[str] = []
        if self.succeeded:
            lines.append(
                f"Dataset written to {self.output_path} "
                f"({self.cards_processed} cards, {self.output_bytes} bytes, "
                f"checksum {self.checksum})"
            )
        else:
            lines.append("Run FAILED, no dataset was written")
            if self.failure is not None:
                lines.append(f"  {self.failure.kind.value}: {self.failure.message}")
                if self.failure.detail:
                    lines.append(f"  detail: {self.failure.detail}")
                if self.failure.suggestion:
                    lines.append(f"  suggestion: {self.failure.suggestion}")

        lines.append(
            f"Records: {self.records_received} received, "
            f"{self.records_excluded} excluded, {self.cards_processed} cards"
        )
        lines.append(
            f"Artwork: {self.artwork_downloaded} downloaded, "
            f"{self.artwork_cached} cached, {self.artwork_skipped} skipped"
        )
        lines.append(f"Requests: {self.requests_issued} issued, {self.retries} retried")

        if self.skipped:
            lines.append(f"Skipped ({len(self.skipped)}):")
            lines.extend(f"  {item.card_id}: {item.reason}" for item in self.skipped)
        if self.diagnostics:
            lines.append(f"Diagnostics ({len(self.diagnostics)}):")
            lines.extend(f"  {item.card_id}: {item.reason}" for item in self.diagnostics)

        return "\n".join(lines)
