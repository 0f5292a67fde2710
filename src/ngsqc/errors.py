"""Exception hierarchy for the QC engine.

Record-local problems (``MalformedAlignment``) are absorbed by the engine and
counted per facet. Everything else aborts the run and reaches the caller with
enough context (facet, pass, record offset) to diagnose it without re-running.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence


class QCError(RuntimeError):
    """Base class for all engine errors."""

    def __init__(
        self,
        message: str,
        *,
        facet: Optional[str] = None,
        pass_number: Optional[int] = None,
        record_offset: Optional[int] = None,
    ) -> None:
        self.message = message
        self.facet = facet
        self.pass_number = pass_number
        self.record_offset = record_offset
        super().__init__(self._render())

    def _render(self) -> str:
        ctx = []
        if self.facet is not None:
            ctx.append(f"facet={self.facet}")
        if self.pass_number is not None:
            ctx.append(f"pass={self.pass_number}")
        if self.record_offset is not None:
            ctx.append(f"record={self.record_offset}")
        if not ctx:
            return self.message
        return f"{self.message} ({', '.join(ctx)})"


class SourceNotReplayable(QCError):
    """A multi-pass run was requested against a source that cannot be rewound."""


class SourceExhausted(QCError):
    """The record source could not open a (further) pass."""


class MalformedAlignment(QCError):
    """One record failed facet-specific validation; the facet skips it."""


class SkippedRecordsExceeded(QCError):
    """A facet skipped a larger fraction of records than the caller allows."""

    def __init__(self, message: str, *, skipped: int, considered: int, threshold: float, **kwargs: Any) -> None:
        self.skipped = int(skipped)
        self.considered = int(considered)
        self.threshold = float(threshold)
        super().__init__(message, **kwargs)


class IncompleteReport(QCError):
    """A requested facet never produced a finalized result."""

    def __init__(self, message: str, *, missing: Sequence[str], **kwargs: Any) -> None:
        self.missing = tuple(missing)
        super().__init__(message, **kwargs)


class IndexBuildFailure(QCError):
    """The genomic annotation yielded intervals that cannot be indexed."""


class QCCancelled(QCError):
    """The run was cancelled cooperatively.

    ``completed`` holds the facet results that were already finalized when the
    cancellation was observed; they are complete and safe to use.
    """

    def __init__(self, message: str, *, completed: Mapping[str, Any], **kwargs: Any) -> None:
        self.completed = completed
        super().__init__(message, **kwargs)
