from __future__ import annotations

import enum
import logging
from typing import Any, Dict, Optional, Tuple

from ..errors import MalformedAlignment
from ..models import AlignmentRecord, FacetResult

logger = logging.getLogger(__name__)


class FacetKind(str, enum.Enum):
    """The closed set of facets the engine knows how to run."""

    GENERAL = "general"
    GC_CONTENT = "gc_content"
    TEMPLATE_LENGTH = "template_length"
    QUALITY_SCORES = "quality_scores"
    GENOMIC_FEATURES = "genomic_features"
    COVERAGE = "coverage"
    EDITS = "edits"

    @property
    def passes(self) -> Tuple[int, ...]:
        """Pass numbers this facet participates in."""
        if self in (FacetKind.COVERAGE, FacetKind.EDITS):
            return (1, 2)
        return (1,)

    @property
    def final_pass(self) -> int:
        return max(self.passes)

    @classmethod
    def parse(cls, name: str | "FacetKind") -> "FacetKind":
        if isinstance(name, FacetKind):
            return name
        key = str(name).strip().lower().replace("-", "_")
        for kind in cls:
            if kind.value == key:
                return kind
        raise ValueError(f"Unknown facet: {name!r}. Choose from {[k.value for k in cls]}")


class Facet:
    """Stateful accumulator for one quality dimension.

    Subclasses implement :meth:`accumulate` (return True when the record was
    taken into account, False when it is out of scope for this facet, or raise
    ``MalformedAlignment`` to have it skipped) and :meth:`result_data`.
    """

    kind: FacetKind

    def __init__(self) -> None:
        self.considered = 0
        self.skipped = 0
        self._result: Optional[FacetResult] = None

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def passes(self) -> Tuple[int, ...]:
        return self.kind.passes

    @property
    def finalized(self) -> bool:
        return self._result is not None

    def process(self, record: AlignmentRecord) -> None:
        if self._result is not None:
            raise RuntimeError(f"Facet {self.name} was already finalized")
        if self.accumulate(record):
            self.considered += 1

    def mark_skipped(self, err: MalformedAlignment) -> None:
        self.skipped += 1
        logger.debug("[%s] skipping record: %s", self.name, err)

    @property
    def skipped_fraction(self) -> Optional[float]:
        seen = self.considered + self.skipped
        if seen == 0:
            return None
        return self.skipped / seen

    def accumulate(self, record: AlignmentRecord) -> bool:
        raise NotImplementedError

    def result_data(self) -> Dict[str, Any]:
        raise NotImplementedError

    def finalize(self) -> FacetResult:
        if self._result is None:
            data = self.result_data()
            data["records_considered"] = int(self.considered)
            data["records_skipped"] = int(self.skipped)
            self._result = FacetResult(name=self.name, kind=self.kind.value, data=data)
        return self._result
