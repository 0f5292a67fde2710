from __future__ import annotations

from typing import Any, Dict

from ..histogram import Histogram
from ..models import AlignmentRecord
from ..utils import safe_pct
from .base import Facet, FacetKind


class TemplateLengthFacet(Facet):
    """Distribution of |TLEN| up to ``max_length``; longer templates go to overflow."""

    kind = FacetKind.TEMPLATE_LENGTH

    def __init__(self, *, max_length: int = 1024) -> None:
        super().__init__()
        self.histogram = Histogram(max_length)

    def accumulate(self, record: AlignmentRecord) -> bool:
        self.histogram.add(abs(record.template_length))
        return True

    def result_data(self) -> Dict[str, Any]:
        total = self.histogram.total
        return {
            "max_template_length": self.histogram.max_value,
            "histogram": self.histogram.summary(),
            "unknown_pct": safe_pct(self.histogram.get(0), total),
            "out_of_range_pct": safe_pct(self.histogram.overflow, total),
        }
