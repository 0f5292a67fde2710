from __future__ import annotations

from typing import Any, Dict

import numpy as np

from ..histogram import Histogram
from ..models import AlignmentRecord
from .base import Facet, FacetKind

# Highest Phred score representable in SAM (ASCII '~').
MAX_PHRED = 93


class QualityScoreFacet(Facet):
    """Per-base and per-record mean base-quality distributions."""

    kind = FacetKind.QUALITY_SCORES

    def __init__(self) -> None:
        super().__init__()
        self.per_base = Histogram(MAX_PHRED)
        self.per_record_mean = Histogram(MAX_PHRED)
        self.missing_qualities = 0

    def accumulate(self, record: AlignmentRecord) -> bool:
        quals = record.qualities
        if not quals:
            self.missing_qualities += 1
            return False
        arr = np.asarray(quals, dtype=np.int64)
        self.per_base.add_many(arr)
        self.per_record_mean.add(int(arr.mean()))
        return True

    def result_data(self) -> Dict[str, Any]:
        return {
            "per_base": self.per_base.summary(),
            "per_record_mean": self.per_record_mean.summary(),
            "missing_qualities": self.missing_qualities,
        }
