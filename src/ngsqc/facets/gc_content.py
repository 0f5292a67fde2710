from __future__ import annotations

from typing import Any, Dict, Optional

from ..histogram import Histogram
from ..models import AlignmentRecord
from .base import Facet, FacetKind


def gc_bucket(sequence: str, resolution: int = 100) -> Optional[int]:
    """Bucket of the G/C fraction among unambiguous bases, or None if there are none.

    The bucket is ``floor(fraction * resolution)``, so with the default resolution
    "GGCC" is 100 and "AATT" is 0.
    """
    s = sequence.upper()
    gc = s.count("G") + s.count("C")
    unambiguous = gc + s.count("A") + s.count("T")
    if unambiguous == 0:
        return None
    return gc * resolution // unambiguous


class GCContentFacet(Facet):
    kind = FacetKind.GC_CONTENT

    def __init__(self, *, resolution: int = 100) -> None:
        super().__init__()
        self.resolution = int(resolution)
        self.histogram = Histogram(self.resolution)
        self.ambiguous_only = 0
        self.missing_sequence = 0

    def accumulate(self, record: AlignmentRecord) -> bool:
        if not record.sequence:
            self.missing_sequence += 1
            return False
        bucket = gc_bucket(record.sequence, self.resolution)
        if bucket is None:
            self.ambiguous_only += 1
            return False
        self.histogram.add(bucket)
        return True

    def result_data(self) -> Dict[str, Any]:
        summary = self.histogram.summary()
        scale = 100.0 / self.resolution
        mean = summary["mean"]
        median = summary["median"]
        return {
            "resolution": self.resolution,
            "histogram": summary,
            "mean_gc_pct": None if mean is None else mean * scale,
            "median_gc_pct": None if median is None else median * scale,
            "ambiguous_only": self.ambiguous_only,
            "missing_sequence": self.missing_sequence,
        }
