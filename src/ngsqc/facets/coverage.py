"""Binned depth of coverage (second pass).

Depth is summed per fixed-width bin rather than per base. Bin arrays are only
allocated for references that had mapped records in the first pass. Sums use
unsigned integers that saturate at the dtype maximum instead of wrapping.
Each reference also reports the distribution of its rounded bin depths, with
bins deeper than ``max_depth`` counted in the overflow bucket.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from ..errors import MalformedAlignment
from ..histogram import Histogram
from ..models import ALIGNED_OPS, CONSUMES_REFERENCE, AlignmentRecord
from ..utils import safe_ratio
from .base import Facet, FacetKind
from .profile import FirstPassContext

logger = logging.getLogger(__name__)


def _n_bins(length: int, width: int) -> int:
    return (length + width - 1) // width


class CoverageFacet(Facet):
    kind = FacetKind.COVERAGE

    def __init__(
        self,
        context: FirstPassContext,
        *,
        bin_width: int = 1000,
        max_depth: int = 1000,
        dtype: Any = np.uint64,
    ) -> None:
        super().__init__()
        if bin_width < 1:
            raise ValueError("bin_width must be >= 1")
        if max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        self.context = context
        self.bin_width = int(bin_width)
        self.max_depth = int(max_depth)
        self.dtype = np.dtype(dtype)
        self._max = np.uint64(np.iinfo(self.dtype).max)
        self.bins: Dict[int, np.ndarray] = {}
        for ref_id, n_mapped in context.mapped_per_reference.items():
            ref = context.reference(ref_id)
            if ref is not None and n_mapped > 0 and ref.length > 0:
                self.bins[ref_id] = np.zeros(_n_bins(ref.length, self.bin_width), dtype=self.dtype)
        self.unmapped_skipped = 0
        self.secondary_skipped = 0
        self.saturated_bins = 0
        logger.debug(
            "Coverage: preallocated bins for %d of %d references (bin width %d)",
            len(self.bins),
            len(context.references),
            self.bin_width,
        )

    def _bins_for(self, ref_id: int, length: int) -> np.ndarray:
        arr = self.bins.get(ref_id)
        if arr is None:
            arr = np.zeros(_n_bins(length, self.bin_width), dtype=self.dtype)
            self.bins[ref_id] = arr
        return arr

    def _add_span(self, arr: np.ndarray, start: int, end: int) -> None:
        w = self.bin_width
        first = start // w
        last = (end - 1) // w
        amounts = np.full(last - first + 1, w, dtype=np.uint64)
        amounts[0] = min(end, (first + 1) * w) - start
        if last > first:
            amounts[-1] = end - last * w
        seg = arr[first : last + 1]
        room = self._max - seg.astype(np.uint64)
        add = np.minimum(amounts, room)
        self.saturated_bins += int(np.count_nonzero(amounts > room))
        seg += add.astype(self.dtype)

    def accumulate(self, record: AlignmentRecord) -> bool:
        if record.is_unmapped:
            self.unmapped_skipped += 1
            return False
        if record.is_secondary:
            self.secondary_skipped += 1
            return False

        ref = self.context.reference(record.reference_id)
        if ref is None:
            raise MalformedAlignment(
                f"Record {record.name} references unknown sequence id {record.reference_id}",
                facet=self.name,
            )
        if not record.cigar:
            raise MalformedAlignment(f"Mapped record {record.name} has no CIGAR", facet=self.name)
        end = record.reference_end
        if end > ref.length:
            raise MalformedAlignment(
                f"Record {record.name} ends at {end}, past the end of {ref.name} ({ref.length})",
                facet=self.name,
            )

        arr = self._bins_for(ref.id, ref.length)
        pos = record.reference_start
        for op, length in record.cigar:
            if op in ALIGNED_OPS:
                if length > 0:
                    self._add_span(arr, pos, pos + length)
                pos += length
            elif op in CONSUMES_REFERENCE:
                pos += length
        return True

    def _bin_means(self, arr: np.ndarray, length: int) -> np.ndarray:
        widths = np.full(arr.size, self.bin_width, dtype=np.float64)
        widths[-1] = length - (arr.size - 1) * self.bin_width
        return arr.astype(np.float64) / widths

    def result_data(self) -> Dict[str, Any]:
        per_reference: Dict[str, Any] = {}
        all_means: List[np.ndarray] = []
        total_depth = 0
        bins_over_max_depth = 0

        for ref in self.context.references:
            if ref.length == 0:
                continue
            arr = self.bins.get(ref.id)
            if arr is None:
                arr = np.zeros(_n_bins(ref.length, self.bin_width), dtype=self.dtype)
            means = self._bin_means(arr, ref.length)
            all_means.append(means)
            depth = int(arr.sum(dtype=np.uint64))
            total_depth += depth
            mean = depth / ref.length
            median = float(np.median(means))
            distribution = Histogram(self.max_depth)
            distribution.add_many(np.rint(means).astype(np.int64))
            bins_over_max_depth += distribution.overflow
            per_reference[ref.name] = {
                "length": ref.length,
                "mean_coverage": mean,
                "median_coverage": median,
                "median_over_mean_coverage": safe_ratio(median, mean),
                "bins": [[i * self.bin_width, float(m)] for i, m in enumerate(means)],
                "coverage_distribution": distribution.summary(),
            }

        median_all: Optional[float] = None
        if all_means:
            median_all = float(np.median(np.concatenate(all_means)))

        total_length = self.context.total_reference_length
        return {
            "bin_width": self.bin_width,
            "total_reference_length": total_length,
            "covered_bases": total_depth,
            "mean_coverage": safe_ratio(total_depth, total_length),
            "median_coverage": median_all,
            "per_reference": per_reference,
            "read_length": dict(self.context.read_length),
            "max_depth": self.max_depth,
            "bins_over_max_depth": bins_over_max_depth,
            "saturated_bins": self.saturated_bins,
            "unmapped_skipped": self.unmapped_skipped,
            "secondary_skipped": self.secondary_skipped,
        }
