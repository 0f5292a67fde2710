from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, NamedTuple, Optional

from ..histogram import Histogram
from ..models import AlignmentRecord
from ..utils import safe_ratio
from .base import Facet, FacetKind

logger = logging.getLogger(__name__)

_MAX_MAPQ = 255


class _MateSummary(NamedTuple):
    reference_id: int
    reference_start: int
    mate_reference_id: int
    mate_reference_start: int
    cigar: str
    mate_cigar: Optional[str]


class GeneralMetricsFacet(Facet):
    """Flag counts, MAPQ distribution and mate consistency checks.

    Mate checks pair up primary reads of the same template that arrive within
    ``mate_window`` reads of each other; everything else is reported as
    unresolved.
    """

    kind = FacetKind.GENERAL

    def __init__(self, *, mate_window: int = 100_000) -> None:
        super().__init__()
        self.mate_window = int(mate_window)
        self.counts: Dict[str, int] = {
            "total": 0,
            "mapped": 0,
            "unmapped": 0,
            "paired": 0,
            "proper_pair": 0,
            "read1": 0,
            "read2": 0,
            "mate_unmapped": 0,
            "duplicate": 0,
            "qc_fail": 0,
            "primary": 0,
            "secondary": 0,
            "supplementary": 0,
        }
        self.mates: Dict[str, int] = {
            "pairs_checked": 0,
            "mate_reference_mismatches": 0,
            "mate_position_mismatches": 0,
            "mate_cigar_mismatches": 0,
            "mates_on_different_reference": 0,
            "mates_unresolved": 0,
        }
        self.mapq = Histogram(_MAX_MAPQ)
        self._pending: "OrderedDict[str, _MateSummary]" = OrderedDict()

    def accumulate(self, record: AlignmentRecord) -> bool:
        c = self.counts
        c["total"] += 1

        # unmapped records keep the MAPQ they carry, normally 0
        self.mapq.add(record.mapping_quality)
        if record.is_unmapped:
            c["unmapped"] += 1
        else:
            c["mapped"] += 1

        if record.is_duplicate:
            c["duplicate"] += 1
        if record.is_qc_fail:
            c["qc_fail"] += 1

        if record.is_secondary:
            c["secondary"] += 1
        elif record.is_supplementary:
            c["supplementary"] += 1
        else:
            c["primary"] += 1

        if record.is_paired:
            c["paired"] += 1
            if record.is_proper_pair:
                c["proper_pair"] += 1
            if record.is_read1:
                c["read1"] += 1
            if record.is_read2:
                c["read2"] += 1
            if record.is_mate_unmapped:
                c["mate_unmapped"] += 1
            self._check_mate(record)

        return True

    def _check_mate(self, record: AlignmentRecord) -> None:
        if self.mate_window <= 0 or not record.is_primary:
            return
        if record.is_unmapped or record.is_mate_unmapped:
            return

        summary = _MateSummary(
            reference_id=record.reference_id,
            reference_start=record.reference_start,
            mate_reference_id=record.mate_reference_id,
            mate_reference_start=record.mate_reference_start,
            cigar=record.cigar_string,
            mate_cigar=record.mate_cigar,
        )
        mate = self._pending.pop(record.name, None)
        if mate is None:
            self._pending[record.name] = summary
            if len(self._pending) > self.mate_window:
                self._pending.popitem(last=False)
                self.mates["mates_unresolved"] += 1
            return

        m = self.mates
        m["pairs_checked"] += 1
        if mate.reference_id != summary.reference_id:
            m["mates_on_different_reference"] += 1
        for this, other in ((summary, mate), (mate, summary)):
            if this.mate_reference_id != other.reference_id:
                m["mate_reference_mismatches"] += 1
            if this.mate_reference_start != other.reference_start:
                m["mate_position_mismatches"] += 1
            if this.mate_cigar is not None and this.mate_cigar != other.cigar:
                m["mate_cigar_mismatches"] += 1

    def result_data(self) -> Dict[str, Any]:
        self.mates["mates_unresolved"] += len(self._pending)
        self._pending.clear()

        c = self.counts
        total = c["total"]
        ratios = {
            "mapped_fraction": safe_ratio(c["mapped"], total),
            "unmapped_fraction": safe_ratio(c["unmapped"], total),
            "duplicate_fraction": safe_ratio(c["duplicate"], total),
            "qc_fail_fraction": safe_ratio(c["qc_fail"], total),
            "secondary_fraction": safe_ratio(c["secondary"], total),
            "supplementary_fraction": safe_ratio(c["supplementary"], total),
            "proper_pair_fraction": safe_ratio(c["proper_pair"], c["paired"]),
        }
        return {
            "counts": dict(c),
            "ratios": ratios,
            "mates": dict(self.mates),
            "mapq": self.mapq.summary(),
        }
