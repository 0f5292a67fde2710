from __future__ import annotations

from typing import Any, Dict, Sequence

from ..features import GenomicFeatureIndex
from ..models import AlignmentRecord, ReferenceSequence
from .base import Facet, FacetKind


class GenomicFeaturesFacet(Facet):
    """Counts mapped records overlapping each annotated feature category.

    Overlap is not exclusive: a record touching an exon of a gene increments
    both ``exon`` and ``gene``. Each category counts at most once per record.
    """

    kind = FacetKind.GENOMIC_FEATURES

    def __init__(self, index: GenomicFeatureIndex, references: Sequence[ReferenceSequence]) -> None:
        super().__init__()
        self.index = index
        self.ref_names = tuple(r.name for r in references)
        self.counts: Dict[str, int] = {c: 0 for c in index.categories}
        self.no_overlap = 0
        self.unindexed_reference = 0
        self.unmapped_skipped = 0

    def accumulate(self, record: AlignmentRecord) -> bool:
        if record.is_unmapped:
            self.unmapped_skipped += 1
            return False

        name = self.ref_names[record.reference_id] if record.reference_id < len(self.ref_names) else None
        if name is None or name not in self.index:
            self.unindexed_reference += 1
            self.no_overlap += 1
            return True

        start = record.reference_start
        end = max(record.reference_end, start + 1)
        categories = self.index.overlapping_categories(name, start, end)
        if not categories:
            self.no_overlap += 1
        for cat in categories:
            self.counts[cat] = self.counts.get(cat, 0) + 1
        return True

    def result_data(self) -> Dict[str, Any]:
        return {
            "categories": list(self.counts),
            "counts": dict(self.counts),
            "mapped_records_considered": self.considered,
            "no_overlap": self.no_overlap,
            "unindexed_reference": self.unindexed_reference,
            "unmapped_skipped": self.unmapped_skipped,
        }
