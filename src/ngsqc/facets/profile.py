"""First-pass read profile and the context handed to second-pass facets."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple

from ..histogram import Histogram
from ..models import AlignmentRecord, FacetResult, ReferenceSequence

_READ_LENGTH_BINS = 100_000


@dataclass(frozen=True)
class FirstPassContext:
    """Aggregate knowledge available only once pass 1 is complete."""

    references: Tuple[ReferenceSequence, ...]
    total_reference_length: int
    records_seen: int
    mapped_per_reference: Mapping[int, int]
    max_read_length: int
    read_length: Mapping[str, object]
    results: Mapping[str, FacetResult]

    def reference(self, ref_id: int) -> Optional[ReferenceSequence]:
        if 0 <= ref_id < len(self.references):
            return self.references[ref_id]
        return None


class ReadProfile:
    """Pass-1 accumulator feeding the coverage and edits facets."""

    def __init__(self, references: Sequence[ReferenceSequence]) -> None:
        self.references = tuple(references)
        self.records_seen = 0
        self.mapped_per_reference: Counter = Counter()
        self.read_lengths = Histogram(_READ_LENGTH_BINS)
        self.max_read_length = 0

    def process(self, record: AlignmentRecord) -> None:
        self.records_seen += 1
        if not record.is_unmapped and not record.is_secondary:
            self.mapped_per_reference[record.reference_id] += 1

        if record.sequence:
            length = len(record.sequence)
        else:
            length = record.query_length_from_cigar
        if length > 0:
            self.read_lengths.add(length)
            self.max_read_length = max(self.max_read_length, length)

    def context(self, results: Mapping[str, FacetResult]) -> FirstPassContext:
        summary = self.read_lengths.summary()
        summary.pop("counts")
        return FirstPassContext(
            references=self.references,
            total_reference_length=sum(r.length for r in self.references),
            records_seen=self.records_seen,
            mapped_per_reference=MappingProxyType(dict(sorted(self.mapped_per_reference.items()))),
            max_read_length=self.max_read_length,
            read_length=MappingProxyType(summary),
            results=MappingProxyType(dict(results)),
        )
