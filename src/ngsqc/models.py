from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Tuple

# SAM flag bits
FLAG_PAIRED = 0x1
FLAG_PROPER_PAIR = 0x2
FLAG_UNMAPPED = 0x4
FLAG_MATE_UNMAPPED = 0x8
FLAG_REVERSE = 0x10
FLAG_MATE_REVERSE = 0x20
FLAG_READ1 = 0x40
FLAG_READ2 = 0x80
FLAG_SECONDARY = 0x100
FLAG_QC_FAIL = 0x200
FLAG_DUPLICATE = 0x400
FLAG_SUPPLEMENTARY = 0x800

# CIGAR operation codes, as used by pysam's cigartuples
CIGAR_M = 0
CIGAR_I = 1
CIGAR_D = 2
CIGAR_N = 3
CIGAR_S = 4
CIGAR_H = 5
CIGAR_P = 6
CIGAR_EQ = 7
CIGAR_X = 8

CIGAR_CHARS = "MIDNSHP=X"

CONSUMES_QUERY = frozenset({CIGAR_M, CIGAR_I, CIGAR_S, CIGAR_EQ, CIGAR_X})
CONSUMES_REFERENCE = frozenset({CIGAR_M, CIGAR_D, CIGAR_N, CIGAR_EQ, CIGAR_X})
ALIGNED_OPS = frozenset({CIGAR_M, CIGAR_EQ, CIGAR_X})

UNMAPPED_ID = -1


def cigar_to_string(cigar: Tuple[Tuple[int, int], ...]) -> str:
    if not cigar:
        return "*"
    return "".join(f"{length}{CIGAR_CHARS[op]}" for op, length in cigar)


def parse_cigar_string(text: str) -> Tuple[Tuple[int, int], ...]:
    """Parse a CIGAR string such as ``10M2I5M`` into ``((0, 10), (1, 2), (0, 5))``."""
    if text in ("", "*"):
        return ()
    ops = []
    num = ""
    for ch in text:
        if ch.isdigit():
            num += ch
            continue
        idx = CIGAR_CHARS.find(ch)
        if idx < 0 or not num:
            raise ValueError(f"Invalid CIGAR string: {text!r}")
        ops.append((idx, int(num)))
        num = ""
    if num:
        raise ValueError(f"Invalid CIGAR string: {text!r}")
    return tuple(ops)


@dataclass(frozen=True)
class ReferenceSequence:
    """One reference sequence from the alignment header."""

    id: int
    name: str
    length: int


@dataclass(frozen=True)
class AlignmentRecord:
    """One alignment record, decoded and detached from the container.

    Coordinates are 0-based. ``reference_id`` and ``reference_start`` are -1
    for unmapped records. ``cigar`` holds ``(op, length)`` pairs using the SAM
    operation codes (see ``CIGAR_*``).
    """

    name: str
    flag: int
    reference_id: int = UNMAPPED_ID
    reference_start: int = UNMAPPED_ID
    mapping_quality: int = 0
    cigar: Tuple[Tuple[int, int], ...] = ()
    template_length: int = 0
    sequence: Optional[str] = None
    qualities: Optional[Tuple[int, ...]] = None
    mate_reference_id: int = UNMAPPED_ID
    mate_reference_start: int = UNMAPPED_ID
    mate_cigar: Optional[str] = None

    @property
    def is_paired(self) -> bool:
        return bool(self.flag & FLAG_PAIRED)

    @property
    def is_proper_pair(self) -> bool:
        return bool(self.flag & FLAG_PROPER_PAIR)

    @property
    def is_unmapped(self) -> bool:
        return bool(self.flag & FLAG_UNMAPPED) or self.reference_id < 0 or self.reference_start < 0

    @property
    def is_mate_unmapped(self) -> bool:
        return bool(self.flag & FLAG_MATE_UNMAPPED)

    @property
    def is_reverse(self) -> bool:
        return bool(self.flag & FLAG_REVERSE)

    @property
    def is_read1(self) -> bool:
        return bool(self.flag & FLAG_READ1)

    @property
    def is_read2(self) -> bool:
        return bool(self.flag & FLAG_READ2)

    @property
    def is_secondary(self) -> bool:
        return bool(self.flag & FLAG_SECONDARY)

    @property
    def is_qc_fail(self) -> bool:
        return bool(self.flag & FLAG_QC_FAIL)

    @property
    def is_duplicate(self) -> bool:
        return bool(self.flag & FLAG_DUPLICATE)

    @property
    def is_supplementary(self) -> bool:
        return bool(self.flag & FLAG_SUPPLEMENTARY)

    @property
    def is_primary(self) -> bool:
        return not (self.is_secondary or self.is_supplementary)

    @property
    def query_length_from_cigar(self) -> int:
        return sum(length for op, length in self.cigar if op in CONSUMES_QUERY)

    @property
    def reference_length(self) -> int:
        return sum(length for op, length in self.cigar if op in CONSUMES_REFERENCE)

    @property
    def reference_end(self) -> int:
        """0-based exclusive end of the alignment on the reference (-1 if unmapped)."""
        if self.is_unmapped:
            return UNMAPPED_ID
        return self.reference_start + self.reference_length

    @property
    def cigar_string(self) -> str:
        return cigar_to_string(self.cigar)


# -----------------
# Immutable results
# -----------------

def freeze(value: Any) -> Any:
    """Recursively convert dicts to read-only mappings and lists to tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of :func:`freeze`, producing plain JSON-friendly containers."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class FacetResult:
    """Finalized, read-only output of one facet."""

    name: str
    kind: str
    data: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", freeze(self.data))

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def to_dict(self) -> dict:
        return {"name": self.name, "kind": self.kind, "data": thaw(self.data)}


@dataclass(frozen=True)
class QCReport:
    """All facet results for one sample plus provenance."""

    sample: str
    source: str
    facets: Mapping[str, FacetResult]
    records_processed: Tuple[int, ...]
    passes_executed: int
    version: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "facets", MappingProxyType(dict(self.facets)))
        object.__setattr__(self, "records_processed", tuple(self.records_processed))

    def __getitem__(self, facet: str) -> FacetResult:
        return self.facets[facet]

    def to_dict(self) -> dict:
        return {
            "sample": self.sample,
            "source": self.source,
            "version": self.version,
            "passes_executed": self.passes_executed,
            "records_processed": list(self.records_processed),
            "facets": {name: res.to_dict() for name, res in self.facets.items()},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)


@dataclass(frozen=True)
class CohortReport:
    """Ordered collection of per-sample reports; never recomputes anything."""

    reports: Tuple[QCReport, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "reports", tuple(self.reports))

    def __iter__(self) -> Iterator[QCReport]:
        return iter(self.reports)

    def __len__(self) -> int:
        return len(self.reports)

    @property
    def samples(self) -> Tuple[str, ...]:
        return tuple(r.sample for r in self.reports)

    def get(self, sample: str) -> QCReport:
        for r in self.reports:
            if r.sample == sample:
                return r
        raise KeyError(sample)

    def to_dict(self) -> dict:
        return {"samples": [r.to_dict() for r in self.reports]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)
