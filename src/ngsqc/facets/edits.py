"""Edit (substitution / insertion / deletion / clip) accumulation (second pass).

Each record's bases are compared with the reference as directed by its CIGAR.
Edits are also tallied by read cycle (5' to 3', so reverse-strand reads are
flipped) to expose artifacts concentrated near read ends.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np

from ..config import (
    EDIT_DELETION,
    EDIT_INSERTION,
    EDIT_OPERATIONS,
    EDIT_SOFT_CLIP,
    EDIT_SUBSTITUTION,
)
from ..errors import MalformedAlignment
from ..models import ALIGNED_OPS, CIGAR_D, CIGAR_I, CIGAR_N, CIGAR_S, AlignmentRecord
from ..reference import ReferenceProvider
from ..utils import safe_ratio
from .base import Facet, FacetKind
from .profile import FirstPassContext

logger = logging.getLogger(__name__)

_N = ord("N")
_DEFAULT_WINDOW = 1_000_000


class ReferenceWindow:
    """Caches a window of reference bases; records arriving in coordinate order
    are served from memory until they leave the window."""

    def __init__(self, provider: ReferenceProvider, *, span: int = _DEFAULT_WINDOW) -> None:
        self.provider = provider
        self.span = int(span)
        self.name: Optional[str] = None
        self.start = 0
        self.end = 0
        self.seq = ""
        self.fetches = 0

    def fetch(self, name: str, start: int, end: int) -> str:
        if name != self.name or start < self.start or end > self.end:
            self.name = name
            self.start = start
            self.end = max(end, start + self.span)
            length = self.provider.length(name)
            if length is not None:
                self.end = min(self.end, max(end, length))
            self.seq = self.provider.fetch(name, self.start, self.end)
            self.fetches += 1
        return self.seq[start - self.start : end - self.start]


class EditsFacet(Facet):
    kind = FacetKind.EDITS

    def __init__(
        self,
        context: FirstPassContext,
        reference: ReferenceProvider,
        *,
        edit_operations: Sequence[str] = (EDIT_SUBSTITUTION, EDIT_INSERTION, EDIT_DELETION),
        window: int = _DEFAULT_WINDOW,
    ) -> None:
        super().__init__()
        self.context = context
        self.reference = reference
        self.window = ReferenceWindow(reference, span=window)
        self.edit_operations = tuple(edit_operations)
        cycles = max(1, context.max_read_length)
        self.by_position: Dict[str, np.ndarray] = {op: np.zeros(cycles, dtype=np.int64) for op in EDIT_OPERATIONS}
        self.position_overflow = 0
        self.events: Dict[str, int] = {op: 0 for op in EDIT_OPERATIONS}
        self.bases: Dict[str, int] = {op: 0 for op in EDIT_OPERATIONS}
        self.aligned_bases = 0
        self.records_with_edits = 0
        self.unmapped_skipped = 0
        self.secondary_skipped = 0
        self.missing_sequence = 0
        self.reference_missing = 0

    def _validate(self, record: AlignmentRecord, ref_length: int) -> None:
        qlen = record.query_length_from_cigar
        if qlen != len(record.sequence or ""):
            raise MalformedAlignment(
                f"Record {record.name}: CIGAR {record.cigar_string} consumes {qlen} query bases "
                f"but the sequence has {len(record.sequence or '')}",
                facet=self.name,
            )
        if record.reference_end > ref_length:
            raise MalformedAlignment(
                f"Record {record.name}: CIGAR {record.cigar_string} extends to {record.reference_end}, "
                f"past the reference length {ref_length}",
                facet=self.name,
            )

    def _mark(self, op: str, cycles: Iterable[int]) -> None:
        hist = self.by_position[op]
        for c in cycles:
            if c < hist.size:
                hist[c] += 1
            else:
                self.position_overflow += 1

    def accumulate(self, record: AlignmentRecord) -> bool:
        if record.is_unmapped:
            self.unmapped_skipped += 1
            return False
        if record.is_secondary:
            self.secondary_skipped += 1
            return False
        if not record.sequence:
            self.missing_sequence += 1
            return False

        ref = self.context.reference(record.reference_id)
        if ref is None or ref.name not in self.reference:
            self.reference_missing += 1
            return False

        self._validate(record, ref.length)
        start = record.reference_start
        end = record.reference_end
        ref_seq = self.window.fetch(ref.name, start, end)
        if len(ref_seq) != end - start:
            raise MalformedAlignment(
                f"Record {record.name}: reference returned {len(ref_seq)} bases for {ref.name}:{start}-{end}",
                facet=self.name,
            )

        seq = record.sequence.upper()
        read_len = len(seq)
        reverse = record.is_reverse

        def cycle(qpos: Any) -> Any:
            return (read_len - 1 - qpos) if reverse else qpos

        def insertion_cycle(qpos: int, length: int) -> int:
            # first inserted base in 5' to 3' order
            return (read_len - qpos - length) if reverse else qpos

        def deletion_cycle(qpos: int) -> int:
            # next query base in 5' to 3' order
            return min(read_len - qpos, read_len - 1) if reverse else min(qpos, read_len - 1)

        qpos = 0
        rpos = 0
        kinds = set()
        for op, length in record.cigar:
            if op in ALIGNED_OPS:
                r = np.frombuffer(ref_seq[rpos : rpos + length].encode("ascii"), dtype=np.uint8)
                q = np.frombuffer(seq[qpos : qpos + length].encode("ascii"), dtype=np.uint8)
                mismatch = np.flatnonzero((r != q) & (r != _N) & (q != _N))
                self.aligned_bases += length
                if mismatch.size:
                    self.events[EDIT_SUBSTITUTION] += int(mismatch.size)
                    self.bases[EDIT_SUBSTITUTION] += int(mismatch.size)
                    self._mark(EDIT_SUBSTITUTION, cycle(mismatch + qpos).tolist())
                    kinds.add(EDIT_SUBSTITUTION)
                qpos += length
                rpos += length
            elif op == CIGAR_I:
                self.events[EDIT_INSERTION] += 1
                self.bases[EDIT_INSERTION] += length
                self._mark(EDIT_INSERTION, [insertion_cycle(qpos, length)])
                kinds.add(EDIT_INSERTION)
                qpos += length
            elif op == CIGAR_D:
                self.events[EDIT_DELETION] += 1
                self.bases[EDIT_DELETION] += length
                self._mark(EDIT_DELETION, [deletion_cycle(qpos)])
                kinds.add(EDIT_DELETION)
                rpos += length
            elif op == CIGAR_N:
                rpos += length
            elif op == CIGAR_S:
                self.events[EDIT_SOFT_CLIP] += 1
                self.bases[EDIT_SOFT_CLIP] += length
                self._mark(EDIT_SOFT_CLIP, cycle(np.arange(qpos, qpos + length)).tolist())
                kinds.add(EDIT_SOFT_CLIP)
                qpos += length
            # H and P consume neither sequence

        if kinds.intersection(self.edit_operations):
            self.records_with_edits += 1
        return True

    def result_data(self) -> Dict[str, Any]:
        selected = np.zeros_like(self.by_position[EDIT_SUBSTITUTION])
        for op in self.edit_operations:
            selected += self.by_position[op]

        def table(arr: np.ndarray) -> list:
            return [[int(i), int(arr[i])] for i in np.flatnonzero(arr)]

        edit_bases = sum(self.bases[op] for op in (EDIT_SUBSTITUTION, EDIT_INSERTION, EDIT_DELETION))
        return {
            "edit_operations": list(self.edit_operations),
            "events": dict(self.events),
            "bases": dict(self.bases),
            "aligned_bases": self.aligned_bases,
            "substitution_rate": safe_ratio(self.bases[EDIT_SUBSTITUTION], self.aligned_bases),
            "edit_rate": safe_ratio(edit_bases, self.aligned_bases),
            "records_with_edits": self.records_with_edits,
            "max_read_length": int(self.by_position[EDIT_SUBSTITUTION].size),
            "edits_by_position": table(selected),
            "edits_by_position_and_kind": {op: table(self.by_position[op]) for op in EDIT_OPERATIONS},
            "position_overflow": self.position_overflow,
            "unmapped_skipped": self.unmapped_skipped,
            "secondary_skipped": self.secondary_skipped,
            "missing_sequence": self.missing_sequence,
            "reference_missing": self.reference_missing,
        }
