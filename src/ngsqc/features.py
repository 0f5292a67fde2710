"""Genomic feature annotation: GFF loading and the per-contig interval index.

Intervals are 0-based half-open internally. The index is built once before any
pass and is immutable afterwards, so one instance can be shared by every
sample pipeline of a cohort run.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, TextIO, Tuple

import pysam

from .config import FeatureNames
from .errors import IndexBuildFailure
from .utils import open_textmaybe_gzip
from .validation import annotation_contig_map

logger = logging.getLogger(__name__)

Interval = Tuple[int, int, str]


@dataclass(frozen=True)
class ContigIntervals:
    """Intervals of one contig sorted by start, with a running maximum of ends."""

    starts: Tuple[int, ...]
    ends: Tuple[int, ...]
    categories: Tuple[str, ...]
    max_end: Tuple[int, ...]  # max(ends[: i + 1])

    def __len__(self) -> int:
        return len(self.starts)

    def overlapping(self, start: int, end: int) -> List[int]:
        """Indices of intervals overlapping ``[start, end)``."""
        hits: List[int] = []
        i = bisect.bisect_left(self.starts, end) - 1
        while i >= 0 and self.max_end[i] > start:
            if self.ends[i] > start:
                hits.append(i)
            i -= 1
        hits.reverse()
        return hits


class GenomicFeatureIndex:
    """Read-only interval index keyed by contig name."""

    def __init__(self, contigs: Mapping[str, ContigIntervals], categories: Sequence[str]) -> None:
        self._contigs: Dict[str, ContigIntervals] = dict(contigs)
        self.categories: Tuple[str, ...] = tuple(categories)

    @classmethod
    def build(
        cls,
        intervals_by_contig: Mapping[str, Iterable[Interval]],
        *,
        categories: Optional[Sequence[str]] = None,
    ) -> "GenomicFeatureIndex":
        """Build the index from ``{contig: [(start, end, category), ...]}``.

        Raises ``IndexBuildFailure`` for negative starts or ``end < start``.
        """
        contigs: Dict[str, ContigIntervals] = {}
        seen: List[str] = []
        for contig, intervals in intervals_by_contig.items():
            items: List[Interval] = []
            for n, (start, end, category) in enumerate(intervals):
                if start < 0 or end < start:
                    raise IndexBuildFailure(
                        f"Invalid interval #{n} on {contig}: start={start}, end={end}, category={category}"
                    )
                items.append((int(start), int(end), str(category)))
                if category not in seen:
                    seen.append(str(category))
            items.sort()
            running = 0
            max_end: List[int] = []
            for _, end, _ in items:
                running = max(running, end)
                max_end.append(running)
            contigs[str(contig)] = ContigIntervals(
                starts=tuple(i[0] for i in items),
                ends=tuple(i[1] for i in items),
                categories=tuple(i[2] for i in items),
                max_end=tuple(max_end),
            )

        if categories is None:
            categories = sorted(seen)
        index = cls(contigs, categories)
        logger.info(
            "Built genomic feature index: %d intervals on %d contigs",
            sum(len(c) for c in contigs.values()),
            len(contigs),
        )
        return index

    @property
    def contigs(self) -> Tuple[str, ...]:
        return tuple(self._contigs)

    def __contains__(self, contig: str) -> bool:
        return contig in self._contigs

    def __len__(self) -> int:
        return sum(len(c) for c in self._contigs.values())

    def overlapping(self, contig: str, start: int, end: int) -> List[Interval]:
        """All intervals on ``contig`` overlapping ``[start, end)``."""
        ci = self._contigs.get(contig)
        if ci is None:
            return []
        return [(ci.starts[i], ci.ends[i], ci.categories[i]) for i in ci.overlapping(start, end)]

    def overlapping_categories(self, contig: str, start: int, end: int) -> FrozenSet[str]:
        ci = self._contigs.get(contig)
        if ci is None:
            return frozenset()
        return frozenset(ci.categories[i] for i in ci.overlapping(start, end))


class _GffBody:
    """Line view of an open GFF3 handle that stops at the ``##FASTA`` directive.

    pysam's tabix iterator wants a file-like object with ``closed`` and calls
    ``iter()`` on it for every record, so one generator is kept for the whole
    read. Blank lines are dropped; ``lineno`` is the last line handed out.
    """

    def __init__(self, fh: TextIO) -> None:
        self._fh = fh
        self._lines = self._read()
        self.lineno = 0

    @property
    def closed(self) -> bool:
        return self._fh.closed

    def __iter__(self) -> Iterator[str]:
        return self._lines

    def _read(self) -> Iterator[str]:
        for line in self._fh:
            self.lineno += 1
            if line.startswith("##FASTA"):
                return
            if not line.strip():
                continue
            yield line if line.endswith("\n") else line + "\n"


def load_gff_intervals(
    path: str | Path,
    feature_names: FeatureNames = FeatureNames(),
) -> Dict[str, List[Interval]]:
    """Read GFF3 features of the configured types as 0-based half-open intervals.

    Rows are parsed with ``pysam.asGFF3`` (whose ``start`` is already 0-based).
    Raises ``IndexBuildFailure`` on malformed rows.
    """
    wanted = set(feature_names.as_tuple())
    out: Dict[str, List[Interval]] = {}
    n_rows = 0
    n_kept = 0

    with open_textmaybe_gzip(path, "rt") as fh:
        body = _GffBody(fh)
        try:
            for rec in pysam.tabix_iterator(body, pysam.asGFF3()):
                n_rows += 1
                if len(rec) != 9:
                    raise IndexBuildFailure(f"{path}:{body.lineno}: expected 9 GFF columns, found {len(rec)}")
                ftype = rec.feature
                if ftype not in wanted:
                    continue
                start, end = int(rec.start), int(rec.end)
                if start < 0 or end <= start:
                    raise IndexBuildFailure(
                        f"{path}:{body.lineno}: invalid feature span {start + 1}-{end} on {rec.contig}"
                    )
                out.setdefault(rec.contig, []).append((start, end, ftype))
                n_kept += 1
        except (ValueError, TypeError) as err:
            raise IndexBuildFailure(f"{path}:{body.lineno}: malformed GFF record: {err}") from None

    logger.info("Read %d GFF features (%d of the requested types) from %s", n_rows, n_kept, path)
    return out


def build_feature_index(
    path: str | Path,
    feature_names: FeatureNames = FeatureNames(),
    *,
    header_contigs: Optional[Sequence[str]] = None,
    contig_style: str = "auto",
    contig_map: Optional[Mapping[str, str]] = None,
) -> GenomicFeatureIndex:
    """Load a GFF and build the index.

    With ``header_contigs`` the annotation contigs are renamed to the alignment
    header's naming style (see :func:`annotation_contig_map`); an explicit
    ``contig_map`` takes precedence.
    """
    intervals = load_gff_intervals(path, feature_names)
    if contig_map is None and header_contigs is not None:
        contig_map = annotation_contig_map(list(intervals), header_contigs, contig_style)
    if contig_map:
        renamed: Dict[str, List[Interval]] = {}
        for contig, items in intervals.items():
            renamed.setdefault(contig_map.get(contig, contig), []).extend(items)
        intervals = renamed
    return GenomicFeatureIndex.build(intervals, categories=feature_names.as_tuple())
