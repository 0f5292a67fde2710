"""Record sources: where the engine's alignment records come from.

A source exposes reference metadata before iteration and hands out one fresh,
ordered iterator per pass through :meth:`RecordSource.records`. Sources that
cannot be rewound report ``replayable = False`` and refuse a second pass with
``SourceNotReplayable``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import pysam

from .errors import SourceExhausted, SourceNotReplayable
from .models import UNMAPPED_ID, AlignmentRecord, ReferenceSequence

logger = logging.getLogger(__name__)

_STREAM_PATHS = {"-", "/dev/stdin"}


def record_from_segment(read: pysam.AlignedSegment) -> AlignmentRecord:
    """Detach a pysam record into an immutable :class:`AlignmentRecord`."""
    quals = read.query_qualities
    mate_cigar = read.get_tag("MC") if read.has_tag("MC") else None
    ref_id = int(read.reference_id) if read.reference_id is not None else UNMAPPED_ID
    ref_start = int(read.reference_start) if read.reference_start is not None else UNMAPPED_ID
    if read.is_unmapped and ref_id < 0:
        ref_start = UNMAPPED_ID
    return AlignmentRecord(
        name=str(read.query_name),
        flag=int(read.flag),
        reference_id=ref_id,
        reference_start=ref_start,
        mapping_quality=int(read.mapping_quality),
        cigar=tuple((int(op), int(n)) for op, n in (read.cigartuples or ())),
        template_length=int(read.template_length),
        sequence=read.query_sequence,
        qualities=tuple(quals) if quals is not None else None,
        mate_reference_id=int(read.next_reference_id) if read.next_reference_id is not None else UNMAPPED_ID,
        mate_reference_start=(
            int(read.next_reference_start) if read.next_reference_start is not None else UNMAPPED_ID
        ),
        mate_cigar=str(mate_cigar) if mate_cigar is not None else None,
    )


class RecordSource:
    """Base class for record sources."""

    #: Human-readable identity recorded in the report provenance.
    identity: str = "<records>"

    @property
    def references(self) -> Tuple[ReferenceSequence, ...]:
        raise NotImplementedError

    @property
    def replayable(self) -> bool:
        raise NotImplementedError

    def records(self) -> Iterator[AlignmentRecord]:
        """Start a new pass over all records, in source order."""
        raise NotImplementedError


class IterableRecordSource(RecordSource):
    """In-memory, replayable source (used for tests and synthetic data)."""

    def __init__(
        self,
        records: Iterable[AlignmentRecord],
        references: Sequence[ReferenceSequence],
        *,
        identity: str = "<memory>",
    ) -> None:
        self._records: List[AlignmentRecord] = list(records)
        self._references = tuple(references)
        self.identity = identity
        self.passes_opened = 0

    @property
    def references(self) -> Tuple[ReferenceSequence, ...]:
        return self._references

    @property
    def replayable(self) -> bool:
        return True

    def records(self) -> Iterator[AlignmentRecord]:
        self.passes_opened += 1
        return iter(self._records)


class StreamRecordSource(RecordSource):
    """One-shot source over an arbitrary iterator; cannot be rewound."""

    def __init__(
        self,
        records: Iterable[AlignmentRecord],
        references: Sequence[ReferenceSequence],
        *,
        identity: str = "<stream>",
    ) -> None:
        self._iter = iter(records)
        self._references = tuple(references)
        self.identity = identity
        self.records_read = 0
        self._opened = False

    @property
    def references(self) -> Tuple[ReferenceSequence, ...]:
        return self._references

    @property
    def replayable(self) -> bool:
        return False

    def records(self) -> Iterator[AlignmentRecord]:
        if self._opened:
            raise SourceNotReplayable(f"Record source {self.identity} cannot be replayed")
        self._opened = True
        return self._counting()

    def _counting(self) -> Iterator[AlignmentRecord]:
        for rec in self._iter:
            self.records_read += 1
            yield rec


class BamRecordSource(RecordSource):
    """SAM/BAM/CRAM file read through pysam.

    Each pass reopens the file, so any regular file is replayable. Reading from
    standard input is not.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        reference_fasta: Optional[str | Path] = None,
        threads: int = 1,
    ) -> None:
        self.path = str(path)
        self.identity = self.path
        self.reference_fasta = str(reference_fasta) if reference_fasta is not None else None
        self.threads = int(threads)
        self._stream: Optional[pysam.AlignmentFile] = None
        self._stream_opened = False

        bam = self._open()
        self._references = tuple(
            ReferenceSequence(id=i, name=str(name), length=int(length))
            for i, (name, length) in enumerate(zip(bam.references, bam.lengths))
        )
        if self.replayable:
            bam.close()
        else:
            # The header has already been consumed from the stream; keep the handle.
            self._stream = bam

    def _open(self) -> pysam.AlignmentFile:
        kwargs = {"check_sq": False, "threads": self.threads}
        if self.reference_fasta is not None:
            kwargs["reference_filename"] = self.reference_fasta
        return pysam.AlignmentFile(self.path, "r", **kwargs)

    @property
    def references(self) -> Tuple[ReferenceSequence, ...]:
        return self._references

    @property
    def replayable(self) -> bool:
        if self.path in _STREAM_PATHS:
            return False
        return Path(self.path).is_file()

    def records(self) -> Iterator[AlignmentRecord]:
        if self._stream is not None:
            if self._stream_opened:
                raise SourceNotReplayable(f"Record source {self.identity} cannot be replayed")
            self._stream_opened = True
            return self._iter_handle(self._stream)
        if not Path(self.path).exists():
            raise SourceExhausted(f"Alignment file disappeared between passes: {self.path}")
        return self._iter_handle(self._open())

    def _iter_handle(self, bam: pysam.AlignmentFile) -> Iterator[AlignmentRecord]:
        # until_eof keeps file order and also yields unmapped reads.
        try:
            for read in bam.fetch(until_eof=True):
                yield record_from_segment(read)
        finally:
            bam.close()
