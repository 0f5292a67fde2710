"""Reference-sequence providers used by the edits facet.

Providers may be shared by several sample pipelines running in parallel;
``FastaReferenceProvider`` serializes access to the underlying pysam handle.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import pysam

logger = logging.getLogger(__name__)


class ReferenceProvider:
    """Supplies literal reference bases for ``[start, end)`` of a named sequence."""

    def fetch(self, name: str, start: int, end: int) -> str:
        raise NotImplementedError

    def length(self, name: str) -> Optional[int]:
        raise NotImplementedError

    @property
    def names(self) -> Tuple[str, ...]:
        raise NotImplementedError

    def __contains__(self, name: str) -> bool:
        return name in self.names


class InMemoryReferenceProvider(ReferenceProvider):
    def __init__(self, sequences: Mapping[str, str]) -> None:
        self._seqs: Dict[str, str] = {k: v.upper() for k, v in sequences.items()}

    def fetch(self, name: str, start: int, end: int) -> str:
        if name not in self._seqs:
            raise KeyError(f"Unknown reference sequence: {name}")
        return self._seqs[name][max(0, start) : end]

    def __contains__(self, name: str) -> bool:
        return name in self._seqs

    def length(self, name: str) -> Optional[int]:
        seq = self._seqs.get(name)
        return None if seq is None else len(seq)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._seqs)


class FastaReferenceProvider(ReferenceProvider):
    """Indexed FASTA read through ``pysam.FastaFile`` (creates the .fai if missing)."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        if not Path(self.path + ".fai").exists():
            logger.info("FASTA index not found; running samtools faidx on %s", self.path)
            pysam.faidx(self.path)
        self._fasta = pysam.FastaFile(self.path)
        self._lengths = dict(zip(self._fasta.references, self._fasta.lengths))
        self._lock = threading.Lock()

    def fetch(self, name: str, start: int, end: int) -> str:
        if name not in self._lengths:
            raise KeyError(f"Unknown reference sequence: {name}")
        with self._lock:
            return self._fasta.fetch(name, max(0, start), end).upper()

    def __contains__(self, name: str) -> bool:
        return name in self._lengths

    def length(self, name: str) -> Optional[int]:
        return self._lengths.get(name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._lengths)

    def close(self) -> None:
        with self._lock:
            self._fasta.close()
