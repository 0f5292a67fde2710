"""Run the QC engine over several samples and gather a cohort report.

Each sample gets its own record source and facet instances; only the read-only
feature index and reference provider are shared between worker threads.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import QCConfig
from .engine import CancellationToken, QCEngine
from .features import GenomicFeatureIndex
from .models import CohortReport, QCReport
from .reference import ReferenceProvider
from .report import merge_reports
from .source import BamRecordSource, RecordSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleInput:
    """One cohort member: a sample name and where its alignments live."""

    sample: str
    path: str

    @classmethod
    def from_path(cls, path: str | Path) -> "SampleInput":
        p = Path(path)
        return cls(sample=p.name.split(".")[0], path=str(p))


def parse_sample_sheet(path: str | Path) -> List[SampleInput]:
    """Read a two-column (sample, path) TSV; blank lines and ``#`` comments are ignored.

    Relative paths are resolved against the sheet's directory.
    """
    base = Path(path).parent
    samples: List[SampleInput] = []
    with open(path, "rt", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip() or line.startswith("#"):
                continue
            fields = line.rstrip("\n").split("\t")
            if len(fields) < 2:
                raise ValueError(f"{path}:{lineno}: expected 'sample<TAB>path'")
            bam = Path(fields[1].strip())
            if not bam.is_absolute():
                bam = base / bam
            samples.append(SampleInput(sample=fields[0].strip(), path=str(bam)))
    return samples


def run_cohort(
    samples: Sequence[SampleInput],
    config: Optional[QCConfig] = None,
    *,
    feature_index: Optional[GenomicFeatureIndex] = None,
    reference: Optional[ReferenceProvider] = None,
    reference_fasta: Optional[str] = None,
    cancel: Optional[CancellationToken] = None,
    source_factory: Optional[Callable[[SampleInput], RecordSource]] = None,
) -> CohortReport:
    """Run every sample (up to ``config.max_workers`` at a time) and merge the reports.

    The cohort keeps the order of ``samples`` regardless of completion order.
    The first failing sample cancels the others and its error is re-raised.
    """
    config = config if config is not None else QCConfig()
    names = [s.sample for s in samples]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"Duplicate sample name(s) in cohort: {dupes}")
    if not samples:
        return CohortReport(())

    cancel = cancel if cancel is not None else CancellationToken()

    def open_source(item: SampleInput) -> RecordSource:
        if source_factory is not None:
            return source_factory(item)
        return BamRecordSource(item.path, reference_fasta=reference_fasta, threads=config.decode_threads)

    def run_one(item: SampleInput) -> QCReport:
        engine = QCEngine(
            open_source(item),
            config,
            sample=item.sample,
            feature_index=feature_index,
            reference=reference,
            cancel=cancel,
        )
        return engine.run()

    workers = min(config.max_workers, len(samples))
    logger.info("Running %d sample(s) with %d worker(s)", len(samples), workers)

    results: List[Optional[QCReport]] = [None] * len(samples)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_idx = {executor.submit(run_one, item): idx for idx, item in enumerate(samples)}
        try:
            for future in as_completed(future_to_idx):
                idx = future_to_idx[future]
                results[idx] = future.result()
                logger.info("Finished sample %s", samples[idx].sample)
        except BaseException:
            cancel.cancel()
            for future in future_to_idx:
                future.cancel()
            raise

    return merge_reports(r for r in results if r is not None)
