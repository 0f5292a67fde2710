"""Pass orchestration: plan passes, stream records to facets, collect results."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from . import __version__
from .config import QCConfig
from .errors import MalformedAlignment, QCCancelled, SkippedRecordsExceeded, SourceExhausted, SourceNotReplayable
from .facets import Facet, FacetKind, FirstPassContext, ReadProfile, build_facet, default_facets
from .features import GenomicFeatureIndex
from .models import AlignmentRecord, FacetResult, QCReport
from .reference import ReferenceProvider
from .report import build_report
from .source import RecordSource
from .validation import check_reference_concordance

logger = logging.getLogger(__name__)

_LOG_EVERY = 1_000_000


class CancellationToken:
    """Cooperative cancellation flag, safe to share between threads."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def resolve_facets(
    requested: Optional[Iterable[str | FacetKind]],
    *,
    with_features: bool = False,
    with_reference: bool = False,
) -> Tuple[FacetKind, ...]:
    """Turn requested facet names into kinds (deduplicated, order kept)."""
    if requested is None:
        return default_facets(with_features=with_features, with_reference=with_reference)
    kinds: List[FacetKind] = []
    for name in requested:
        kind = FacetKind.parse(name)
        if kind not in kinds:
            kinds.append(kind)
    if not kinds:
        raise ValueError("At least one facet must be requested")
    return tuple(kinds)


def pass_plan(kinds: Sequence[FacetKind]) -> Tuple[int, ...]:
    """Pass numbers needed to run ``kinds``, in execution order."""
    if not kinds:
        return ()
    return tuple(range(1, max(k.final_pass for k in kinds) + 1))


class QCEngine:
    """Runs every requested facet over one record source and builds the report.

    Passes run strictly in increasing order. Facets whose last pass is N are
    finalized at the end of pass N; second-pass facets are constructed from the
    :class:`FirstPassContext` produced at the end of pass 1.
    """

    def __init__(
        self,
        source: RecordSource,
        config: Optional[QCConfig] = None,
        *,
        sample: Optional[str] = None,
        feature_index: Optional[GenomicFeatureIndex] = None,
        reference: Optional[ReferenceProvider] = None,
        cancel: Optional[CancellationToken] = None,
        progress: bool = False,
    ) -> None:
        self.source = source
        self.config = config if config is not None else QCConfig()
        self.sample = sample or Path(source.identity).name.split(".")[0] or "sample"
        self.feature_index = feature_index
        self.reference = reference
        self.cancel = cancel
        self.progress = progress

        self.kinds = resolve_facets(
            self.config.facets,
            with_features=feature_index is not None,
            with_reference=reference is not None,
        )
        if FacetKind.GENOMIC_FEATURES in self.kinds and feature_index is None:
            raise ValueError("The genomic_features facet requires a feature annotation (GFF)")
        if FacetKind.EDITS in self.kinds and reference is None:
            raise ValueError("The edits facet requires a reference FASTA")
        self.plan = pass_plan(self.kinds)

        self.results: Dict[str, FacetResult] = {}
        self.records_processed: List[int] = []
        self.context: Optional[FirstPassContext] = None

    def _build(self, kind: FacetKind) -> Facet:
        return build_facet(
            kind,
            self.config,
            references=self.source.references,
            feature_index=self.feature_index,
            reference=self.reference,
            context=self.context,
        )

    def run(self) -> QCReport:
        if len(self.plan) > 1 and not self.source.replayable:
            multi = [k.value for k in self.kinds if k.final_pass > 1]
            raise SourceNotReplayable(
                f"Facet(s) {multi} need {len(self.plan)} passes but {self.source.identity} cannot be replayed",
                facet=multi[0],
                pass_number=2,
            )
        if FacetKind.EDITS in self.kinds and self.reference is not None:
            check_reference_concordance(self.source.references, self.reference)

        t0 = time.time()
        logger.info("Sample %s: %d facet(s), %d pass(es)", self.sample, len(self.kinds), len(self.plan))

        for pass_number in self.plan:
            self._check_cancelled(pass_number, 0)
            if pass_number == 1:
                facets = [self._build(k) for k in self.kinds if k.final_pass == 1]
                profile = ReadProfile(self.source.references) if len(self.plan) > 1 else None
            else:
                facets = [self._build(k) for k in self.kinds if k.final_pass == pass_number]
                profile = None

            logger.info("Pass %d with the following facets enabled:", pass_number)
            for facet in facets:
                logger.info(" [*] %s", facet.name)

            try:
                self._run_pass(pass_number, facets, profile)
            except SourceExhausted as err:
                logger.error("Pass %d could not be started: %s", pass_number, err)
                break

            self._finalize(pass_number, facets)
            if profile is not None:
                self.context = profile.context(self.results)

        logger.info("Sample %s finished in %.1fs", self.sample, time.time() - t0)
        return build_report(
            sample=self.sample,
            source=self.source.identity,
            requested=[k.value for k in self.kinds],
            results=self.results,
            records_processed=self.records_processed,
            version=__version__,
        )

    def _check_cancelled(self, pass_number: int, offset: int) -> None:
        if self.cancel is not None and self.cancel.cancelled:
            raise QCCancelled(
                f"Run for {self.sample} cancelled",
                completed=MappingProxyType(dict(self.results)),
                pass_number=pass_number,
                record_offset=offset,
            )

    def _run_pass(self, pass_number: int, facets: Sequence[Facet], profile: Optional[ReadProfile]) -> None:
        max_records = self.config.max_records
        records = self.source.records()
        bar = None
        stream: Iterable[AlignmentRecord] = records
        if self.progress:
            bar = tqdm(records, unit="record", desc=f"{self.sample} pass {pass_number}/{len(self.plan)}")
            stream = bar
        n = 0
        try:
            for record in stream:
                if max_records is not None and n >= max_records:
                    break
                self._check_cancelled(pass_number, n)
                if profile is not None:
                    profile.process(record)
                for facet in facets:
                    try:
                        facet.process(record)
                    except MalformedAlignment as err:
                        err.pass_number = pass_number
                        err.record_offset = n
                        facet.mark_skipped(err)
                n += 1
                if n % _LOG_EVERY == 0:
                    logger.info("  [*] Processed %s records.", f"{n:,}")
            # also covers a pass that yields no records
            self._check_cancelled(pass_number, n)
        finally:
            if bar is not None:
                bar.close()
            close = getattr(records, "close", None)
            if close is not None:
                close()

        self.records_processed.append(n)
        logger.info("Processed %s records in pass %d.", f"{n:,}", pass_number)

    def _finalize(self, pass_number: int, facets: Sequence[Facet]) -> None:
        threshold = self.config.max_skipped_fraction
        for facet in facets:
            self.results[facet.name] = facet.finalize()
            if facet.skipped:
                logger.warning(
                    "[%s] skipped %d malformed record(s) out of %d",
                    facet.name,
                    facet.skipped,
                    facet.skipped + facet.considered,
                )
            fraction = facet.skipped_fraction
            if threshold is not None and fraction is not None and fraction > threshold:
                raise SkippedRecordsExceeded(
                    f"Skipped fraction {fraction:.4f} exceeds the allowed {threshold:.4f}",
                    skipped=facet.skipped,
                    considered=facet.considered + facet.skipped,
                    threshold=threshold,
                    facet=facet.name,
                    pass_number=pass_number,
                )


def run_qc(
    source: RecordSource,
    config: Optional[QCConfig] = None,
    **kwargs,
) -> QCReport:
    """Convenience wrapper: ``QCEngine(source, config, **kwargs).run()``."""
    return QCEngine(source, config, **kwargs).run()
