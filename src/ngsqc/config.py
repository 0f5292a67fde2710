"""Run configuration.

Every knob the engine consumes lives on :class:`QCConfig`. The CLI builds one
from flags; a YAML file with the same field names can supply defaults.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

EDIT_SUBSTITUTION = "substitution"
EDIT_INSERTION = "insertion"
EDIT_DELETION = "deletion"
EDIT_SOFT_CLIP = "soft_clip"

EDIT_OPERATIONS = (EDIT_SUBSTITUTION, EDIT_INSERTION, EDIT_DELETION, EDIT_SOFT_CLIP)


@dataclass(frozen=True)
class FeatureNames:
    """GFF feature types counted by the genomic features facet (GENCODE names by default)."""

    five_prime_utr: str = "five_prime_UTR"
    three_prime_utr: str = "three_prime_UTR"
    coding_sequence: str = "CDS"
    exon: str = "exon"
    gene: str = "gene"

    def as_tuple(self) -> Tuple[str, ...]:
        return (self.five_prime_utr, self.three_prime_utr, self.coding_sequence, self.exon, self.gene)


@dataclass(frozen=True)
class QCConfig:
    """Parameters of one QC run.

    Attributes
    ----------
    facets:
        Facet names to run. ``None`` selects the default set: every record-based
        facet and coverage, plus genomic features when an annotation is given and
        edits when a reference FASTA is given.
    coverage_bin_width:
        Width (bp) of the bins in which depth is accumulated.
    coverage_max_depth:
        Largest rounded bin depth with its own bin in the per-reference coverage
        distribution; deeper bins are counted in its overflow bucket.
    max_template_length:
        Largest template length with its own histogram bin; larger values are
        counted in the overflow bucket.
    gc_resolution:
        Number of GC buckets above zero (100 gives integer percentages).
    mate_window:
        Maximum number of reads held while waiting for their mate.
    edit_operations:
        Edit kinds that feed the per-position edit histogram.
    max_skipped_fraction:
        Fail the run when any facet skips more than this fraction of the
        records it considered. ``None`` never fails.
    max_records:
        Stop each pass after this many records (``None`` reads everything).
    max_workers:
        Samples processed concurrently by the cohort runner.
    decode_threads:
        htslib decompression threads per open alignment file.
    """

    facets: Optional[Tuple[str, ...]] = None
    coverage_bin_width: int = 1000
    coverage_max_depth: int = 1000
    max_template_length: int = 1024
    gc_resolution: int = 100
    mate_window: int = 100_000
    edit_operations: Tuple[str, ...] = (EDIT_SUBSTITUTION, EDIT_INSERTION, EDIT_DELETION)
    max_skipped_fraction: Optional[float] = None
    max_records: Optional[int] = None
    max_workers: int = 1
    decode_threads: int = 1
    feature_names: FeatureNames = field(default_factory=FeatureNames)

    def __post_init__(self) -> None:
        if self.facets is not None:
            object.__setattr__(self, "facets", tuple(self.facets))
        object.__setattr__(self, "edit_operations", tuple(self.edit_operations))
        self.validate()

    def validate(self) -> None:
        if self.coverage_bin_width < 1:
            raise ValueError("coverage_bin_width must be >= 1")
        if self.coverage_max_depth < 0:
            raise ValueError("coverage_max_depth must be >= 0")
        if self.max_template_length < 0:
            raise ValueError("max_template_length must be >= 0")
        if self.gc_resolution < 1:
            raise ValueError("gc_resolution must be >= 1")
        if self.mate_window < 0:
            raise ValueError("mate_window must be >= 0")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.decode_threads < 1:
            raise ValueError("decode_threads must be >= 1")
        if self.max_records is not None and self.max_records < 0:
            raise ValueError("max_records must be >= 0")
        if self.max_skipped_fraction is not None and not (0.0 <= self.max_skipped_fraction <= 1.0):
            raise ValueError("max_skipped_fraction must be within [0, 1]")
        unknown = [op for op in self.edit_operations if op not in EDIT_OPERATIONS]
        if unknown:
            raise ValueError(f"Unknown edit operation(s): {unknown}. Choose from {list(EDIT_OPERATIONS)}")

    def with_overrides(self, **overrides: Any) -> "QCConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)


def config_from_mapping(data: Mapping[str, Any]) -> QCConfig:
    known = {f.name for f in dataclasses.fields(QCConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration key(s): {unknown}")

    kwargs: Dict[str, Any] = dict(data)
    if "feature_names" in kwargs and isinstance(kwargs["feature_names"], Mapping):
        kwargs["feature_names"] = FeatureNames(**kwargs["feature_names"])
    for key in ("facets", "edit_operations"):
        if key in kwargs and kwargs[key] is not None:
            kwargs[key] = tuple(kwargs[key])
    return QCConfig(**kwargs)


def load_config(path: str | Path) -> QCConfig:
    """Load a :class:`QCConfig` from a YAML file."""
    with open(path, "rt", encoding="utf-8") as in_handle:
        data = yaml.safe_load(in_handle) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration file {path} must contain a mapping at the top level")
    logger.info("Loaded configuration from %s", path)
    return config_from_mapping(data)
