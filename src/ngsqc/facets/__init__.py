"""Quality-control facets.

Every facet kind is listed in :class:`FacetKind`; :func:`build_facet` is the
single place that knows how to construct each one.
"""

from __future__ import annotations

__all__ = [
    "Facet",
    "FacetKind",
    "FirstPassContext",
    "ReadProfile",
    "build_facet",
    "default_facets",
]

from typing import Optional, Sequence, Tuple

from ..config import QCConfig
from ..features import GenomicFeatureIndex
from ..models import ReferenceSequence
from ..reference import ReferenceProvider
from .base import Facet, FacetKind
from .coverage import CoverageFacet
from .edits import EditsFacet
from .gc_content import GCContentFacet
from .general import GeneralMetricsFacet
from .genomic_features import GenomicFeaturesFacet
from .profile import FirstPassContext, ReadProfile
from .quality_scores import QualityScoreFacet
from .template_length import TemplateLengthFacet


def default_facets(*, with_features: bool = False, with_reference: bool = False) -> Tuple[FacetKind, ...]:
    """Facets run when none are requested explicitly.

    Genomic features need an annotation and edits need a reference FASTA, so
    they are only included when those inputs are available.
    """
    kinds = [
        FacetKind.GENERAL,
        FacetKind.TEMPLATE_LENGTH,
        FacetKind.GC_CONTENT,
        FacetKind.QUALITY_SCORES,
    ]
    if with_features:
        kinds.append(FacetKind.GENOMIC_FEATURES)
    kinds.append(FacetKind.COVERAGE)
    if with_reference:
        kinds.append(FacetKind.EDITS)
    return tuple(kinds)


def build_facet(
    kind: FacetKind,
    config: QCConfig,
    *,
    references: Sequence[ReferenceSequence] = (),
    feature_index: Optional[GenomicFeatureIndex] = None,
    reference: Optional[ReferenceProvider] = None,
    context: Optional[FirstPassContext] = None,
) -> Facet:
    """Construct the facet for ``kind``.

    Second-pass facets (coverage, edits) require the ``context`` produced at
    the end of pass 1.
    """
    if kind is FacetKind.GENERAL:
        return GeneralMetricsFacet(mate_window=config.mate_window)
    if kind is FacetKind.GC_CONTENT:
        return GCContentFacet(resolution=config.gc_resolution)
    if kind is FacetKind.TEMPLATE_LENGTH:
        return TemplateLengthFacet(max_length=config.max_template_length)
    if kind is FacetKind.QUALITY_SCORES:
        return QualityScoreFacet()
    if kind is FacetKind.GENOMIC_FEATURES:
        if feature_index is None:
            raise ValueError("The genomic_features facet requires a feature annotation (GFF)")
        return GenomicFeaturesFacet(feature_index, references)
    if kind is FacetKind.COVERAGE:
        if context is None:
            raise ValueError("The coverage facet can only be built after the first pass")
        return CoverageFacet(context, bin_width=config.coverage_bin_width, max_depth=config.coverage_max_depth)
    if kind is FacetKind.EDITS:
        if context is None:
            raise ValueError("The edits facet can only be built after the first pass")
        if reference is None:
            raise ValueError("The edits facet requires a reference FASTA")
        return EditsFacet(context, reference, edit_operations=config.edit_operations)
    raise ValueError(f"Unknown facet kind: {kind!r}")
