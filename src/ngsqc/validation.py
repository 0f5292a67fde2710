from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from .models import ReferenceSequence
from .reference import ReferenceProvider

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig


def annotation_contig_map(
    annotation_contigs: Sequence[str],
    bam_contigs: Sequence[str],
    requested: str = "auto",
) -> Dict[str, str]:
    """Map annotation contig names onto the alignment header's naming style.

    Raises ValueError when no annotation contig matches the header afterwards.
    """
    ann_style = detect_contig_style(annotation_contigs)
    bam_style = detect_contig_style(bam_contigs)
    target_style = requested
    if requested == "auto":
        target_style = bam_style if bam_style != "unknown" else ann_style

    mapping = {c: c for c in annotation_contigs}
    if ann_style != target_style:
        logger.warning(
            "Contig style mismatch detected (annotation=%s, BAM=%s). Remapping annotation to %s style.",
            ann_style,
            bam_style,
            target_style,
        )
        mapping = {c: remap_contig(c, target_style) for c in annotation_contigs}

    overlap = set(mapping.values()).intersection(bam_contigs)
    if annotation_contigs and not overlap:
        raise ValueError(
            "Contig mismatch between BAM and annotation (e.g., chr1 vs 1). "
            "Use --contig-style {ucsc,ensembl,auto} to override."
        )
    return mapping


def check_reference_concordance(
    references: Sequence[ReferenceSequence],
    provider: ReferenceProvider,
) -> List[str]:
    """Check that header sequences exist in the reference with matching lengths.

    Returns the header sequence names missing from the reference (logged as a
    warning; the edits facet skips their records). A length disagreement means
    the wrong reference was supplied and raises ValueError.
    """
    missing: List[str] = []
    for ref in references:
        length = provider.length(ref.name)
        if length is None:
            missing.append(ref.name)
            continue
        if length != ref.length:
            raise ValueError(
                f"Reference length mismatch for {ref.name}: header says {ref.length}, "
                f"FASTA has {length}. Did you supply the correct reference?"
            )
    if missing:
        logger.warning(
            "%d header sequence(s) not found in the reference FASTA (e.g. %s); "
            "edits will not be computed for their records.",
            len(missing),
            missing[0],
        )
    return missing
