from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pysam

from .models import (
    CIGAR_D,
    CIGAR_I,
    CIGAR_M,
    FLAG_DUPLICATE,
    FLAG_MATE_REVERSE,
    FLAG_PAIRED,
    FLAG_PROPER_PAIR,
    FLAG_READ1,
    FLAG_READ2,
    FLAG_REVERSE,
    FLAG_UNMAPPED,
    cigar_to_string,
)
from .utils import ensure_outdir, write_json

READ_LENGTH = 50
INSERT_SIZE = 150
N_PAIRS = 20
N_UNMAPPED = 2
CONTIGS = (("chr1", 2000), ("chr2", 500))

# 1-based inclusive GFF3 features on chr1
_FEATURES = (
    ("gene", 101, 600),
    ("exon", 101, 200),
    ("five_prime_UTR", 101, 120),
    ("CDS", 121, 180),
    ("three_prime_UTR", 181, 200),
    ("exon", 401, 500),
    ("CDS", 401, 500),
)


def _write_fasta(path: Path, contigs: Sequence[Tuple[str, str]]) -> None:
    lines = []
    for name, seq in contigs:
        lines.append(f">{name}")
        for i in range(0, len(seq), 60):
            lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _write_gff(path: Path, contig: str) -> None:
    lines = ["##gff-version 3"]
    for i, (ftype, start, end) in enumerate(_FEATURES):
        lines.append("\t".join([contig, "toy", ftype, str(start), str(end), ".", "+", ".", f"ID={ftype}{i}"]))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _make_read(
    name: str,
    flag: int,
    start0: int,
    seq: str,
    cigar: List[Tuple[int, int]],
    *,
    mate_start0: int = -1,
    tlen: int = 0,
    mate_cigar: Optional[List[Tuple[int, int]]] = None,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    if flag & FLAG_UNMAPPED:
        a.reference_id = -1
        a.reference_start = -1
        a.mapping_quality = 0
    else:
        a.reference_id = 0
        a.reference_start = start0
        a.mapping_quality = mapq
        a.cigartuples = cigar
    if mate_start0 >= 0:
        a.next_reference_id = 0
        a.next_reference_start = mate_start0
        a.template_length = tlen
    if mate_cigar is not None:
        a.set_tag("MC", cigar_to_string(tuple(mate_cigar)))
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def _pair_reads(ref_seq: str, i: int) -> Tuple[pysam.AlignedSegment, pysam.AlignedSegment]:
    """Read pair ``i``; pairs 0, 1 and 2 carry a substitution, an insertion and a deletion."""
    start1 = 100 + 50 * i
    start2 = start1 + INSERT_SIZE - READ_LENGTH
    seq1 = ref_seq[start1 : start1 + READ_LENGTH]
    cigar1 = [(CIGAR_M, READ_LENGTH)]
    if i == 0:
        seq1 = seq1[:10] + _mutate_base(seq1[10]) + seq1[11:]
    elif i == 1:
        seq1 = ref_seq[start1 : start1 + 20] + "TT" + ref_seq[start1 + 20 : start1 + 48]
        cigar1 = [(CIGAR_M, 20), (CIGAR_I, 2), (CIGAR_M, 28)]
    elif i == 2:
        seq1 = ref_seq[start1 : start1 + 20] + ref_seq[start1 + 23 : start1 + 53]
        cigar1 = [(CIGAR_M, 20), (CIGAR_D, 3), (CIGAR_M, 30)]
    seq2 = ref_seq[start2 : start2 + READ_LENGTH]
    cigar2 = [(CIGAR_M, READ_LENGTH)]

    flag1 = FLAG_PAIRED | FLAG_PROPER_PAIR | FLAG_READ1 | FLAG_MATE_REVERSE
    flag2 = FLAG_PAIRED | FLAG_PROPER_PAIR | FLAG_READ2 | FLAG_REVERSE
    if i == 3:
        flag1 |= FLAG_DUPLICATE

    name = f"pair{i:02d}"
    r1 = _make_read(name, flag1, start1, seq1, cigar1, mate_start0=start2, tlen=INSERT_SIZE, mate_cigar=cigar2)
    r2 = _make_read(name, flag2, start2, seq2, cigar2, mate_start0=start1, tlen=-INSERT_SIZE, mate_cigar=cigar1)
    return r1, r2


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny reference, BAM and GFF3 suitable for quick demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai), two contigs; only chr1 carries reads
    - toy.bam (+ .bai), 20 proper pairs plus 2 unmapped reads
    - toy_features.gff3
    - samples.tsv, a two-sample sheet for the cohort command

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(7)

    contigs = [(name, "".join(rng.choice("ACGT") for _ in range(length))) for name, length in CONTIGS]
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contigs)
    pysam.faidx(str(ref_fa))
    ref_seq = contigs[0][1]

    gff_path = outdir_p / "toy_features.gff3"
    _write_gff(gff_path, contigs[0][0])

    bam_path = outdir_p / "toy.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in CONTIGS],
    }

    mapped: List[pysam.AlignedSegment] = []
    for i in range(N_PAIRS):
        mapped.extend(_pair_reads(ref_seq, i))
    mapped.sort(key=lambda r: (r.reference_start, r.query_name))

    unmapped = []
    for i in range(N_UNMAPPED):
        start = rng.randrange(0, len(ref_seq) - READ_LENGTH)
        unmapped.append(_make_read(f"unmapped{i}", FLAG_UNMAPPED, -1, ref_seq[start : start + READ_LENGTH], []))

    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in mapped + unmapped:
            bam.write(r)

    pysam.index(str(bam_path))

    sheet = outdir_p / "samples.tsv"
    sheet.write_text(f"toy_a\t{bam_path.name}\ntoy_b\t{bam_path.name}\n", encoding="utf-8")

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "gff": str(gff_path),
        "sample_sheet": str(sheet),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
