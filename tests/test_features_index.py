import gzip
from pathlib import Path

import pytest

from ngsqc.config import FeatureNames
from ngsqc.errors import IndexBuildFailure
from ngsqc.facets.genomic_features import GenomicFeaturesFacet
from ngsqc.features import GenomicFeatureIndex, build_feature_index, load_gff_intervals
from ngsqc.models import AlignmentRecord, ReferenceSequence, parse_cigar_string
from ngsqc.validation import annotation_contig_map


def _index() -> GenomicFeatureIndex:
    return GenomicFeatureIndex.build(
        {
            "chr1": [(100, 200, "exon"), (150, 300, "CDS"), (1000, 1100, "exon")],
            "chr2": [(0, 50, "gene")],
        }
    )


def test_overlap_queries_are_half_open():
    idx = _index()
    assert idx.overlapping_categories("chr1", 190, 210) == {"exon", "CDS"}
    assert idx.overlapping_categories("chr1", 250, 260) == {"CDS"}
    assert idx.overlapping_categories("chr1", 300, 310) == frozenset()
    assert idx.overlapping_categories("chr1", 50, 101) == {"exon"}
    assert idx.overlapping_categories("chr3", 0, 10) == frozenset()
    assert idx.overlapping("chr1", 1050, 1051) == [(1000, 1100, "exon")]
    assert len(idx) == 4
    assert idx.categories == ("CDS", "exon", "gene")


def test_long_interval_found_behind_short_ones():
    idx = GenomicFeatureIndex.build({"chr1": [(0, 10_000, "gene"), (10, 20, "exon"), (30, 40, "exon")]})
    assert idx.overlapping_categories("chr1", 5000, 5001) == {"gene"}


@pytest.mark.parametrize("interval", [(10, 5, "exon"), (-1, 5, "exon")])
def test_invalid_intervals_fail(interval):
    with pytest.raises(IndexBuildFailure):
        GenomicFeatureIndex.build({"chr1": [interval]})


def _write_gff(path: Path, lines) -> Path:
    path.write_text("\n".join(["##gff-version 3"] + lines) + "\n", encoding="utf-8")
    return path


def test_load_gff_converts_to_zero_based(tmp_path: Path):
    gff = _write_gff(
        tmp_path / "a.gff3",
        [
            "1\tsrc\tgene\t101\t600\t.\t+\t.\tID=g1",
            "1\tsrc\texon\t101\t200\t.\t+\t.\tID=e1",
            "1\tsrc\ttranscript\t101\t600\t.\t+\t.\tID=t1",
            "##FASTA",
            ">ignored",
        ],
    )
    intervals = load_gff_intervals(gff)
    assert sorted(intervals["1"]) == [(100, 200, "exon"), (100, 600, "gene")]


def test_load_gff_reads_gzip(tmp_path: Path):
    path = tmp_path / "a.gff3.gz"
    with gzip.open(path, "wt") as fh:
        fh.write("chr1\tsrc\tCDS\t1\t10\t.\t+\t0\tID=c1\n")
    assert load_gff_intervals(path)["chr1"] == [(0, 10, "CDS")]


def test_load_gff_rejects_malformed_lines(tmp_path: Path):
    gff = _write_gff(tmp_path / "bad.gff3", ["chr1\tsrc\texon\t101\t200\t.\t+"])
    with pytest.raises(IndexBuildFailure):
        load_gff_intervals(gff)
    gff = _write_gff(tmp_path / "bad2.gff3", ["chr1\tsrc\texon\t300\t200\t.\t+\t.\tID=x"])
    with pytest.raises(IndexBuildFailure):
        load_gff_intervals(gff)


def test_load_gff_rejects_non_integer_coordinates(tmp_path: Path):
    gff = _write_gff(tmp_path / "bad.gff3", ["chr1\tsrc\texon\tabc\t200\t.\t+\t.\tID=x"])
    with pytest.raises(IndexBuildFailure):
        load_gff_intervals(gff)


def test_load_gff_tolerates_blank_lines_and_missing_final_newline(tmp_path: Path):
    gff = tmp_path / "a.gff3"
    gff.write_text(
        "##gff-version 3\n\nchr1\tsrc\texon\t11\t20\t.\t+\t.\tID=e1\n\nchr1\tsrc\tCDS\t15\t18\t.\t+\t0\tID=c1",
        encoding="utf-8",
    )
    assert sorted(load_gff_intervals(gff)["chr1"]) == [(10, 20, "exon"), (14, 18, "CDS")]


def test_custom_feature_names(tmp_path: Path):
    gff = _write_gff(tmp_path / "a.gff3", ["chr1\tsrc\tGene\t1\t10\t.\t+\t.\tID=g"])
    names = FeatureNames(gene="Gene")
    idx = build_feature_index(gff, names)
    assert "Gene" in idx.categories
    assert idx.overlapping_categories("chr1", 0, 1) == {"Gene"}


def test_contig_style_is_harmonized_with_header(tmp_path: Path):
    gff = _write_gff(tmp_path / "a.gff3", ["1\tsrc\texon\t1\t10\t.\t+\t.\tID=e"])
    idx = build_feature_index(gff, header_contigs=["chr1", "chr2"])
    assert "chr1" in idx
    with pytest.raises(ValueError):
        annotation_contig_map(["scaffold_7"], ["chr1"], "ucsc")


def _rec(start, cigar, ref_id=0, flag=0):
    return AlignmentRecord(
        name="r",
        flag=flag,
        reference_id=ref_id,
        reference_start=start,
        cigar=parse_cigar_string(cigar),
    )


def test_genomic_features_facet_counts_each_category_once():
    refs = [ReferenceSequence(0, "chr1", 5000), ReferenceSequence(1, "chrX", 100)]
    facet = GenomicFeaturesFacet(_index(), refs)
    facet.process(_rec(190, "20M"))  # exon + CDS
    facet.process(_rec(120, "10M"))  # exon only
    facet.process(_rec(2000, "10M"))  # nothing
    facet.process(_rec(0, "10M", ref_id=1))  # contig without annotation
    facet.process(AlignmentRecord(name="u", flag=4))
    res = facet.finalize()
    assert res["counts"]["exon"] == 2
    assert res["counts"]["CDS"] == 1
    assert res["counts"]["gene"] == 0
    assert res["no_overlap"] == 2
    assert res["unindexed_reference"] == 1
    assert res["unmapped_skipped"] == 1
    assert res["records_considered"] == 4
