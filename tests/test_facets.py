import numpy as np
import pytest

from ngsqc.config import EDIT_DELETION, EDIT_INSERTION, EDIT_SOFT_CLIP, EDIT_SUBSTITUTION
from ngsqc.errors import MalformedAlignment
from ngsqc.facets import FacetKind, ReadProfile
from ngsqc.facets.coverage import CoverageFacet
from ngsqc.facets.edits import EditsFacet
from ngsqc.facets.gc_content import GCContentFacet, gc_bucket
from ngsqc.facets.general import GeneralMetricsFacet
from ngsqc.facets.quality_scores import QualityScoreFacet
from ngsqc.facets.template_length import TemplateLengthFacet
from ngsqc.models import (
    FLAG_PAIRED,
    FLAG_PROPER_PAIR,
    FLAG_READ1,
    FLAG_READ2,
    FLAG_REVERSE,
    AlignmentRecord,
    ReferenceSequence,
    parse_cigar_string,
)
from ngsqc.reference import InMemoryReferenceProvider

REF_SEQ = "ACGTACGTAC"


def make_record(
    name: str = "r1",
    *,
    flag: int = 0,
    start: int = 0,
    cigar: str = "",
    seq=None,
    quals=None,
    tlen: int = 0,
    mate_start: int = -1,
    mate_cigar=None,
) -> AlignmentRecord:
    return AlignmentRecord(
        name=name,
        flag=flag,
        reference_id=0 if start >= 0 else -1,
        reference_start=start,
        mapping_quality=60,
        cigar=parse_cigar_string(cigar),
        template_length=tlen,
        sequence=seq,
        qualities=quals,
        mate_reference_id=0 if mate_start >= 0 else -1,
        mate_reference_start=mate_start,
        mate_cigar=mate_cigar,
    )


def _context(refs, records):
    profile = ReadProfile(refs)
    for r in records:
        profile.process(r)
    return profile.context({})


def test_gc_bucket_examples():
    assert gc_bucket("GGCC") == 100
    assert gc_bucket("AATT") == 0
    assert gc_bucket("NNNN") is None
    assert gc_bucket("GCAT") == 50
    assert gc_bucket("gcNa") == 66


def test_gc_content_facet_skips_ambiguous_and_missing():
    facet = GCContentFacet()
    for seq in ("GGCC", "AATT", "NNNN", None):
        facet.process(make_record(seq=seq))
    res = facet.finalize()
    assert res["records_considered"] == 2
    assert res["ambiguous_only"] == 1
    assert res["missing_sequence"] == 1
    assert [list(p) for p in res["histogram"]["counts"]] == [[0, 1], [100, 1]]


def test_template_length_overflow_bucket():
    facet = TemplateLengthFacet(max_length=10)
    for tlen in (5, -5, 0, 50):
        facet.process(make_record(tlen=tlen))
    res = facet.finalize()
    assert res["records_considered"] == 4
    assert res["histogram"]["overflow"] == 1
    assert [list(p) for p in res["histogram"]["counts"]] == [[0, 1], [5, 2]]
    assert res["unknown_pct"] == pytest.approx(25.0)
    assert res["out_of_range_pct"] == pytest.approx(25.0)


def test_general_ratios_undefined_without_records():
    res = GeneralMetricsFacet().finalize()
    assert res["counts"]["total"] == 0
    assert all(v is None for v in res["ratios"].values())


def test_general_mate_checks():
    paired = FLAG_PAIRED | FLAG_PROPER_PAIR
    facet = GeneralMetricsFacet()
    records = [
        make_record("a", flag=paired | FLAG_READ1, start=100, cigar="50M", mate_start=200, mate_cigar="50M"),
        make_record("a", flag=paired | FLAG_READ2 | FLAG_REVERSE, start=200, cigar="50M", mate_start=100, mate_cigar="50M"),
        # mate position and mate CIGAR disagree with what the mate reports
        make_record("b", flag=paired | FLAG_READ1, start=300, cigar="50M", mate_start=450, mate_cigar="50M"),
        make_record("b", flag=paired | FLAG_READ2 | FLAG_REVERSE, start=400, cigar="50M", mate_start=300, mate_cigar="40M"),
    ]
    for r in records:
        facet.process(r)
    res = facet.finalize()
    mates = res["mates"]
    assert mates["pairs_checked"] == 2
    assert mates["mate_position_mismatches"] == 1
    assert mates["mate_cigar_mismatches"] == 1
    assert mates["mate_reference_mismatches"] == 0
    assert mates["mates_unresolved"] == 0
    assert res["counts"]["proper_pair"] == 4
    assert res["ratios"]["proper_pair_fraction"] == pytest.approx(1.0)


def test_general_mate_window_bounds_pending_reads():
    paired = FLAG_PAIRED
    facet = GeneralMetricsFacet(mate_window=1)
    for name, flag, start, mate in (
        ("a", FLAG_READ1, 100, 200),
        ("b", FLAG_READ1, 150, 250),
        ("a", FLAG_READ2, 200, 100),
        ("b", FLAG_READ2, 250, 150),
    ):
        facet.process(make_record(name, flag=paired | flag, start=start, cigar="10M", mate_start=mate))
    res = facet.finalize()
    assert res["mates"]["pairs_checked"] == 0
    assert res["mates"]["mates_unresolved"] == 4


def test_quality_scores():
    facet = QualityScoreFacet()
    facet.process(make_record(quals=(30, 30, 40, 40)))
    facet.process(make_record(quals=None))
    res = facet.finalize()
    assert res["records_considered"] == 1
    assert res["missing_qualities"] == 1
    assert [list(p) for p in res["per_base"]["counts"]] == [[30, 2], [40, 2]]
    assert [list(p) for p in res["per_record_mean"]["counts"]] == [[35, 1]]


def test_finalize_is_idempotent_and_freezes_facet():
    facet = TemplateLengthFacet()
    facet.process(make_record(tlen=10))
    first = facet.finalize()
    assert facet.finalize() is first
    with pytest.raises(RuntimeError):
        facet.process(make_record(tlen=10))
    with pytest.raises(TypeError):
        first.data["max_template_length"] = 5


def test_facet_kind_parse_and_passes():
    assert FacetKind.parse("template-length") is FacetKind.TEMPLATE_LENGTH
    assert FacetKind.parse(FacetKind.EDITS) is FacetKind.EDITS
    assert FacetKind.COVERAGE.passes == (1, 2)
    assert FacetKind.GENERAL.passes == (1,)
    with pytest.raises(ValueError):
        FacetKind.parse("bogus")


def test_coverage_bins_and_means():
    refs = [ReferenceSequence(0, "chr1", 2500)]
    records = [
        make_record("x", start=900, cigar="200M"),
        make_record("y", start=0, cigar="10M5D10M"),
    ]
    facet = CoverageFacet(_context(refs, records), bin_width=1000)
    for r in records:
        facet.process(r)
    res = facet.finalize()
    assert res["covered_bases"] == 220
    assert res["mean_coverage"] == pytest.approx(220 / 2500)
    chr1 = res["per_reference"]["chr1"]
    assert [list(b) for b in chr1["bins"]] == [[0, pytest.approx(0.12)], [1000, pytest.approx(0.1)], [2000, 0.0]]
    assert res["median_coverage"] == pytest.approx(0.1)


def test_coverage_saturates_instead_of_wrapping():
    refs = [ReferenceSequence(0, "chr1", 10)]
    records = [make_record(f"r{i}", start=0, cigar="10M") for i in range(30)]
    facet = CoverageFacet(_context(refs, records), bin_width=10, dtype=np.uint8)
    for r in records:
        facet.process(r)
    res = facet.finalize()
    assert res["covered_bases"] == 255
    assert res["saturated_bins"] == 5


def test_coverage_distribution_counts_rounded_bin_depths():
    refs = [ReferenceSequence(0, "chr1", 30)]
    records = [make_record(f"a{i}", start=0, cigar="10M") for i in range(25)]
    records += [make_record(f"b{i}", start=10, cigar="10M") for i in range(3)]
    facet = CoverageFacet(_context(refs, records), bin_width=10, max_depth=20)
    for r in records:
        facet.process(r)
    res = facet.finalize()
    dist = res["per_reference"]["chr1"]["coverage_distribution"]
    assert dist["total"] == 3
    assert dist["overflow"] == 1
    assert [list(p) for p in dist["counts"]] == [[0, 1], [3, 1]]
    assert res["bins_over_max_depth"] == 1


def test_coverage_rejects_alignment_past_reference_end():
    refs = [ReferenceSequence(0, "chr1", 100)]
    rec = make_record(start=90, cigar="20M")
    facet = CoverageFacet(_context(refs, [rec]))
    with pytest.raises(MalformedAlignment):
        facet.process(rec)


def _edits(records, **kwargs):
    refs = [ReferenceSequence(0, "chr1", len(REF_SEQ))]
    provider = InMemoryReferenceProvider({"chr1": REF_SEQ})
    facet = EditsFacet(_context(refs, records), provider, **kwargs)
    for r in records:
        facet.process(r)
    return facet.finalize()


def test_edits_substitution_by_read_cycle():
    fwd = make_record("f", start=0, cigar="10M", seq="ACGTTCGTAC")
    rev = make_record("r", flag=FLAG_REVERSE, start=0, cigar="10M", seq="ACGTTCGTAC")
    res = _edits([fwd, rev])
    assert res["events"][EDIT_SUBSTITUTION] == 2
    assert res["aligned_bases"] == 20
    assert res["substitution_rate"] == pytest.approx(0.1)
    assert [list(p) for p in res["edits_by_position"]] == [[4, 1], [5, 1]]
    assert res["records_with_edits"] == 2


def test_edits_insertion_and_deletion():
    ins = make_record("i", start=0, cigar="3M1I7M", seq="ACG" + "A" + "TACGTAC")
    dele = make_record("d", start=0, cigar="4M2D4M", seq="ACGT" + "GTAC")
    res = _edits([ins, dele])
    assert res["events"][EDIT_INSERTION] == 1
    assert res["bases"][EDIT_INSERTION] == 1
    assert res["events"][EDIT_DELETION] == 1
    assert res["bases"][EDIT_DELETION] == 2
    assert res["events"][EDIT_SUBSTITUTION] == 0
    assert [list(p) for p in res["edits_by_position_and_kind"][EDIT_INSERTION]] == [[3, 1]]
    assert [list(p) for p in res["edits_by_position_and_kind"][EDIT_DELETION]] == [[4, 1]]


def test_edits_deletion_cycle_is_strand_symmetric():
    # 4 read bases on each side of the deletion: the next base in read order is cycle 4 on both strands
    fwd = make_record("f", start=0, cigar="4M2D4M", seq="ACGT" + "GTAC")
    rev = make_record("r", flag=FLAG_REVERSE, start=0, cigar="4M2D4M", seq="ACGT" + "GTAC")
    assert [list(p) for p in _edits([fwd])["edits_by_position_and_kind"][EDIT_DELETION]] == [[4, 1]]
    assert [list(p) for p in _edits([rev])["edits_by_position_and_kind"][EDIT_DELETION]] == [[4, 1]]


def test_edits_insertion_marks_first_inserted_base_in_read_order():
    fwd = make_record("f", start=0, cigar="3M3I4M", seq="ACG" + "TTT" + "TACG")
    rev = make_record("r", flag=FLAG_REVERSE, start=0, cigar="3M3I4M", seq="ACG" + "TTT" + "TACG")
    fwd_res = _edits([fwd])
    rev_res = _edits([rev])
    assert fwd_res["bases"][EDIT_INSERTION] == 3
    assert [list(p) for p in fwd_res["edits_by_position_and_kind"][EDIT_INSERTION]] == [[3, 1]]
    assert [list(p) for p in rev_res["edits_by_position_and_kind"][EDIT_INSERTION]] == [[4, 1]]


def test_edits_soft_clips_are_opt_in():
    rec = make_record("s", start=2, cigar="2S8M", seq="AA" + "GTACGTAC")
    default = _edits([rec])
    assert default["events"][EDIT_SOFT_CLIP] == 1
    assert default["edits_by_position"] == ()
    assert default["records_with_edits"] == 0

    with_clips = _edits([rec], edit_operations=(EDIT_SUBSTITUTION, EDIT_SOFT_CLIP))
    assert [list(p) for p in with_clips["edits_by_position"]] == [[0, 1], [1, 1]]
    assert with_clips["records_with_edits"] == 1


def test_edits_rejects_cigar_sequence_length_mismatch():
    refs = [ReferenceSequence(0, "chr1", len(REF_SEQ))]
    rec = make_record(start=0, cigar="5M", seq=REF_SEQ)
    facet = EditsFacet(_context(refs, [rec]), InMemoryReferenceProvider({"chr1": REF_SEQ}))
    with pytest.raises(MalformedAlignment):
        facet.process(rec)
