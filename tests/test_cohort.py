from pathlib import Path

import pytest

from ngsqc.cohort import SampleInput, parse_sample_sheet, run_cohort
from ngsqc.config import QCConfig
from ngsqc.errors import QCCancelled
from ngsqc.engine import CancellationToken
from ngsqc.models import AlignmentRecord, ReferenceSequence
from ngsqc.source import IterableRecordSource

REFS = [ReferenceSequence(0, "chr1", 1000)]


def _source_for(item: SampleInput) -> IterableRecordSource:
    n = int(item.path)
    recs = [
        AlignmentRecord(name=f"r{i}", flag=0, reference_id=0, reference_start=10 * i, cigar=((0, 10),))
        for i in range(n)
    ]
    return IterableRecordSource(recs, REFS, identity=item.path)


def test_cohort_preserves_input_order():
    samples = [SampleInput("c", "3"), SampleInput("a", "5"), SampleInput("b", "1")]
    config = QCConfig(facets=("general", "coverage"), max_workers=3)
    cohort = run_cohort(samples, config, source_factory=_source_for)
    assert cohort.samples == ("c", "a", "b")
    assert [r["general"]["counts"]["total"] for r in cohort] == [3, 5, 1]


def test_cohort_rejects_duplicate_names():
    samples = [SampleInput("a", "1"), SampleInput("a", "2")]
    with pytest.raises(ValueError):
        run_cohort(samples, source_factory=_source_for)


def test_cohort_cancellation_propagates():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(QCCancelled):
        run_cohort([SampleInput("a", "2")], QCConfig(facets=("general",)), cancel=token, source_factory=_source_for)


def test_parse_sample_sheet(tmp_path: Path):
    sheet = tmp_path / "samples.tsv"
    sheet.write_text("# sample\tpath\ns1\ta.bam\n\ns2\t/abs/b.bam\n", encoding="utf-8")
    samples = parse_sample_sheet(sheet)
    assert samples == [SampleInput("s1", str(tmp_path / "a.bam")), SampleInput("s2", "/abs/b.bam")]
    assert SampleInput.from_path("/x/NA12878.sorted.bam").sample == "NA12878"
