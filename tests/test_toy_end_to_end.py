import json
from pathlib import Path

import pytest

from ngsqc.cli import main
from ngsqc.config import QCConfig
from ngsqc.engine import run_qc
from ngsqc.errors import SourceNotReplayable
from ngsqc.reference import FastaReferenceProvider
from ngsqc.source import BamRecordSource
from ngsqc.toy_data import make_toy_data


@pytest.fixture(scope="module")
def toy(tmp_path_factory):
    return make_toy_data(outdir=tmp_path_factory.mktemp("toy"))


def test_toy_qc_via_cli(toy, tmp_path: Path):
    outdir = tmp_path / "qc"
    rc = main(
        [
            "qc",
            "--bam",
            toy["bam"],
            "--reference-fasta",
            toy["ref_fa"],
            "--features-gff",
            toy["gff"],
            "--outdir",
            str(outdir),
            "--no-progress",
        ]
    )
    assert rc == 0
    assert (outdir / "report.html").exists()
    assert (outdir / "logs" / "qc.log").exists()

    report = json.loads((outdir / "qc.json").read_text())
    assert report["sample"] == "toy"
    assert report["passes_executed"] == 2
    assert report["records_processed"] == [42, 42]
    facets = report["facets"]
    assert list(facets) == sorted(
        ["general", "template_length", "gc_content", "quality_scores", "genomic_features", "coverage", "edits"]
    )

    general = facets["general"]["data"]
    assert general["counts"]["total"] == 42
    assert general["counts"]["mapped"] == 40
    assert general["counts"]["unmapped"] == 2
    assert general["counts"]["duplicate"] == 1
    assert general["ratios"]["proper_pair_fraction"] == pytest.approx(1.0)
    assert general["mates"]["pairs_checked"] == 20
    assert general["mates"]["mate_cigar_mismatches"] == 0

    tlen = facets["template_length"]["data"]
    assert tlen["histogram"]["counts"] == [[0, 2], [150, 40]]

    edits = facets["edits"]["data"]
    assert edits["events"]["substitution"] == 1
    assert edits["events"]["insertion"] == 1
    assert edits["bases"]["insertion"] == 2
    assert edits["events"]["deletion"] == 1
    assert edits["bases"]["deletion"] == 3
    assert edits["aligned_bases"] == 1998
    assert edits["records_skipped"] == 0

    cov = facets["coverage"]["data"]
    assert cov["covered_bases"] == 1998
    assert cov["mean_coverage"] == pytest.approx(1998 / 2500)
    assert cov["per_reference"]["chr2"]["mean_coverage"] == 0.0

    feats = facets["genomic_features"]["data"]
    assert feats["counts"]["gene"] == 18
    assert feats["counts"]["exon"] == 6
    assert feats["no_overlap"] == 22
    assert feats["unmapped_skipped"] == 2


def test_toy_bam_source_with_reference(toy):
    ref = FastaReferenceProvider(toy["ref_fa"])
    try:
        src = BamRecordSource(toy["bam"])
        assert [r.name for r in src.references] == ["chr1", "chr2"]
        report = run_qc(src, QCConfig(facets=("edits",)), reference=ref, sample="toy")
        assert report["edits"]["substitution_rate"] == pytest.approx(1 / 1998)
    finally:
        ref.close()


def test_stdin_like_source_is_single_pass(toy, monkeypatch):
    src = BamRecordSource(toy["bam"])
    monkeypatch.setattr(BamRecordSource, "replayable", property(lambda self: False))
    with pytest.raises(SourceNotReplayable):
        run_qc(src, QCConfig(facets=("coverage",)))


def test_toy_cohort_via_cli(toy, tmp_path: Path):
    outdir = tmp_path / "cohort"
    rc = main(
        [
            "cohort",
            "--samples",
            toy["sample_sheet"],
            "--workers",
            "2",
            "--facets",
            "general,coverage",
            "--outdir",
            str(outdir),
            "--no-progress",
        ]
    )
    assert rc == 0
    cohort = json.loads((outdir / "cohort.qc.json").read_text())
    assert [s["sample"] for s in cohort["samples"]] == ["toy_a", "toy_b"]
    assert (outdir / "samples" / "toy_a.qc.json").exists()
    assert (outdir / "cohort.report.html").exists()


def test_cli_reports_errors_with_exit_code(toy, tmp_path: Path, capsys):
    rc = main(
        [
            "qc",
            "--bam",
            toy["bam"],
            "--facets",
            "edits",
            "--outdir",
            str(tmp_path / "err"),
            "--no-progress",
        ]
    )
    assert rc == 2
    assert "ValueError" in capsys.readouterr().err


def test_make_toy_data_dry_run(tmp_path: Path, capsys):
    assert main(["make-toy-data", "--outdir", str(tmp_path / "t"), "--dry-run"]) == 0
    assert "Would write toy data" in capsys.readouterr().out
    assert not (tmp_path / "t").exists()
