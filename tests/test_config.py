from pathlib import Path

import pytest

from ngsqc.config import EDIT_SOFT_CLIP, QCConfig, config_from_mapping, load_config


def test_defaults():
    cfg = QCConfig()
    assert cfg.coverage_bin_width == 1000
    assert cfg.coverage_max_depth == 1000
    assert cfg.max_template_length == 1024
    assert cfg.facets is None
    assert EDIT_SOFT_CLIP not in cfg.edit_operations
    assert cfg.feature_names.coding_sequence == "CDS"


def test_load_yaml(tmp_path: Path):
    path = tmp_path / "qc.yaml"
    path.write_text(
        "coverage_bin_width: 500\n"
        "facets: [general, coverage]\n"
        "edit_operations: [substitution, soft_clip]\n"
        "feature_names:\n"
        "  gene: Gene\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.coverage_bin_width == 500
    assert cfg.facets == ("general", "coverage")
    assert cfg.edit_operations == ("substitution", "soft_clip")
    assert cfg.feature_names.gene == "Gene"
    assert cfg.feature_names.exon == "exon"


def test_empty_yaml_gives_defaults(tmp_path: Path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == QCConfig()


def test_unknown_keys_and_bad_values_rejected():
    with pytest.raises(ValueError):
        config_from_mapping({"bin_width": 10})
    with pytest.raises(ValueError):
        QCConfig(coverage_bin_width=0)
    with pytest.raises(ValueError):
        QCConfig(coverage_max_depth=-1)
    with pytest.raises(ValueError):
        QCConfig(edit_operations=("mismatch",))
    with pytest.raises(ValueError):
        QCConfig(max_skipped_fraction=1.5)


def test_overrides_ignore_none():
    cfg = QCConfig(gc_resolution=50).with_overrides(gc_resolution=None, mate_window=10)
    assert cfg.gc_resolution == 50
    assert cfg.mate_window == 10
