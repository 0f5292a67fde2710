import pytest

from ngsqc.histogram import Histogram


def test_overflow_and_summary():
    h = Histogram(10)
    for v in (3, 5, 5, 12):
        h.add(v)
    assert h.total == 4
    assert h.overflow == 1
    assert h.mean() == pytest.approx(13 / 3)
    assert h.median() == 5
    assert h.table() == [[3, 1], [5, 2]]

    s = h.summary()
    assert s["total"] == 4
    assert s["overflow"] == 1
    assert s["max_value"] == 10
    assert s["counts"] == [[3, 1], [5, 2]]
    assert set(s) == {"total", "overflow", "mean", "median", "p05", "p95", "max_value", "counts"}


def test_empty_histogram_is_undefined():
    h = Histogram(5)
    assert h.total == 0
    assert h.mean() is None
    assert h.median() is None
    assert h.max_observed() is None
    assert h.table() == []


def test_add_many_counts_overflow():
    h = Histogram(10)
    h.add_many([0, 1, 11, 11])
    assert h.total == 4
    assert h.overflow == 2
    assert h.get(0) == 1
    assert h.max_observed() == 1


def test_negative_values_rejected():
    h = Histogram(10)
    with pytest.raises(ValueError):
        h.add(-1)
    with pytest.raises(ValueError):
        h.add_many([1, -2])
