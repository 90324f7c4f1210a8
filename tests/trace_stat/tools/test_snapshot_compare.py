import pytest

from trace_stat.schema import StatView
from trace_stat.tools.statistics import (
    EXCL_DURATION,
    INCL_DURATION,
    NUM_CALLS,
    StatisticsSnapshot,
    compare,
    compare_stat,
    rank_comparisons,
)


@pytest.fixture
def stable(make_frame, make_history):
    return make_history(
        [make_frame(float(i), [(1, 2, 2), (2, 1, 1)]) for i in range(4)],
        num_timers=3,
    )


@pytest.fixture
def tested(make_frame, make_history):
    return make_history(
        [make_frame(float(i), [(1, 3, 4), (3, 1, 2)]) for i in range(4)],
        num_timers=4,
    )


def _by_key(comparisons):
    return {
        (c.timer_id, c.parent_id, m.metric): (c, m)
        for c in comparisons
        for m in c.metrics
    }


def test_record_counts(stable, tested):
    comparisons = compare(stable, tested)

    common = [c for c in comparisons if c.parent_id is None]
    branch = [c for c in comparisons if c.parent_id is not None]

    # One timer-wide record per id of the larger snapshot
    assert [c.timer_id for c in common] == [0, 1, 2, 3]
    assert all(len(c.metrics) == 2 for c in common)
    # Three single-metric records per (timer, parent) on either side: (1,0), (2,0), (3,0)
    assert len(branch) == 9
    assert all(len(c.metrics) == 1 for c in branch)
    assert {c.metrics[0].metric for c in branch} == {INCL_DURATION, EXCL_DURATION, NUM_CALLS}


def test_missing_side_counts_as_zero(stable, tested):
    comparisons = _by_key(compare(stable, tested))

    _, metric = comparisons[(3, 0, NUM_CALLS)]
    assert metric.lhs.mean == 0.0
    assert metric.rhs.mean == 1.0
    assert metric.diff.mean.absolute == 1.0
    assert metric.diff.mean.relative == 1.0

    _, metric = comparisons[(2, 0, INCL_DURATION)]
    assert metric.rhs.sample_count == 0
    assert metric.diff.mean.relative == -1.0


def test_compare_is_antisymmetric(stable, tested):
    forward = _by_key(compare(stable, tested))
    backward = _by_key(compare(tested, stable))

    assert forward.keys() == backward.keys()
    for key, (comparison, metric) in forward.items():
        other_comparison, other = backward[key]
        for field in ("mean", "variance", "standard_deviation", "median"):
            delta = getattr(metric.diff, field)
            other_delta = getattr(other.diff, field)
            assert delta.absolute == pytest.approx(-other_delta.absolute)
            assert delta.relative == pytest.approx(-other_delta.relative)
        assert comparison.determinant == pytest.approx(other_comparison.determinant)


def test_identical_snapshots_have_zero_determinant(stable):
    comparisons = compare(stable, stable)

    assert comparisons
    assert all(c.determinant == 0.0 for c in comparisons)


def test_empty_snapshots():
    assert compare(StatisticsSnapshot(), StatisticsSnapshot()) == []


def test_relative_change_against_larger_magnitude():
    diff = compare_stat(
        StatView(mean=4.0, variance=1.0, standard_deviation=1.0, median=4.0, sample_count=3),
        StatView(mean=2.0, variance=1.0, standard_deviation=1.0, median=8.0, sample_count=3),
    )

    assert diff.mean.absolute == -2.0
    assert diff.mean.relative == -0.5
    assert diff.median.relative == 0.5
    assert diff.variance.relative == 0.0
    assert diff.determinant == pytest.approx(-2.0 * -0.5 + 4.0 * 0.5)


def test_rank_by_descending_determinant(stable, tested):
    ranked = rank_comparisons(compare(stable, tested))
    determinants = [c.determinant for c in ranked]

    assert determinants == sorted(determinants, reverse=True)
    assert determinants[0] > 0
