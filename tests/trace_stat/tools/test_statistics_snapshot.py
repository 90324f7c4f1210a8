import math

import pytest

from trace_stat.exceptions import StaleStatisticError
from trace_stat.tools.frames_tree import FramesTree
from trace_stat.tools.statistics import StatisticsSnapshot


@pytest.fixture
def simple_snapshot(simple_frame_spans):
    snapshot = StatisticsSnapshot()
    snapshot.derive_from_frames(FramesTree.build(simple_frame_spans, 0, num_timers=3))
    return snapshot


def test_frame_durations_in_milliseconds(simple_snapshot):
    root = simple_snapshot.get(0)

    assert root.incl_duration.mean == 10000.0
    assert root.excl_duration.mean == 3000.0
    assert root.incl_duration.sample_count == 1


def test_children_branch_stats(simple_snapshot):
    first = simple_snapshot.get_branch(1, 0)
    second = simple_snapshot.get_branch(2, 0)

    assert first.common_stats.incl_duration.mean == 3000.0
    assert second.common_stats.excl_duration.mean == 4000.0
    assert first.num_calls.mean == 1.0
    assert first.num_calls.sample_count == 1


def test_root_has_no_branch(simple_snapshot):
    assert simple_snapshot.branch_keys(0) == []
    assert simple_snapshot.get_branch(0, 0) is None


def test_unknown_ids(simple_snapshot):
    assert simple_snapshot.get(42) is None
    assert simple_snapshot.get(-1) is None
    assert simple_snapshot.get_branch(42, 0) is None
    assert simple_snapshot.branch_keys(42) == []


def test_num_calls_counts_per_parent_occurrence(make_frame, make_history):
    """Each frame adds one sample: the number of calls under that parent."""
    snapshot = make_history(
        [
            make_frame(0.0, [(1, 3, 1)]),
            make_frame(1.0, [(1, 1, 1)]),
        ]
    )

    num_calls = snapshot.get_branch(1, 0).num_calls
    assert num_calls.sample_count == 2
    assert num_calls.mean == 2.0
    assert snapshot.get(1).incl_duration.sample_count == 4


def test_open_span_never_reaches_stats(make_span):
    spans = [
        make_span(0, 0, 0.0, 10.0),
        make_span(1, 1, 1.0, 4.0),
        make_span(2, 1, 5.0, math.inf),
    ]
    snapshot = StatisticsSnapshot()
    snapshot.derive_from_frames(FramesTree.build(spans, 0, num_timers=3))

    assert snapshot.get(2).incl_duration.sample_count == 0
    assert snapshot.get_branch(2, 0) is None
    for entry in snapshot.entries:
        assert all(math.isfinite(v) for v in entry.common.incl_duration.samples)
    # The open span does not count as exclusive time of its parent either
    assert snapshot.get(0).excl_duration.mean == 7000.0


def test_same_timer_under_different_parents(make_frame, make_history):
    snapshot = make_history([make_frame(0.0, [(1, 1, 4), (2, 1, 4)], nested={1: [(3, 2, 1)], 2: [(3, 1, 1)]})])

    assert sorted(snapshot.branch_keys(3)) == [1, 2]
    assert snapshot.get_branch(3, 1).num_calls.mean == 2.0
    assert snapshot.get_branch(3, 2).num_calls.mean == 1.0
    assert snapshot.get(3).incl_duration.sample_count == 3


def test_snapshot_keeps_accumulating(simple_frame_spans, make_span):
    snapshot = StatisticsSnapshot()
    snapshot.derive_from_frames(FramesTree.build(simple_frame_spans, 0, num_timers=3))
    snapshot.derive_from_frames(
        FramesTree.build([make_span(0, 0, 0.0, 20.0)], 0, num_timers=3)
    )

    root = snapshot.get(0)
    assert root.incl_duration.sample_count == 2
    assert root.incl_duration.mean == 15000.0


def test_snapshot_only_grows(simple_snapshot):
    simple_snapshot.ensure_size(1)
    assert len(simple_snapshot) == 3

    simple_snapshot.ensure_size(5)
    assert len(simple_snapshot) == 5
    assert simple_snapshot.get(4).incl_duration.sample_count == 0


def test_snapshot_sized_by_registry(make_span):
    snapshot = StatisticsSnapshot()
    snapshot.derive_from_frames(FramesTree.build([make_span(0, 0, 0.0, 1.0)], 0, num_timers=6))

    assert len(snapshot) == 6


def test_pending_samples_block_reads(simple_snapshot):
    simple_snapshot.entries[0].common.add(1.0, 1.0)

    with pytest.raises(StaleStatisticError):
        simple_snapshot.get(0)

    simple_snapshot.derive()
    assert simple_snapshot.get(0).incl_duration.sample_count == 2
