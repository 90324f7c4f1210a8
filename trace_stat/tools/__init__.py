"""Tools for building, accumulating and analyzing frame statistics."""

from .frame_analyzer import (
    ExceptionContainer,
    FrameAnalyzer,
    analyze_frames,
    calculate_deviation,
)
from .frames_tree import FrameNode, FramesTree
from .registry import TimerRegistry
from .snapshot_store import (
    load_registry,
    load_stats,
    save_registry,
    save_stats,
)
from .statistics import (
    BranchStats,
    Stat,
    Stats,
    StatisticsSnapshot,
    compare,
    rank_comparisons,
)

__all__ = [
    "BranchStats",
    "ExceptionContainer",
    "FrameAnalyzer",
    "FrameNode",
    "FramesTree",
    "Stat",
    "Stats",
    "StatisticsSnapshot",
    "TimerRegistry",
    "analyze_frames",
    "calculate_deviation",
    "compare",
    "load_registry",
    "load_stats",
    "rank_comparisons",
    "save_registry",
    "save_stats",
]
