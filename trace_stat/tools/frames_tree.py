"""Reconstruction of per-frame call trees from a flat, depth-annotated span stream."""

import logging
import math
import weakref
from collections.abc import Iterable, Iterator

from ..decorators import instrumented_step
from ..schema import Span
from ..telemetry import get_meter, set_span_attribute

logger = logging.getLogger(__name__)

meter = get_meter(__name__)

frames_built = meter.create_counter(
    name="trace_stat.frames.built",
    description="Number of frames reconstructed from span logs",
    unit="1",
)
spans_dropped = meter.create_counter(
    name="trace_stat.spans.dropped",
    description="Spans skipped because of an unknown timer or an open interval",
    unit="1",
)


class FrameNode:
    """
    One span inside a frame.

    A node owns its children; the parent link is a weak reference used only to
    walk back up the tree while it is being built.
    """

    __slots__ = ("timer_id", "start_time", "end_time", "depth", "children", "_parent", "__weakref__")

    def __init__(
        self,
        timer_id: int,
        start_time: float,
        end_time: float,
        depth: int,
        parent: "FrameNode | None" = None,
    ):
        self.timer_id = timer_id
        self.start_time = start_time
        self.end_time = end_time
        self.depth = depth
        self.children: list[FrameNode] = []
        self._parent = weakref.ref(parent) if parent is not None else None

    @property
    def parent(self) -> "FrameNode | None":
        return self._parent() if self._parent is not None else None

    @property
    def duration(self) -> float:
        """Inclusive duration in seconds."""
        return self.end_time - self.start_time

    @property
    def exclusive_duration(self) -> float:
        """Duration in seconds not covered by direct children."""
        return self.duration - sum(c.duration for c in self.children)

    def add_child(self, span: Span) -> "FrameNode":
        child = FrameNode(span.timer_id, span.start_time, span.end_time, span.depth, parent=self)
        self.children.append(child)
        return child

    def walk(self) -> Iterator["FrameNode"]:
        """Yields this node and all descendants in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def __repr__(self) -> str:
        return (
            f"FrameNode(timer_id={self.timer_id}, start_time={self.start_time}, "
            f"end_time={self.end_time}, depth={self.depth}, children={len(self.children)})"
        )


def _is_usable(span: Span, num_timers: int | None) -> bool:
    if span.timer_id < 0 or (num_timers is not None and span.timer_id >= num_timers):
        return False
    return math.isfinite(span.start_time) and math.isfinite(span.end_time)


class FramesTree:
    """
    Forest of call trees, one per occurrence of the frame boundary timer.

    Example:
        >>> tree = FramesTree.build(spans, frame_timer_id=0, num_timers=registry.size)
        >>> [len(frame.children) for frame in tree.frames]
    """

    def __init__(self, frames: list[FrameNode] | None = None, max_num_stats: int = 0):
        self.frames: list[FrameNode] = frames or []
        self.max_num_stats = max_num_stats

    @classmethod
    @instrumented_step("Building frames tree")
    def build(
        cls,
        spans: Iterable[Span],
        frame_timer_id: int | None,
        num_timers: int | None = None,
    ) -> "FramesTree":
        """
        Reconstructs the frames of a translated span stream in one pass.

        Args:
            spans: Spans in capture order, timer ids already global.
            frame_timer_id: Global id of the frame boundary timer. None when the
                boundary timer is not part of the trace, which yields an empty tree.
            num_timers: Number of known global ids; larger ids are dropped.

        Returns:
            The forest of frames.
        """
        max_id = -1
        tree = cls(max_num_stats=num_timers or 0)
        if frame_timer_id is None:
            logger.warning("Frame timer not found in the timers table, no frames built")
            return tree

        spans = list(spans)
        dropped = 0
        i = 0
        while i < len(spans):
            span = spans[i]
            if span.timer_id != frame_timer_id or not span.is_closed:
                i += 1
                continue

            root = FrameNode(span.timer_id, span.start_time, span.end_time, span.depth)
            tree.frames.append(root)
            max_id = max(max_id, root.timer_id)

            node = root
            i += 1
            while i < len(spans) and spans[i].depth > root.depth:
                span = spans[i]
                i += 1
                while node.depth >= span.depth:
                    node = node.parent
                if not _is_usable(span, num_timers):
                    dropped += 1
                    continue
                node = node.add_child(span)
                max_id = max(max_id, node.timer_id)

        tree.max_num_stats = max(tree.max_num_stats, max_id + 1)
        frames_built.add(len(tree.frames))
        set_span_attribute("trace_stat.frames", len(tree.frames))
        if dropped:
            spans_dropped.add(dropped)
            logger.debug(f"Dropped {dropped} spans with unknown timers or open intervals")
        logger.info(f"Built {len(tree.frames)} frames")
        return tree

    def nodes(self) -> Iterator[FrameNode]:
        """All nodes of all frames, frame by frame in pre-order."""
        for frame in self.frames:
            yield from frame.walk()

    def __len__(self) -> int:
        return len(self.frames)
