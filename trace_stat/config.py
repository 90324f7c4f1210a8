"""Analysis configuration for Trace Stat.

Defaults match the capture layout of the game-thread profiler traces this tool
was written for and can be overridden through environment variables or CLI
parameters.
"""

import logging
import os
from dataclasses import dataclass, replace

from .exceptions import InvalidParameterError

logger = logging.getLogger(__name__)

DEFAULT_THREAD_ID = 2
DEFAULT_FRAME_TIMER = "FEngineLoop::Tick"
DEFAULT_REGISTRY_PATH = "timersmap"
DEFAULT_RESULTS_PATH = "results.txt"
STATS_SUFFIX = ".stats"

# Classifier thresholds
RELEVANCE_THRESHOLD = 10  # Minimum sample count (exclusive) for a usable baseline
RARE_EVENT_RATIO = 0.1  # Fraction of the sibling median below which a call is rare
NEGLIGIBLE_DURATION = 1e-5  # Seconds; smaller call groups are not inspected


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_number(name: str, default: float, cast: type) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise InvalidParameterError(f"Environment variable {name}={raw!r} is invalid: {e}")


@dataclass(frozen=True)
class AnalysisConfig:
    """Settings for one invocation."""

    thread_id: int = DEFAULT_THREAD_ID
    frame_timer: str = DEFAULT_FRAME_TIMER
    registry_path: str = DEFAULT_REGISTRY_PATH
    results_path: str = DEFAULT_RESULTS_PATH
    relevance_threshold: int = RELEVANCE_THRESHOLD
    rare_event_ratio: float = RARE_EVENT_RATIO
    negligible_duration: float = NEGLIGIBLE_DURATION

    @classmethod
    def from_env(cls) -> "AnalysisConfig":
        """Create a configuration from TRACE_STAT_* environment variables."""
        config = cls(
            thread_id=int(_env_number("TRACE_STAT_THREAD_ID", DEFAULT_THREAD_ID, int)),
            frame_timer=_env("TRACE_STAT_FRAME_TIMER", DEFAULT_FRAME_TIMER),
            registry_path=_env("TRACE_STAT_REGISTRY_PATH", DEFAULT_REGISTRY_PATH),
            results_path=_env("TRACE_STAT_RESULTS_PATH", DEFAULT_RESULTS_PATH),
            relevance_threshold=int(
                _env_number("TRACE_STAT_RELEVANCE_THRESHOLD", RELEVANCE_THRESHOLD, int)
            ),
            rare_event_ratio=_env_number(
                "TRACE_STAT_RARE_EVENT_RATIO", RARE_EVENT_RATIO, float
            ),
            negligible_duration=_env_number(
                "TRACE_STAT_NEGLIGIBLE_DURATION", NEGLIGIBLE_DURATION, float
            ),
        )
        logger.debug(f"Loaded configuration: {config}")
        return config

    def with_overrides(
        self, thread_id: int | None = None, frame_timer: str | None = None
    ) -> "AnalysisConfig":
        """Return a copy with the per-run CLI overrides applied."""
        changes: dict[str, object] = {}
        if thread_id is not None:
            changes["thread_id"] = thread_id
        if frame_timer is not None:
            changes["frame_timer"] = frame_timer
        return replace(self, **changes)
