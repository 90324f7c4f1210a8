"""Trace Stat - frame call-tree baselines and anomaly attribution for profiler traces."""

from . import telemetry, tools
from .config import AnalysisConfig

__all__ = ["AnalysisConfig", "telemetry", "tools"]
