"""Persistence of statistics snapshots and the timer name registry.

Both are stored as gzip-compressed JSON documents produced by their Pydantic
models. Every read or write handles the whole file in one call.
"""

import gzip
import logging
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from ..config import STATS_SUFFIX
from ..exceptions import SnapshotFormatError
from .registry import TimerRegistry, TimerRegistryState
from .statistics import StatisticsSnapshot

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _write_model(path: Path, model: BaseModel) -> None:
    path.write_bytes(gzip.compress(model.model_dump_json().encode("utf-8")))


def _read_model(path: Path, model_cls: type[M]) -> M:
    try:
        payload = gzip.decompress(path.read_bytes())
        return model_cls.model_validate_json(payload)
    except (OSError, EOFError, ValidationError) as e:
        raise SnapshotFormatError(f"Failed to decode {path}: {e}") from e


def generate_stats_filename(now: datetime | None = None) -> str:
    """Timestamped snapshot name used when none is given."""
    now = now or datetime.now()
    return f"stats_{now:%d-%m-%Y_%H-%M-%S}{STATS_SUFFIX}"


def normalize_stats_path(path: str | Path) -> Path:
    path = str(path)
    if not path.endswith(STATS_SUFFIX):
        path += STATS_SUFFIX
    return Path(path)


def is_stats_file(path: str | Path) -> bool:
    """True if the path names an existing snapshot file."""
    return str(path).endswith(STATS_SUFFIX) and Path(path).is_file()


def save_stats(snapshot: StatisticsSnapshot, path: str | Path) -> Path:
    """
    Writes a snapshot, appending the .stats suffix when missing.

    Returns:
        The path actually written.
    """
    target = normalize_stats_path(path)
    logger.info(f"Saving stats to {target}")
    _write_model(target, snapshot)
    return target


def load_stats(path: str | Path) -> StatisticsSnapshot | None:
    """
    Reads a snapshot.

    Returns:
        The snapshot, or None when the path lacks the .stats suffix or does not
        exist. A file that exists but cannot be decoded raises
        SnapshotFormatError.
    """
    if not is_stats_file(path):
        return None

    logger.info(f"Loading stats from {path}")
    return _read_model(Path(path), StatisticsSnapshot)


def load_registry(path: str | Path) -> TimerRegistry:
    """Reads the timer registry, starting a new one if the file does not exist."""
    path = Path(path)
    if not path.is_file():
        logger.info("No timers map found, creating a new one")
        return TimerRegistry()

    logger.info(f"Loading timers map from {path}")
    return TimerRegistry.from_state(_read_model(path, TimerRegistryState))


def save_registry(registry: TimerRegistry, path: str | Path) -> None:
    logger.info(f"Saving timers map to {path}")
    _write_model(Path(path), registry.to_state())
