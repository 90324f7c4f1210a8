"""Registry mapping timer names to ids that stay stable across captures."""

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TimerRegistryState(BaseModel):
    """Persisted form of the registry: names in id order."""

    names: list[str] = Field(default_factory=list)


class TimerRegistry:
    """
    Bidirectional timer name <-> global id mapping.

    Ids are dense and assigned in first-seen order, so an id handed out once is
    valid for the lifetime of the registry file. Trace-local timer ids are only
    meaningful inside the trace that produced them and must be translated
    through this registry before statistics are recorded.

    Example:
        >>> registry = TimerRegistry()
        >>> registry.get_id("FEngineLoop::Tick")
        0
        >>> registry.try_get_id("Unknown") is None
        True
    """

    def __init__(self, names: list[str] | None = None):
        self._id_to_name: list[str] = []
        self._name_to_id: dict[str, int] = {}
        for name in names or []:
            self.get_id(name)

    def get_id(self, name: str) -> int:
        """Return the id of a name, registering it if it is new."""
        found = self._name_to_id.get(name)
        if found is not None:
            return found

        new_id = len(self._id_to_name)
        self._id_to_name.append(name)
        self._name_to_id[name] = new_id
        logger.debug(f"Registered timer '{name}' as {new_id}")
        return new_id

    def try_get_id(self, name: str) -> int | None:
        """Return the id of a name without registering it."""
        return self._name_to_id.get(name)

    def get_name(self, timer_id: int) -> str:
        """Return the name of an id, or an empty string when out of range."""
        if timer_id < 0 or timer_id >= len(self._id_to_name):
            return ""
        return self._id_to_name[timer_id]

    @property
    def size(self) -> int:
        return len(self._id_to_name)

    def to_state(self) -> TimerRegistryState:
        return TimerRegistryState(names=list(self._id_to_name))

    @classmethod
    def from_state(cls, state: TimerRegistryState) -> "TimerRegistry":
        return cls(state.names)
