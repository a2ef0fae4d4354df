"""Active experiment conditions.

When a trial starts, the workflow pushes each of its independent-variable
assignments into a condition sink so downstream telemetry can record which
conditions were active. The workflow never reads the sink back.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol


class ConditionSink(Protocol):
    """Anything that accepts condition values."""

    def set_condition(self, name: str, value: str, trial_id: str | None = None) -> Any: ...


@dataclass(frozen=True)
class ConditionChange:
    """One recorded write to the cache."""

    version: int
    name: str
    value: str
    previous: str | None
    trial_id: str | None
    timestamp: datetime


class ConditionCache:
    """Versioned in-memory condition store.

    Example:
        cache = ConditionCache()
        cache.set_condition("lighting", "dim")
        cache.get("lighting")  # "dim"
    """

    def __init__(self, on_change: Callable[[str, str | None, str], None] | None = None):
        """Initialize the cache.

        Args:
            on_change: Callback on every write (name, old_value, new_value).
        """
        self._values: dict[str, str] = {}
        self._history: list[ConditionChange] = []
        self._version = 0
        self._on_change = on_change
        self._lock = threading.RLock()

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def set_condition(self, name: str, value: str, trial_id: str | None = None) -> int:
        """Set a condition value and return the new version."""
        with self._lock:
            previous = self._values.get(name)
            self._values[name] = value
            self._version += 1
            self._history.append(
                ConditionChange(
                    version=self._version,
                    name=name,
                    value=value,
                    previous=previous,
                    trial_id=trial_id,
                    timestamp=datetime.now(),
                )
            )
            version = self._version

        if self._on_change:
            self._on_change(name, previous, value)
        return version

    def get(self, name: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._values.get(name, default)

    def snapshot(self) -> dict[str, str]:
        """Copy of the current values."""
        with self._lock:
            return dict(self._values)

    def history(self, name: str | None = None) -> list[ConditionChange]:
        """Recorded writes, optionally for one condition only."""
        with self._lock:
            if name is None:
                return list(self._history)
            return [change for change in self._history if change.name == name]

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._history.clear()
            self._version = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._values
