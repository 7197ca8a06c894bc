"""Persisted state storage."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from .exceptions import ConfigurationError
from .models import PersistedState

logger = logging.getLogger(__name__)


@runtime_checkable
class StateStore(Protocol):
    """Loads and saves the whole PersistedState record."""

    def load(self) -> PersistedState: ...

    def save(self, state: PersistedState) -> None: ...


class JsonFileStateStore:
    """
    Stores state as a flat JSON object in one file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so readers never see a partially written record.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> PersistedState:
        if not self.path.exists():
            return PersistedState()
        try:
            data = json.loads(self.path.read_text() or "{}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Corrupt state file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Corrupt state file {self.path}: expected an object")
        return PersistedState.from_dict(data)

    def save(self, state: PersistedState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state.to_dict(), f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(temp_name, self.path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved state to %s", self.path)


class MemoryStateStore:
    """In-memory store, mainly for tests and embedding."""

    def __init__(self, state: PersistedState | None = None) -> None:
        self._data = state.to_dict() if state else {}
        self.saves = 0

    def load(self) -> PersistedState:
        return PersistedState.from_dict(dict(self._data))

    def save(self, state: PersistedState) -> None:
        self._data = state.to_dict()
        self.saves += 1
