"""Key-value persistence for preferences, the current image and history."""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Protocol

from filelock import FileLock

logger = logging.getLogger(__name__)

USER_GOALS = "userGoals"
CONFIDENCE_AREAS = "confidenceAreas"
GENERATION_SCHEDULE = "generationSchedule"
CURRENT_IMAGE_PATH = "currentImagePath"
IMAGE_HISTORY = "imageHistory"
ONBOARDING_COMPLETE = "onboardingComplete"


class KeyValueStore(Protocol):
    """Minimal persistence interface used by the pipeline."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def update(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        """Atomically replace ``key`` with ``mutate(current)`` and return the new value."""
        ...


class MemoryStore:
    """In-process store, handy for tests and dry runs."""

    def __init__(self, initial: Dict[str, Any] | None = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def update(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        value = mutate(self.get(key, default))
        self.set(key, value)
        return copy.deepcopy(value)

    def snapshot(self) -> Dict[str, Any]:
        """Return a deep copy of everything stored."""
        return copy.deepcopy(self._data)


class JsonFileStore:
    """JSON file backed store shared safely between processes.

    Every ``get``/``set``/``update`` re-reads the file under an OS-level lock
    (``<name>.lock`` next to the store), so a ``serve`` process and a manual
    CLI command never write back a stale snapshot of each other's changes.
    Writes go through a temp file and ``os.replace``.
    """

    def __init__(self, path: Path, lock_timeout: float = 10.0) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._file_lock = FileLock(str(self.path.with_name(f"{self.path.name}.lock")), timeout=lock_timeout)
        with self._locked():
            self._read()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self._file_lock:
            yield

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fp:
                data = json.load(fp)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Store file {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Store file {self.path} must contain a JSON object")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                json.dump(data, fp, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        with self._locked():
            data = self._read()
        return data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._locked():
            data = self._read()
            data[key] = copy.deepcopy(value)
            self._write(data)

    def update(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        with self._locked():
            data = self._read()
            value = mutate(copy.deepcopy(data.get(key, default)))
            data[key] = value
            self._write(data)
        return copy.deepcopy(value)


@dataclass(slots=True)
class Preferences:
    """User goals and confidence areas captured during onboarding."""

    goals: List[str] = field(default_factory=list)
    areas: List[str] = field(default_factory=list)


def _string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if str(item).strip()]


def load_preferences(store: KeyValueStore) -> Preferences:
    """Read the current preferences from the store."""
    return Preferences(
        goals=_string_list(store.get(USER_GOALS, [])),
        areas=_string_list(store.get(CONFIDENCE_AREAS, [])),
    )
