"""Generation history tracking."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, List

from config.settings import HISTORY_LIMIT
from modules.services.storage_service import IMAGE_HISTORY, KeyValueStore


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    """Metadata describing a generation event."""

    path: str
    prompt: str
    timestamp: str  # ISO-8601

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            path=str(data.get("path", "")),
            prompt=str(data.get("prompt", "")),
            timestamp=str(data.get("timestamp", "")),
        )


class GenerationHistoryService:
    """Newest-first history kept under ``imageHistory`` in the store."""

    def __init__(self, store: KeyValueStore, limit: int = HISTORY_LIMIT) -> None:
        self.store = store
        self.limit = limit

    def record(self, entry: HistoryEntry) -> List[HistoryEntry]:
        """Prepend an entry, evict the oldest beyond the limit and persist."""
        def prepend(raw: Any) -> list[Any]:
            existing = raw if isinstance(raw, list) else []
            return [entry.to_dict(), *existing][: self.limit]

        updated = self.store.update(IMAGE_HISTORY, prepend, [])
        return [HistoryEntry.from_dict(item) for item in updated if isinstance(item, dict)]

    def list(self, limit: int | None = None) -> List[HistoryEntry]:
        """Return the most recent records, newest first."""
        raw = self.store.get(IMAGE_HISTORY, [])
        if not isinstance(raw, list):
            return []
        entries = [HistoryEntry.from_dict(item) for item in raw if isinstance(item, dict)]
        return entries[:limit] if limit is not None else entries
