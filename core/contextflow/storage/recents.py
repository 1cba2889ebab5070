"""Recently opened workflow files (~/.contextflow/recents.json)."""

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from contextflow.config import CONTEXTFLOW_HOME
from contextflow.utils.io import atomic_write

logger = logging.getLogger(__name__)

MAX_RECENTS = 10


class RecentFile(BaseModel):
    name: str
    path: str
    last_opened: datetime = Field(default_factory=datetime.now)


_recent_list = TypeAdapter(list[RecentFile])


class RecentFiles:
    """
    Most-recently-opened list, newest first, unique by path.

    Entries whose file no longer exists are dropped when the list is read.
    """

    def __init__(self, path: Path | None = None, limit: int = MAX_RECENTS):
        self.path = Path(path) if path is not None else CONTEXTFLOW_HOME / "recents.json"
        self.limit = limit

    def entries(self) -> list[RecentFile]:
        if not self.path.exists():
            return []
        try:
            entries = _recent_list.validate_json(self.path.read_bytes())
        except (OSError, ValidationError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable recents file {self.path}: {e}")
            return []
        existing = [e for e in entries if Path(e.path).exists()]
        existing.sort(key=lambda e: e.last_opened, reverse=True)
        return existing

    def add(self, file_path: Path | str) -> list[RecentFile]:
        """Record a file as just opened; returns the updated list."""
        resolved = str(Path(file_path).expanduser().resolve())
        entries = [e for e in self.entries() if e.path != resolved]
        entries.insert(0, RecentFile(name=Path(resolved).name, path=resolved))
        entries = entries[: self.limit]
        self._save(entries)
        return entries

    def remove(self, file_path: Path | str) -> bool:
        resolved = str(Path(file_path).expanduser().resolve())
        entries = self.entries()
        kept = [e for e in entries if e.path != resolved]
        if len(kept) == len(entries):
            return False
        self._save(kept)
        return True

    def clear(self) -> None:
        self._save([])

    def _save(self, entries: list[RecentFile]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with atomic_write(self.path) as f:
            f.write(_recent_list.dump_json(entries, indent=2).decode())
