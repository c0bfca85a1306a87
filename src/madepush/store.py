from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

Record = dict[str, Any]

PROJECTS_FILE = "processed_projects.json"
ISSUES_FILE = "processed_issues.json"
TEAMS_FILE = "processed_teams.json"
TIMEBOXES_FILE = "processed_timeboxes.json"


class GenericRepository:
    """Append-only JSON record log for one entity kind.

    Records are plain dicts. The whole log is rewritten atomically (temp file
    + replace) on every ``add`` so a crash never leaves a truncated file.
    """

    def __init__(self, data_dir: str | Path, filename: str):
        self.path = Path(data_dir) / filename
        self._records: list[Record] = self._load()

    def _load(self) -> list[Record]:
        if not self.path.exists():
            return []
        try:
            raw: Any = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to read record log %s: %s", self.path, exc)
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed record log %s", self.path)
            return []
        return [dict(entry) for entry in raw if isinstance(entry, dict)]

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._records, indent=2) + "\n", encoding="utf-8")
        tmp.replace(self.path)

    def all(self) -> list[Record]:
        return [dict(r) for r in self._records]

    def exists(self, predicate: Callable[[Record], bool]) -> bool:
        return any(predicate(r) for r in self._records)

    def find(self, predicate: Callable[[Record], bool]) -> Record | None:
        for record in self._records:
            if predicate(record):
                return dict(record)
        return None

    def add(self, record: Record) -> None:
        self._records.append(dict(record))
        self._persist()

    def __len__(self) -> int:
        return len(self._records)


class RepositorySet:
    """The four record logs the push pipeline keeps under one data directory."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.projects = GenericRepository(self.data_dir, PROJECTS_FILE)
        self.issues = GenericRepository(self.data_dir, ISSUES_FILE)
        self.teams = GenericRepository(self.data_dir, TEAMS_FILE)
        self.timeboxes = GenericRepository(self.data_dir, TIMEBOXES_FILE)


__all__ = [
    "GenericRepository",
    "ISSUES_FILE",
    "PROJECTS_FILE",
    "Record",
    "RepositorySet",
    "TEAMS_FILE",
    "TIMEBOXES_FILE",
]
