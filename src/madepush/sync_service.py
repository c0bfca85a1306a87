"""Remote title cache used to skip entities already present on the board."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from .concurrency import run_blocking
from .errors import SyncError
from .logging import get_logger
from .models import Issue, TimeBox
from .project import ProjectsClient
from .rendering import sprint_issue_title


def _title_key(title: str) -> str:
    return " ".join(title.split()).casefold()


class SyncService(Protocol):  # pragma: no cover - interface only
    async def sync_from_github(self, org: str, project_name: str) -> None: ...

    async def filter_new_issues(self, issues: Sequence[Issue]) -> list[Issue]: ...

    async def filter_new_sprints(self, timeboxes: Sequence[TimeBox]) -> list[TimeBox]: ...


class GitHubSyncService:
    """Keeps the set of item titles currently on a project board.

    Until :meth:`sync_from_github` succeeds the cache is empty and every
    entity is considered new.
    """

    def __init__(self, projects: ProjectsClient):
        self.projects = projects
        self.logger = get_logger()
        self._titles: set[str] = set()

    @property
    def known_titles(self) -> frozenset[str]:
        return frozenset(self._titles)

    def remember(self, titles: Iterable[str]) -> None:
        self._titles.update(_title_key(t) for t in titles if t)

    def _sync(self, org: str, project_name: str) -> int:
        _, project_id = self.projects.find_project(org, project_name)
        if project_id is None:
            return 0
        titles = self.projects.list_item_titles(project_id)
        self.remember(titles)
        return len(titles)

    async def sync_from_github(self, org: str, project_name: str) -> None:
        try:
            count = await run_blocking(self._sync, org, project_name)
        except Exception as exc:
            raise SyncError(f"Sync of project '{project_name}' failed: {exc}") from exc
        self.logger.log_operation("sync_complete", org=org, project=project_name, items=count)

    async def filter_new_issues(self, issues: Sequence[Issue]) -> list[Issue]:
        fresh = [i for i in issues if _title_key(i.title or "") not in self._titles]
        skipped = len(issues) - len(fresh)
        if skipped:
            self.logger.info(f"⏭️ Skipping {skipped} issue(s) already on the board")
        return fresh

    async def filter_new_sprints(self, timeboxes: Sequence[TimeBox]) -> list[TimeBox]:
        return [
            tb for tb in timeboxes if _title_key(sprint_issue_title(tb)) not in self._titles
        ]


__all__ = ["GitHubSyncService", "SyncService"]
