"""Pytest configuration for madepush tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and provides the
in-memory tracker / sync fakes the pipeline tests share.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# Keep retry backoff out of test wall time
os.environ.setdefault("MADEPUSH_RETRY_ATTEMPTS", "1")

from madepush.concurrency import BatchConfig  # noqa: E402
from madepush.models import (  # noqa: E402
    CreatedIssue,
    EntityRef,
    Issue,
    LabelSpec,
    PushResult,
    Roadmap,
    RoadmapResult,
    SprintResult,
    TimeBox,
)
from madepush.push_service import GitHubPushService  # noqa: E402
from madepush.store import RepositorySet  # noqa: E402


class FakeTracker:
    """Records every remote call; failures are injected per issue title."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.labels: list[LabelSpec] = []
        self.comments: list[tuple[int, str]] = []
        self.created: list[Issue] = []
        self.fail_titles: dict[str, int] = {}
        self.fail_roadmaps: set[str] = set()
        self.fail_timeboxes: set[str] = set()
        self.fail_comments: set[int] = set()
        self.fields: dict[str, str] = {"Type": "FIELD_TYPE"}
        self.field_values: list[tuple[str, str, str]] = []
        self._next_number = 1

    def _number(self) -> int:
        number = self._next_number
        self._next_number += 1
        return number

    async def create_project(self, org: str, name: str) -> str:
        self.calls.append(("create_project", org, name))
        return "PVT_1"

    async def add_issue_to_project(self, project_id: str, issue_id: str) -> str:
        self.calls.append(("add_issue_to_project", project_id, issue_id))
        return f"ITEM_{issue_id}"

    async def create_issue(
        self,
        org: str,
        repo: str,
        issue: Issue,
        assignees: Sequence[str],
        child_tasks: Sequence[Issue] = (),
        child_stories: Sequence[Issue] = (),
        task_results: Sequence[PushResult] = (),
        story_results: Sequence[PushResult] = (),
    ) -> CreatedIssue:
        self.calls.append(("create_issue", issue.id))
        remaining = self.fail_titles.get(issue.title, 0)
        if remaining:
            self.fail_titles[issue.title] = remaining - 1
            raise RuntimeError(f"boom: {issue.title}")
        self.created.append(issue)
        number = self._number()
        return CreatedIssue(id=f"NODE_{number}", number=number, title=issue.title)

    async def get_assignees_for_issue(self, issue: Issue) -> list[str]:
        return list(issue.assignees)

    async def get_project_field_id_by_name(self, project_id: str, name: str) -> str | None:
        return self.fields.get(name)

    async def set_project_item_field(
        self, project_id: str, item_id: str, field_id: str, value: str
    ) -> None:
        self.field_values.append((item_id, field_id, value))

    async def ensure_label_exists(self, org: str, repo: str, label: LabelSpec) -> None:
        self.labels.append(label)

    async def create_or_ensure_team(self, org: str, name: str, description: str) -> None:
        self.calls.append(("create_team", name))

    async def add_member_to_team(self, org: str, team_name: str, member: str) -> None:
        self.calls.append(("add_member", team_name, member))

    async def create_sprint_issue(
        self,
        org: str,
        repo: str,
        timebox: TimeBox,
        related_tasks: Sequence[EntityRef],
        task_results: Sequence[PushResult],
    ) -> SprintResult:
        self.calls.append(("create_sprint_issue", timebox.name))
        if timebox.name in self.fail_timeboxes:
            raise RuntimeError(f"sprint failed: {timebox.name}")
        number = self._number()
        return SprintResult(
            issue_id=f"NODE_{number}",
            issue_number=number,
            task_numbers=tuple(r.issue_number for r in task_results),
        )

    async def add_sprint_labels_to_tasks(
        self, org: str, repo: str, sprint_name: str, task_numbers: Sequence[int]
    ) -> None:
        self.calls.append(("sprint_labels", sprint_name, tuple(task_numbers)))

    async def create_roadmap_labels(self, org: str, repo: str, roadmap: Roadmap) -> None:
        self.calls.append(("roadmap_labels", roadmap.name))

    async def create_roadmap(self, org: str, repo: str, roadmap: Roadmap) -> RoadmapResult:
        self.calls.append(("create_roadmap", roadmap.name))
        if roadmap.name in self.fail_roadmaps:
            raise RuntimeError(f"roadmap failed: {roadmap.name}")
        return RoadmapResult(roadmap=roadmap.name, milestones={roadmap.name: 1})

    async def comment_on_issue(self, org: str, repo: str, number: int, body: str) -> None:
        if number in self.fail_comments:
            raise RuntimeError("comment rejected")
        self.comments.append((number, body))

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeSync:
    def __init__(self, known: Sequence[str] = (), fail: bool = False) -> None:
        self.known = set(known)
        self.fail = fail
        self.synced = False

    async def sync_from_github(self, org: str, project_name: str) -> None:
        if self.fail:
            raise RuntimeError("project not found")
        self.synced = True

    async def filter_new_issues(self, issues: Sequence[Issue]) -> list[Issue]:
        return [i for i in issues if i.title not in self.known]

    async def filter_new_sprints(self, timeboxes: Sequence[TimeBox]) -> list[TimeBox]:
        return [t for t in timeboxes if f"Sprint: {t.name}" not in self.known]


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def sync() -> FakeSync:
    return FakeSync()


@pytest.fixture
def make_service(tmp_path, tracker, sync):
    def _make(data_dir: Path | None = None, **batch: float) -> GitHubPushService:
        config = BatchConfig(
            batch_size=int(batch.get("batch_size", 3)),
            batch_delay=batch.get("batch_delay", 0.0),
            individual_delay=batch.get("individual_delay", 0.0),
        )
        return GitHubPushService(
            tracker, sync, RepositorySet(data_dir or tmp_path / "db"), batch_config=config
        )

    return _make
