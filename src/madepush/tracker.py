"""Remote tracker contract and its GitHub implementation.

The push pipeline only talks to a :class:`RemoteTracker`. ``GitHubTracker``
implements it on top of :class:`~madepush.github_rest.GitHubRestClient` and
:class:`~madepush.project.ProjectsClient`; each blocking HTTP call is moved to
the default executor so issue pushes inside a batch window overlap.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from .concurrency import run_blocking
from .github_rest import GitHubRestClient, team_slug
from .logging import get_logger
from .models import (
    CreatedIssue,
    EntityRef,
    Issue,
    LabelSpec,
    Milestone,
    PushResult,
    Roadmap,
    RoadmapResult,
    SprintResult,
    TimeBox,
)
from .project import ProjectsClient
from .rendering import (
    SPRINT_TYPE_LABEL,
    issue_body,
    issue_labels,
    roadmap_labels,
    sprint_issue_body,
    sprint_issue_title,
    sprint_label_name,
    sprint_status,
)

_CLOSED_MILESTONE_STATUSES = {"CLOSED", "DONE", "COMPLETED"}


class RemoteTracker(Protocol):  # pragma: no cover - interface only
    async def create_project(self, org: str, name: str) -> str: ...

    async def add_issue_to_project(self, project_id: str, issue_id: str) -> str: ...

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
    ) -> CreatedIssue: ...

    async def get_assignees_for_issue(self, issue: Issue) -> list[str]: ...

    async def get_project_field_id_by_name(self, project_id: str, name: str) -> str | None: ...

    async def set_project_item_field(
        self, project_id: str, item_id: str, field_id: str, value: str
    ) -> None: ...

    async def ensure_label_exists(self, org: str, repo: str, label: LabelSpec) -> None: ...

    async def create_or_ensure_team(self, org: str, name: str, description: str) -> None: ...

    async def add_member_to_team(self, org: str, team_name: str, member: str) -> None: ...

    async def create_sprint_issue(
        self,
        org: str,
        repo: str,
        timebox: TimeBox,
        related_tasks: Sequence[EntityRef],
        task_results: Sequence[PushResult],
    ) -> SprintResult: ...

    async def add_sprint_labels_to_tasks(
        self, org: str, repo: str, sprint_name: str, task_numbers: Sequence[int]
    ) -> None: ...

    async def create_roadmap_labels(self, org: str, repo: str, roadmap: Roadmap) -> None: ...

    async def create_roadmap(self, org: str, repo: str, roadmap: Roadmap) -> RoadmapResult: ...

    async def comment_on_issue(self, org: str, repo: str, number: int, body: str) -> None: ...


class GitHubTracker:
    def __init__(self, rest: GitHubRestClient, projects: ProjectsClient | None = None):
        self.rest = rest
        self.projects = projects or ProjectsClient(rest)
        self.logger = get_logger()

    # ---- projects -----------------------------------------------------
    async def create_project(self, org: str, name: str) -> str:
        return await run_blocking(self.projects.create_project, org, name)

    async def add_issue_to_project(self, project_id: str, issue_id: str) -> str:
        return await run_blocking(self.projects.add_item, project_id, issue_id)

    async def get_project_field_id_by_name(self, project_id: str, name: str) -> str | None:
        return await run_blocking(self.projects.field_id_by_name, project_id, name)

    async def set_project_item_field(
        self, project_id: str, item_id: str, field_id: str, value: str
    ) -> None:
        await run_blocking(self.projects.set_item_field, project_id, item_id, field_id, value)

    # ---- issues -------------------------------------------------------
    async def get_assignees_for_issue(self, issue: Issue) -> list[str]:
        seen: list[str] = []
        for login in issue.assignees:
            login = login.strip().lstrip("@")
            if login and login not in seen:
                seen.append(login)
        return seen

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
        body = issue_body(
            issue,
            child_tasks=child_tasks,
            child_stories=child_stories,
            task_results=task_results,
            story_results=story_results,
        )
        data = await run_blocking(
            self.rest.create_issue,
            org,
            repo,
            title=issue.title,
            body=body,
            labels=issue_labels(issue),
            assignees=assignees,
        )
        return CreatedIssue(
            id=str(data.get("node_id") or data.get("id")),
            number=int(data["number"]),
            title=str(data.get("title") or issue.title),
        )

    async def comment_on_issue(self, org: str, repo: str, number: int, body: str) -> None:
        await run_blocking(self.rest.create_comment, org, repo, number, body)

    # ---- labels -------------------------------------------------------
    def _ensure_label_sync(self, org: str, repo: str, label: LabelSpec) -> None:
        if self.rest.get_label(org, repo, label.name) is not None:
            return
        self.rest.create_label(
            org, repo, name=label.name, color=label.color, description=label.description
        )
        self.logger.debug("Label created", label=label.name, repo=f"{org}/{repo}")

    async def ensure_label_exists(self, org: str, repo: str, label: LabelSpec) -> None:
        await run_blocking(self._ensure_label_sync, org, repo, label)

    # ---- teams --------------------------------------------------------
    def _ensure_team_sync(self, org: str, name: str, description: str) -> None:
        if self.rest.get_team(org, team_slug(name)) is not None:
            return
        self.rest.create_team(org, name=name, description=description)
        self.logger.log_operation("team_created", org=org, team=name)

    async def create_or_ensure_team(self, org: str, name: str, description: str) -> None:
        await run_blocking(self._ensure_team_sync, org, name, description)

    async def add_member_to_team(self, org: str, team_name: str, member: str) -> None:
        await run_blocking(self.rest.add_team_membership, org, team_slug(team_name), member)

    # ---- sprints ------------------------------------------------------
    async def create_sprint_issue(
        self,
        org: str,
        repo: str,
        timebox: TimeBox,
        related_tasks: Sequence[EntityRef],
        task_results: Sequence[PushResult],
    ) -> SprintResult:
        numbers = {r.source_id: r.issue_number for r in task_results if r.source_id}
        body = sprint_issue_body(timebox, related_tasks, numbers)
        labels = [
            SPRINT_TYPE_LABEL.name,
            sprint_label_name(timebox.name),
            f"status: {sprint_status(timebox)}",
        ]
        data = await run_blocking(
            self.rest.create_issue,
            org,
            repo,
            title=sprint_issue_title(timebox),
            body=body,
            labels=labels,
        )
        return SprintResult(
            issue_id=str(data.get("node_id") or data.get("id")),
            issue_number=int(data["number"]),
            task_numbers=tuple(numbers[t.id] for t in related_tasks if t.id in numbers),
        )

    async def add_sprint_labels_to_tasks(
        self, org: str, repo: str, sprint_name: str, task_numbers: Sequence[int]
    ) -> None:
        label = sprint_label_name(sprint_name)
        for number in task_numbers:
            await run_blocking(self.rest.add_labels, org, repo, number, [label])

    # ---- roadmaps -----------------------------------------------------
    async def create_roadmap_labels(self, org: str, repo: str, roadmap: Roadmap) -> None:
        for label in roadmap_labels(roadmap):
            await self.ensure_label_exists(org, repo, label)

    def _create_roadmap_sync(self, org: str, repo: str, roadmap: Roadmap) -> RoadmapResult:
        existing = {
            str(m.get("title")): int(m["number"])
            for m in self.rest.list_milestones(org, repo)
            if isinstance(m.get("number"), int)
        }
        created: dict[str, int] = {}
        specs = roadmap.milestones or [
            Milestone(name=roadmap.name, description=roadmap.description)
        ]
        for spec in specs:
            if spec.name in existing:
                created[spec.name] = existing[spec.name]
                continue
            state = "closed" if (spec.status or "").upper() in _CLOSED_MILESTONE_STATUSES else "open"
            data = self.rest.create_milestone(
                org,
                repo,
                title=spec.name,
                description=spec.description or f"Roadmap: {roadmap.name}",
                due_on=spec.due_date,
                state=state,
            )
            created[spec.name] = int(data["number"])
        return RoadmapResult(roadmap=roadmap.name, milestones=created)

    async def create_roadmap(self, org: str, repo: str, roadmap: Roadmap) -> RoadmapResult:
        return await run_blocking(self._create_roadmap_sync, org, repo, roadmap)


__all__ = ["GitHubTracker", "RemoteTracker"]
