"""Push pipeline: turns a project model into GitHub issues on a project board.

``GitHubPushService.full_push`` runs the phases in strict order, each one a
barrier for the next:

1. label provisioning        6. project creation / reuse
2. remote sync (best-effort) 7. tiered issue creation (tasks, stories, epics)
3. filtering of known items  8. cross-tier linking
4. team provisioning         9. roadmap processing
5. normalisation/validation  10. timebox (sprint) processing

Issues inside a tier go through :class:`~madepush.concurrency.BatchProcessor`,
which pushes small windows concurrently and degrades to sequential retries
when a window fails.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .concurrency import BatchConfig, BatchProcessor
from .errors import (
    LinkError,
    PhaseError,
    RemoteWriteError,
    ValidationError,
    classify_error,
)
from .logging import StructuredLogger, get_logger
from .models import (
    Backlog,
    Issue,
    IssueKind,
    Project,
    PushDocument,
    PushResult,
    Roadmap,
    RoadmapResult,
    SprintResult,
    Team,
    TimeBox,
)
from .rendering import (
    BASE_LABELS,
    ROADMAP_TYPE_LABELS,
    SPRINT_TYPE_LABEL,
    LinkRelation,
    backlog_label,
    link_comment,
    timebox_labels,
)
from .store import RepositorySet
from .sync_service import SyncService
from .tracker import RemoteTracker
from .validation import normalize_type, prepare_issues, validate_issue

TYPE_FIELD = "Type"
BACKLOG_FIELD = "Backlog"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class LinkOutcome:
    parent_number: int
    child_number: int
    relation: LinkRelation
    error: LinkError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PushSummary:
    project_id: str
    tasks: list[PushResult] = field(default_factory=list)
    stories: list[PushResult] = field(default_factory=list)
    epics: list[PushResult] = field(default_factory=list)
    links: list[LinkOutcome] = field(default_factory=list)
    sprints: list[SprintResult] = field(default_factory=list)
    roadmaps: list[RoadmapResult] = field(default_factory=list)

    @property
    def totals(self) -> dict[str, int]:
        return {
            "tasks": len(self.tasks),
            "stories": len(self.stories),
            "epics": len(self.epics),
            "links": sum(1 for link in self.links if link.ok),
            "sprints": len(self.sprints),
            "roadmaps": len(self.roadmaps),
        }


def map_id_to_github_number(results: Sequence[PushResult]) -> dict[str, int]:
    return {r.source_id: r.issue_number for r in results if r.source_id}


def map_id_to_github_id(results: Sequence[PushResult]) -> dict[str, str]:
    return {r.source_id: r.issue_id for r in results if r.source_id}


class GitHubPushService:
    def __init__(
        self,
        tracker: RemoteTracker,
        sync_service: SyncService,
        repositories: RepositorySet,
        *,
        batch_config: BatchConfig | None = None,
        logger: StructuredLogger | None = None,
    ):
        self.tracker = tracker
        self.sync_service = sync_service
        self.repositories = repositories
        self.logger = logger or get_logger()
        self.batch_processor = BatchProcessor(batch_config, self.logger)

    # ---- projects -----------------------------------------------------
    async def push_project(self, org: str, project: Project) -> str:
        unique_key = f"{org}/{project.name}"
        recorded = self.repositories.projects.find(lambda r: r.get("uniqueKey") == unique_key)
        if recorded and recorded.get("projectId"):
            self.logger.info(
                f"♻️ Project {project.name} already processed for {org}",
                project_id=recorded["projectId"],
            )
            return str(recorded["projectId"])
        project_id = await self.tracker.create_project(org, project.name)
        self.repositories.projects.add(
            {
                "projectId": project_id,
                "title": project.name,
                "uniqueKey": unique_key,
                "org": org,
                "processedAt": _now(),
            }
        )
        return project_id

    # ---- single issue -------------------------------------------------
    def _recorded_result(self, org: str, repo: str, issue: Issue) -> PushResult | None:
        record = self.repositories.issues.find(
            lambda r: r.get("org") == org and r.get("repo") == repo and r.get("sourceId") == issue.id
        )
        if record is None:
            return None
        return PushResult(
            issue_id=str(record["id"]),
            issue_number=int(record["number"]),
            project_item_id=str(record.get("projectItemId") or ""),
            source_id=issue.id,
            reused=True,
        )

    async def _set_field_best_effort(
        self, project_id: str, item_id: str, field_name: str, value: str
    ) -> None:
        try:
            field_id = await self.tracker.get_project_field_id_by_name(project_id, field_name)
            if field_id:
                await self.tracker.set_project_item_field(project_id, item_id, field_id, value)
        except Exception as exc:
            self.logger.warning(f"⚠️ Failed to set field '{field_name}': {exc}", field=field_name)

    async def push_issue(
        self,
        org: str,
        repo: str,
        project_id: str,
        issue: Issue,
        all_tasks: Sequence[Issue] = (),
        all_stories: Sequence[Issue] = (),
        task_results: Sequence[PushResult] = (),
        story_results: Sequence[PushResult] = (),
    ) -> PushResult:
        try:
            validate_issue(issue)
            recorded = self._recorded_result(org, repo, issue)
            if recorded is not None:
                self.logger.info(
                    f"⏭️ Issue {issue.id} already processed for {org}/{repo}",
                    issue_number=recorded.issue_number,
                )
                return recorded

            assignees = await self.tracker.get_assignees_for_issue(issue)
            kind = normalize_type(issue.type)
            if kind == IssueKind.EPIC:
                created = await self.tracker.create_issue(
                    org, repo, issue, assignees, (), all_stories, (), story_results
                )
            elif kind == IssueKind.FEATURE:
                created = await self.tracker.create_issue(
                    org, repo, issue, assignees, all_tasks, (), task_results, ()
                )
            else:
                created = await self.tracker.create_issue(org, repo, issue, assignees)
            project_item_id = await self.tracker.add_issue_to_project(project_id, created.id)
        except Exception as exc:
            info = classify_error(exc)
            self.logger.log_error(
                f"❌ Error processing issue {issue.title or issue.id}",
                error=info.message,
                category=info.category,
                issue_id=issue.id,
                issue_type=str(issue.type),
            )
            if isinstance(exc, ValidationError):
                raise
            raise RemoteWriteError(
                f"Failed to push issue {issue.id}: {info.message}", issue_id=issue.id
            ) from exc

        if issue.type:
            await self._set_field_best_effort(
                project_id, project_item_id, TYPE_FIELD, str(issue.type)
            )
        if issue.backlog:
            await self._set_field_best_effort(
                project_id, project_item_id, BACKLOG_FIELD, issue.backlog
            )

        self.repositories.issues.add(
            {
                "id": created.id,
                "title": created.title or issue.title,
                "number": created.number,
                "uniqueKey": f"{org}/{repo}/{created.id}",
                "org": org,
                "repo": repo,
                "processedAt": _now(),
                "sourceId": issue.id,
                "projectItemId": project_item_id,
            }
        )
        self.logger.log_issue_action("create", issue.id, created.number, repo=f"{org}/{repo}")
        return PushResult(
            issue_id=created.id,
            issue_number=created.number,
            project_item_id=project_item_id,
            source_id=issue.id,
        )

    async def push_project_with_issues(
        self,
        org: str,
        repo: str,
        project: Project,
        issues: Sequence[Issue],
        all_tasks: Sequence[Issue] = (),
    ) -> list[PushResult]:
        project_id = await self.push_project(org, project)
        results: list[PushResult] = []
        for issue in issues:
            results.append(await self.push_issue(org, repo, project_id, issue, all_tasks))
        return results

    async def push_issues(
        self,
        org: str,
        repo: str,
        project: Project,
        issues: Sequence[Issue],
        all_tasks: Sequence[Issue] = (),
    ) -> list[PushResult]:
        return await self.push_project_with_issues(org, repo, project, issues, all_tasks)

    def prepare_issues(self, issues: Sequence[Issue], type_: IssueKind | str) -> None:
        prepare_issues(issues, type_)

    # ---- batching -----------------------------------------------------
    async def process_issues_in_batches(
        self,
        org: str,
        repo: str,
        project_id: str,
        issues: Sequence[Issue],
        all_tasks: Sequence[Issue] = (),
        all_stories: Sequence[Issue] = (),
        task_results: Sequence[PushResult] = (),
        story_results: Sequence[PushResult] = (),
    ) -> list[PushResult]:
        async def _push(issue: Issue) -> PushResult:
            return await self.push_issue(
                org, repo, project_id, issue, all_tasks, all_stories, task_results, story_results
            )

        outcome = await self.batch_processor.process(
            issues, _push, describe=lambda i: i.title or i.id
        )
        return outcome.ordered_results()

    # ---- linking ------------------------------------------------------
    async def link_issues(
        self,
        org: str,
        repo: str,
        parent_number: int,
        child_number: int,
        relation: LinkRelation | str = LinkRelation.BLOCKS,
    ) -> None:
        await self.tracker.comment_on_issue(
            org, repo, child_number, link_comment(parent_number, relation)
        )

    async def _link_first_dependency(
        self,
        org: str,
        repo: str,
        dependents: Sequence[Issue],
        own_numbers: Mapping[str, int],
        target_numbers: Mapping[str, int],
        reused: Collection[str] = frozenset(),
    ) -> list[LinkOutcome]:
        outcomes: list[LinkOutcome] = []
        for dependent in dependents:
            target = next((d for d in dependent.depends if d.id in target_numbers), None)
            own_number = own_numbers.get(dependent.id)
            if target is None or own_number is None:
                continue
            # both ends recorded by an earlier run: that run posted the link
            if dependent.id in reused and target.id in reused:
                continue
            target_number = target_numbers[target.id]
            try:
                await self.link_issues(org, repo, own_number, target_number, LinkRelation.BLOCKS)
            except Exception as exc:
                error = LinkError(f"Link #{own_number} -> #{target_number} failed: {exc}")
                self.logger.warning(f"⚠️ {error}")
                outcomes.append(LinkOutcome(own_number, target_number, LinkRelation.BLOCKS, error))
            else:
                outcomes.append(LinkOutcome(own_number, target_number, LinkRelation.BLOCKS))
        return outcomes

    async def link_tasks_to_stories(
        self,
        org: str,
        repo: str,
        tasks: Sequence[Issue],
        task_numbers: Mapping[str, int],
        story_numbers: Mapping[str, int],
        reused: Collection[str] = frozenset(),
    ) -> list[LinkOutcome]:
        return await self._link_first_dependency(
            org, repo, tasks, task_numbers, story_numbers, reused
        )

    async def link_stories_to_epics(
        self,
        org: str,
        repo: str,
        stories: Sequence[Issue],
        story_numbers: Mapping[str, int],
        epic_numbers: Mapping[str, int],
        reused: Collection[str] = frozenset(),
    ) -> list[LinkOutcome]:
        return await self._link_first_dependency(
            org, repo, stories, story_numbers, epic_numbers, reused
        )

    # ---- labels & teams -----------------------------------------------
    async def ensure_labels(
        self,
        org: str,
        repo: str,
        backlogs: Sequence[Backlog] | None = None,
        timeboxes: Sequence[TimeBox] | None = None,
        roadmaps: Sequence[Roadmap] | None = None,
    ) -> None:
        for label in BASE_LABELS:
            await self.tracker.ensure_label_exists(org, repo, label)
        for backlog in backlogs or ():
            await self.tracker.ensure_label_exists(org, repo, backlog_label(backlog))
        if timeboxes:
            for timebox in timeboxes:
                for label in timebox_labels(timebox):
                    await self.tracker.ensure_label_exists(org, repo, label)
            await self.tracker.ensure_label_exists(org, repo, SPRINT_TYPE_LABEL)
        if roadmaps:
            for label in ROADMAP_TYPE_LABELS:
                await self.tracker.ensure_label_exists(org, repo, label)
            for roadmap in roadmaps:
                await self.tracker.create_roadmap_labels(org, repo, roadmap)

    async def provision_teams(self, org: str, teams: Sequence[Team]) -> list[str]:
        provisioned: list[str] = []
        for team in teams:
            unique_key = f"{org}/{team.id}"
            if self.repositories.teams.exists(lambda r: r.get("uniqueKey") == unique_key):
                self.logger.info(f"⏭️ Team {team.id} already processed for {org}; skipping")
                continue
            await self.tracker.create_or_ensure_team(org, team.name, team.description)
            for member in team.team_members:
                if member.name:
                    await self.tracker.add_member_to_team(org, team.name, member.name)
            self.repositories.teams.add(
                {
                    "id": team.id,
                    "title": team.name,
                    "uniqueKey": unique_key,
                    "org": org,
                    "members": [m.name for m in team.team_members if m.name],
                    "processedAt": _now(),
                }
            )
            provisioned.append(team.id)
        return provisioned

    # ---- roadmaps & timeboxes -----------------------------------------
    async def process_roadmaps(
        self, org: str, repo: str, roadmaps: Sequence[Roadmap]
    ) -> list[RoadmapResult]:
        results: list[RoadmapResult] = []
        for roadmap in roadmaps:
            try:
                await self.tracker.create_roadmap_labels(org, repo, roadmap)
                results.append(await self.tracker.create_roadmap(org, repo, roadmap))
            except Exception as exc:
                error = PhaseError(str(exc), phase="roadmap", item=roadmap.name)
                self.logger.log_error(
                    f'❌ Error processing roadmap "{roadmap.name}"',
                    error=str(error),
                    phase=error.phase,
                )
        return results

    def _timebox_key(self, org: str, repo: str, timebox: TimeBox) -> str:
        return f"{org}/{repo}/{timebox.id or timebox.name}"

    async def process_timeboxes(
        self,
        org: str,
        repo: str,
        project_id: str,
        timeboxes: Sequence[TimeBox],
        all_tasks: Sequence[Issue],
        task_id_to_number: Mapping[str, int],
        task_id_to_issue_id: Mapping[str, str] | None = None,
    ) -> list[SprintResult]:
        issue_ids = task_id_to_issue_id or {}
        results: list[SprintResult] = []
        for timebox in timeboxes:
            unique_key = self._timebox_key(org, repo, timebox)
            if self.repositories.timeboxes.exists(lambda r: r.get("uniqueKey") == unique_key):
                self.logger.info(f"⏭️ Timebox {timebox.name} already processed; skipping")
                continue
            try:
                related = timebox.related_tasks
                related_results = [
                    PushResult(
                        issue_id=issue_ids.get(task.id, task.id),
                        issue_number=task_id_to_number[task.id],
                        project_item_id="",
                        source_id=task.id,
                    )
                    for task in related
                    if task.id in task_id_to_number
                ]
                sprint = await self.tracker.create_sprint_issue(
                    org, repo, timebox, related, related_results
                )
                task_numbers = [r.issue_number for r in related_results]
                if task_numbers:
                    await self.tracker.add_sprint_labels_to_tasks(
                        org, repo, timebox.name, task_numbers
                    )
            except Exception as exc:
                error = PhaseError(str(exc), phase="timebox", item=timebox.name)
                self.logger.log_error(
                    f'❌ Error processing timebox "{timebox.name}"',
                    error=str(error),
                    phase=error.phase,
                )
                continue
            try:
                await self.tracker.add_issue_to_project(project_id, sprint.issue_id)
            except Exception as exc:
                self.logger.warning(
                    f"⚠️ Sprint issue #{sprint.issue_number} not added to project: {exc}"
                )
            self.repositories.timeboxes.add(
                {
                    "id": sprint.issue_id,
                    "title": timebox.name,
                    "number": sprint.issue_number,
                    "uniqueKey": unique_key,
                    "org": org,
                    "repo": repo,
                    "processedAt": _now(),
                }
            )
            results.append(sprint)
        self.logger.info("🎉 Timebox processing finished", sprints=len(results))
        return results

    # ---- orchestration ------------------------------------------------
    async def _sync_best_effort(self, org: str, project: Project) -> None:
        try:
            await self.sync_service.sync_from_github(org, project.name)
        except Exception as exc:
            self.logger.warning(f"⚠️ Sync failed (project may be new): {exc}")

    async def full_push(
        self,
        org: str,
        repo: str,
        project: Project,
        epics: Sequence[Issue],
        stories: Sequence[Issue],
        tasks: Sequence[Issue],
        backlogs: Sequence[Backlog] | None = None,
        teams: Sequence[Team] | None = None,
        timeboxes: Sequence[TimeBox] | None = None,
        roadmaps: Sequence[Roadmap] | None = None,
    ) -> PushSummary:
        with self.logger.timed_operation("full_push", org=org, repo=repo, project=project.name):
            self.logger.info("🏷️ Creating required labels...")
            await self.ensure_labels(org, repo, backlogs, timeboxes, roadmaps)

            await self._sync_best_effort(org, project)

            new_epics = await self.sync_service.filter_new_issues(epics)
            new_stories = await self.sync_service.filter_new_issues(stories)
            new_tasks = await self.sync_service.filter_new_issues(tasks)
            new_timeboxes: list[TimeBox] = []
            if timeboxes:
                new_timeboxes = await self.sync_service.filter_new_sprints(timeboxes)

            if teams:
                await self.provision_teams(org, teams)

            self.prepare_issues(new_tasks, IssueKind.TASK)
            self.prepare_issues(new_stories, IssueKind.FEATURE)
            self.prepare_issues(new_epics, IssueKind.EPIC)
            project_id = await self.push_project(org, project)
            summary = PushSummary(project_id=project_id)

            if new_tasks:
                summary.tasks = await self.process_issues_in_batches(
                    org, repo, project_id, new_tasks
                )
            task_numbers = map_id_to_github_number(summary.tasks)
            task_ids = map_id_to_github_id(summary.tasks)

            if new_stories:
                summary.stories = await self.process_issues_in_batches(
                    org, repo, project_id, new_stories, new_tasks, (), summary.tasks, ()
                )
            story_numbers = map_id_to_github_number(summary.stories)

            if new_epics:
                summary.epics = await self.process_issues_in_batches(
                    org, repo, project_id, new_epics, (), new_stories, (), summary.stories
                )
            epic_numbers = map_id_to_github_number(summary.epics)

            reused = {
                r.source_id
                for r in (*summary.tasks, *summary.stories, *summary.epics)
                if r.reused and r.source_id
            }
            summary.links.extend(
                await self.link_tasks_to_stories(
                    org, repo, new_tasks, task_numbers, story_numbers, reused
                )
            )
            summary.links.extend(
                await self.link_stories_to_epics(
                    org, repo, new_stories, story_numbers, epic_numbers, reused
                )
            )

            if roadmaps:
                summary.roadmaps = await self.process_roadmaps(org, repo, roadmaps)
            if new_timeboxes:
                summary.sprints = await self.process_timeboxes(
                    org, repo, project_id, new_timeboxes, new_tasks, task_numbers, task_ids
                )

            self.logger.log_operation("full_push_complete", **summary.totals)
            return summary

    async def push_document(self, org: str, repo: str, document: PushDocument) -> PushSummary:
        return await self.full_push(
            org,
            repo,
            document.project,
            document.epics,
            document.stories,
            document.tasks,
            document.backlogs,
            document.teams,
            document.timeboxes,
            document.roadmaps,
        )


__all__ = [
    "GitHubPushService",
    "LinkOutcome",
    "PushSummary",
    "map_id_to_github_id",
    "map_id_to_github_number",
]
