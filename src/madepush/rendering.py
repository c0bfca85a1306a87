"""Pure rendering helpers: issue bodies, sprint issues, link comments and labels."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum

from .models import (
    Backlog,
    EntityRef,
    Issue,
    IssueKind,
    LabelSpec,
    PushResult,
    Roadmap,
    TimeBox,
)

DEFAULT_SPRINT_STATUS = "PLANNED"

BASE_LABELS: tuple[LabelSpec, ...] = (
    LabelSpec("Feature", "1d76db", "Feature"),
    LabelSpec("Task", "cccccc", "Task"),
    LabelSpec("Epic", "5319e7", "Epic"),
)
SPRINT_TYPE_LABEL = LabelSpec("type: sprint", "B60205", "Sprint issue type")
ROADMAP_TYPE_LABELS: tuple[LabelSpec, ...] = (
    LabelSpec("type: roadmap", "8B5CF6", "Roadmap"),
    LabelSpec("type: milestone", "6366F1", "Milestone"),
)
SPRINT_STATUS_COLORS: dict[str, str] = {
    "PLANNED": "FEF2C0",
    "IN_PROGRESS": "0E8A16",
    "CLOSED": "5319E7",
}
DEFAULT_STATUS_COLOR = "CCCCCC"
BACKLOG_COLOR = "ededed"
SPRINT_COLOR = "0052CC"
ROADMAP_COLOR = "8B5CF6"
MILESTONE_COLOR = "6366F1"


class LinkRelation(str, Enum):
    BLOCKS = "blocks"
    IS_BLOCKED_BY = "is blocked by"
    RELATES_TO = "relates to"


_LINK_PHRASES: dict[LinkRelation, str] = {
    LinkRelation.BLOCKS: "Depends on",
    LinkRelation.IS_BLOCKED_BY: "Blocked by",
    LinkRelation.RELATES_TO: "Related to",
}


def link_comment(parent_number: int, relation: LinkRelation | str = LinkRelation.BLOCKS) -> str:
    return f"{_LINK_PHRASES[LinkRelation(relation)]} #{parent_number}"


# ---- labels ---------------------------------------------------------------


def backlog_label(backlog: Backlog) -> LabelSpec:
    return LabelSpec(backlog.name, BACKLOG_COLOR, f"Backlog: {backlog.description or ''}")


def sprint_status(timebox: TimeBox) -> str:
    return timebox.status or DEFAULT_SPRINT_STATUS


def sprint_label_name(sprint_name: str) -> str:
    return f"sprint: {sprint_name}"


def timebox_labels(timebox: TimeBox) -> list[LabelSpec]:
    status = sprint_status(timebox)
    return [
        LabelSpec(sprint_label_name(timebox.name), SPRINT_COLOR, f"Sprint {timebox.name}"),
        LabelSpec(
            f"status: {status}",
            SPRINT_STATUS_COLORS.get(status, DEFAULT_STATUS_COLOR),
            f"Status: {status}",
        ),
    ]


def roadmap_labels(roadmap: Roadmap) -> list[LabelSpec]:
    labels = [LabelSpec(f"roadmap: {roadmap.name}", ROADMAP_COLOR, roadmap.description or "Roadmap")]
    for milestone in roadmap.milestones:
        labels.append(
            LabelSpec(
                f"milestone: {milestone.name}",
                MILESTONE_COLOR,
                milestone.description or f"Milestone of {roadmap.name}",
            )
        )
    return labels


def issue_labels(issue: Issue) -> list[str]:
    labels: list[str] = []
    if issue.type in tuple(IssueKind):
        labels.append(str(issue.type))
    if issue.backlog:
        labels.append(issue.backlog)
    for label in issue.labels:
        if label not in labels:
            labels.append(label)
    return labels


# ---- bodies ---------------------------------------------------------------


def _children_section(
    heading: str,
    parent: Issue,
    children: Sequence[Issue],
    results: Iterable[PushResult],
) -> str | None:
    numbers = {r.source_id: r.issue_number for r in results if r.source_id}
    lines = [
        f"- [ ] #{numbers[child.id]} {child.title}"
        for child in children
        if child.depends_on(parent.id) and child.id in numbers
    ]
    if not lines:
        return None
    return f"## {heading}\n\n" + "\n".join(lines)


def issue_body(
    issue: Issue,
    *,
    child_tasks: Sequence[Issue] = (),
    child_stories: Sequence[Issue] = (),
    task_results: Iterable[PushResult] = (),
    story_results: Iterable[PushResult] = (),
) -> str:
    sections = [issue.description.strip()] if issue.description.strip() else []
    if issue.type == IssueKind.EPIC:
        section = _children_section("Stories", issue, child_stories, story_results)
    elif issue.type == IssueKind.FEATURE:
        section = _children_section("Tasks", issue, child_tasks, task_results)
    else:
        section = None
    if section:
        sections.append(section)
    sections.append(f"<!-- madepush:id={issue.id} -->")
    return "\n\n".join(sections)


def sprint_issue_title(timebox: TimeBox) -> str:
    return f"Sprint: {timebox.name}"


def sprint_issue_body(
    timebox: TimeBox,
    related_tasks: Sequence[EntityRef],
    task_numbers: Mapping[str, int],
) -> str:
    lines: list[str] = []
    if timebox.description:
        lines.extend([timebox.description.strip(), ""])
    lines.append(f"**Status:** {sprint_status(timebox)}")
    if timebox.start_date or timebox.end_date:
        lines.append(f"**Period:** {timebox.start_date or '?'} → {timebox.end_date or '?'}")
    tasks = [
        f"- [ ] #{task_numbers[task.id]}" + (f" {task.title}" if task.title else "")
        for task in related_tasks
        if task.id in task_numbers
    ]
    if tasks:
        lines.extend(["", "## Tasks", "", *tasks])
    return "\n".join(lines)


__all__ = [
    "BASE_LABELS",
    "DEFAULT_STATUS_COLOR",
    "LinkRelation",
    "ROADMAP_TYPE_LABELS",
    "SPRINT_STATUS_COLORS",
    "SPRINT_TYPE_LABEL",
    "backlog_label",
    "issue_body",
    "issue_labels",
    "link_comment",
    "roadmap_labels",
    "sprint_issue_body",
    "sprint_issue_title",
    "sprint_label_name",
    "timebox_labels",
]
