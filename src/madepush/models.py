"""Domain model for the push pipeline.

Plain dataclasses mirroring the project-management model (Projects, Epics,
Stories, Tasks, Sprints, Roadmaps, Teams, Backlogs) plus the small result
records produced while pushing them to GitHub.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class IssueKind(str, Enum):
    EPIC = "Epic"
    FEATURE = "Feature"
    TASK = "Task"

    def __str__(self) -> str:
        return self.value


@dataclass
class EntityRef:
    id: str
    title: str | None = None


@dataclass
class Issue:
    """A work item to be created as a GitHub issue.

    ``type`` holds an :class:`IssueKind` once normalised; before that it may
    carry whatever raw string the input document provided.
    """

    id: str
    title: str
    type: IssueKind | str = ""
    description: str = ""
    backlog: str | None = None
    depends: list[EntityRef] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)

    def depends_on(self, entity_id: str) -> bool:
        return any(dep.id == entity_id for dep in self.depends)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = str(self.type)
        return data


@dataclass(frozen=True)
class CreatedIssue:
    id: str  # GraphQL node id
    number: int
    title: str


@dataclass(frozen=True)
class PushResult:
    issue_id: str
    issue_number: int
    project_item_id: str
    source_id: str | None = None
    reused: bool = False


@dataclass
class Project:
    name: str
    description: str = ""


@dataclass
class TeamMember:
    name: str


@dataclass
class Team:
    id: str
    name: str
    description: str = ""
    team_members: list[TeamMember] = field(default_factory=list)


@dataclass
class SprintItem:
    issue: EntityRef


@dataclass
class TimeBox:
    name: str
    status: str = "PLANNED"
    id: str | None = None
    description: str = ""
    start_date: str | None = None
    end_date: str | None = None
    sprint_items: list[SprintItem] = field(default_factory=list)

    @property
    def related_tasks(self) -> list[EntityRef]:
        return [item.issue for item in self.sprint_items]


@dataclass(frozen=True)
class SprintResult:
    issue_id: str
    issue_number: int
    task_numbers: tuple[int, ...] = ()


@dataclass
class Milestone:
    name: str
    id: str | None = None
    description: str = ""
    due_date: str | None = None
    status: str | None = None


@dataclass
class Roadmap:
    name: str
    id: str | None = None
    description: str = ""
    milestones: list[Milestone] = field(default_factory=list)


@dataclass(frozen=True)
class RoadmapResult:
    roadmap: str
    milestones: dict[str, int]


@dataclass
class Backlog:
    name: str
    description: str = ""


@dataclass(frozen=True)
class LabelSpec:
    name: str
    color: str
    description: str = ""


@dataclass
class PushDocument:
    """Everything a single ``full_push`` run consumes."""

    project: Project
    epics: list[Issue] = field(default_factory=list)
    stories: list[Issue] = field(default_factory=list)
    tasks: list[Issue] = field(default_factory=list)
    backlogs: list[Backlog] = field(default_factory=list)
    teams: list[Team] = field(default_factory=list)
    timeboxes: list[TimeBox] = field(default_factory=list)
    roadmaps: list[Roadmap] = field(default_factory=list)


__all__ = [
    "Backlog",
    "CreatedIssue",
    "EntityRef",
    "Issue",
    "IssueKind",
    "LabelSpec",
    "Milestone",
    "Project",
    "PushDocument",
    "PushResult",
    "Roadmap",
    "RoadmapResult",
    "SprintItem",
    "SprintResult",
    "Team",
    "TeamMember",
    "TimeBox",
]
