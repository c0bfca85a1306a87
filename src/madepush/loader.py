"""Read a :class:`PushDocument` from a JSON or YAML file.

Keys may be camelCase (``sprintItems``, ``teamMembers``, ``startDate``) or
snake_case. Missing titles and ids are kept as empty strings so the push
pipeline can report them through validation.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, cast

import yaml

from .models import (
    Backlog,
    EntityRef,
    Issue,
    Milestone,
    Project,
    PushDocument,
    Roadmap,
    SprintItem,
    Team,
    TeamMember,
    TimeBox,
)


class LoadError(ValueError):
    pass


def _get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise LoadError(f'{what} must be a mapping, got {type(value).__name__}')
    return cast(dict[str, Any], value)


def _items(data: dict[str, Any], *keys: str) -> list[dict[str, Any]]:
    value = _get(data, *keys, default=[])
    if not isinstance(value, list):
        raise LoadError(f"'{keys[0]}' must be a list")
    return [_mapping(v, keys[0]) for v in value]


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _ref(value: Any) -> EntityRef:
    if isinstance(value, dict):
        title = value.get('title')
        return EntityRef(id=str(value.get('id', '')), title=str(title) if title else None)
    return EntityRef(id=str(value))


def _issue(data: dict[str, Any]) -> Issue:
    depends = _get(data, 'depends', 'dependsOn', 'depends_on', default=[])
    backlog = _get(data, 'backlog')
    if isinstance(backlog, dict):
        backlog = backlog.get('name')
    return Issue(
        id=str(_get(data, 'id', default='')),
        title=str(_get(data, 'title', default='')),
        type=str(_get(data, 'type', default='')),
        description=str(_get(data, 'description', default='')),
        backlog=str(backlog) if backlog else None,
        depends=[_ref(d) for d in depends],
        assignees=_str_list(_get(data, 'assignees')),
        labels=_str_list(_get(data, 'labels')),
    )


def _team(data: dict[str, Any]) -> Team:
    members = []
    for member in _get(data, 'teamMembers', 'team_members', 'members', default=[]):
        name = member.get('name') if isinstance(member, dict) else member
        members.append(TeamMember(name=str(name or '')))
    name = str(_get(data, 'name', default=''))
    return Team(
        id=str(_get(data, 'id', default=name)),
        name=name,
        description=str(_get(data, 'description', default='')),
        team_members=members,
    )


def _timebox(data: dict[str, Any]) -> TimeBox:
    items = []
    for item in _get(data, 'sprintItems', 'sprint_items', default=[]):
        issue = item.get('issue', item) if isinstance(item, dict) else item
        items.append(SprintItem(issue=_ref(issue)))
    return TimeBox(
        name=str(_get(data, 'name', default='')),
        status=str(_get(data, 'status', default='PLANNED')),
        id=_get(data, 'id'),
        description=str(_get(data, 'description', default='')),
        start_date=_get(data, 'startDate', 'start_date'),
        end_date=_get(data, 'endDate', 'end_date'),
        sprint_items=items,
    )


def _roadmap(data: dict[str, Any]) -> Roadmap:
    milestones = [
        Milestone(
            name=str(_get(m, 'name', 'title', default='')),
            id=_get(m, 'id'),
            description=str(_get(m, 'description', default='')),
            due_date=_get(m, 'dueDate', 'due_date'),
            status=_get(m, 'status'),
        )
        for m in _items(data, 'milestones')
    ]
    return Roadmap(
        name=str(_get(data, 'name', default='')),
        id=_get(data, 'id'),
        description=str(_get(data, 'description', default='')),
        milestones=milestones,
    )


def parse_document(raw: Any) -> PushDocument:
    data = _mapping(raw, 'document')
    project_raw = _get(data, 'project')
    if project_raw is None:
        raise LoadError("document is missing 'project'")
    if isinstance(project_raw, str):
        project = Project(name=project_raw)
    else:
        project_data = _mapping(project_raw, 'project')
        project = Project(
            name=str(_get(project_data, 'name', 'title', default='')),
            description=str(_get(project_data, 'description', default='')),
        )
    if not project.name:
        raise LoadError('project name is required')
    return PushDocument(
        project=project,
        epics=[_issue(d) for d in _items(data, 'epics')],
        stories=[_issue(d) for d in _items(data, 'stories', 'features')],
        tasks=[_issue(d) for d in _items(data, 'tasks')],
        backlogs=[
            Backlog(
                name=str(_get(b, 'name', default='')),
                description=str(_get(b, 'description', default='')),
            )
            for b in _items(data, 'backlogs')
        ],
        teams=[_team(t) for t in _items(data, 'teams')],
        timeboxes=[_timebox(t) for t in _items(data, 'timeboxes', 'sprints')],
        roadmaps=[_roadmap(r) for r in _items(data, 'roadmaps')],
    )


def load_document(path: str | Path) -> PushDocument:
    p = Path(path)
    if not p.exists():
        raise LoadError(f'Input file not found: {p}')
    text = p.read_text(encoding='utf-8')
    try:
        if p.suffix.lower() == '.json':
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise LoadError(f'Could not parse {p}: {exc}') from exc
    return parse_document(raw)
