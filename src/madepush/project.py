"""GitHub Project (v2) operations with per-project field caching.

Features:
    * Find-or-create a ProjectV2 board by title under an organisation
    * Attach issues (by node id) to a board
    * Field id lookup by name (cached per project id for the lifetime of the client)
    * Field value updates: single-select options resolved case-insensitively,
      any other field type receives a text value
"""

from __future__ import annotations

from dataclasses import dataclass, field
from textwrap import dedent
from typing import Any

from .errors import BestEffortFieldError
from .github_rest import GitHubAPIError, GitHubRestClient
from .logging import get_logger

_FIND_PROJECTS = dedent(
    """
    query FindProjects($login: String!, $query: String!, $cursor: String) {
      organization(login: $login) {
        id
        projectsV2(first: 50, query: $query, after: $cursor) {
          nodes { id title number }
          pageInfo { hasNextPage endCursor }
        }
      }
    }
    """
)

_CREATE_PROJECT = dedent(
    """
    mutation CreateProject($ownerId: ID!, $title: String!) {
      createProjectV2(input: { ownerId: $ownerId, title: $title }) {
        projectV2 { id number }
      }
    }
    """
)

_ADD_ITEM = dedent(
    """
    mutation AddItem($projectId: ID!, $contentId: ID!) {
      addProjectV2ItemById(input: { projectId: $projectId, contentId: $contentId }) {
        item { id }
      }
    }
    """
)

_PROJECT_FIELDS = dedent(
    """
    query ProjectFields($id: ID!) {
      node(id: $id) {
        ... on ProjectV2 {
          fields(first: 50) {
            nodes {
              ... on ProjectV2FieldCommon { id name dataType }
              ... on ProjectV2SingleSelectField { id name dataType options { id name } }
            }
          }
        }
      }
    }
    """
)

_PROJECT_ITEMS = dedent(
    """
    query ProjectItems($id: ID!, $cursor: String) {
      node(id: $id) {
        ... on ProjectV2 {
          items(first: 100, after: $cursor) {
            nodes {
              content {
                ... on Issue { title number }
                ... on DraftIssue { title }
              }
            }
            pageInfo { hasNextPage endCursor }
          }
        }
      }
    }
    """
)

_SET_FIELD = dedent(
    """
    mutation SetField($projectId: ID!, $itemId: ID!, $fieldId: ID!, $value: ProjectV2FieldValue!) {
      updateProjectV2ItemFieldValue(input: {
        projectId: $projectId
        itemId: $itemId
        fieldId: $fieldId
        value: $value
      }) {
        projectV2Item { id }
      }
    }
    """
)


@dataclass(frozen=True)
class ProjectField:
    id: str
    name: str
    data_type: str
    options: dict[str, str] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ProjectField:
        options: dict[str, str] | None = None
        raw_options = payload.get("options")
        if isinstance(raw_options, list):
            options = {
                str(opt["name"]).casefold(): str(opt["id"])
                for opt in raw_options
                if isinstance(opt, dict) and "id" in opt and "name" in opt
            }
        return cls(
            id=str(payload.get("id")),
            name=str(payload.get("name")),
            data_type=str(payload.get("dataType", "")),
            options=options,
        )


@dataclass
class ProjectsClient:
    rest: GitHubRestClient
    _fields: dict[str, dict[str, ProjectField]] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self.logger = get_logger()

    # ---------------- lookup ----------------
    def find_project(self, org: str, title: str) -> tuple[str | None, str | None]:
        """Return ``(owner_id, project_id)``; project id is None when absent."""
        cursor: str | None = None
        owner_id: str | None = None
        while True:
            data = self.rest.graphql(
                _FIND_PROJECTS, {"login": org, "query": title, "cursor": cursor}
            )
            organization = data.get("organization") or {}
            owner_id = organization.get("id") or owner_id
            projects = organization.get("projectsV2") or {}
            for node in projects.get("nodes") or []:
                if isinstance(node, dict) and node.get("title") == title:
                    return owner_id, str(node["id"])
            page = projects.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                return owner_id, None
            cursor = page.get("endCursor")

    def list_item_titles(self, project_id: str) -> list[str]:
        titles: list[str] = []
        cursor: str | None = None
        while True:
            data = self.rest.graphql(_PROJECT_ITEMS, {"id": project_id, "cursor": cursor})
            items = (data.get("node") or {}).get("items") or {}
            for node in items.get("nodes") or []:
                content = (node or {}).get("content") or {}
                title = content.get("title")
                if isinstance(title, str):
                    titles.append(title)
            page = items.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                return titles
            cursor = page.get("endCursor")

    # ---------------- mutations ----------------
    def create_project(self, org: str, title: str) -> str:
        owner_id, project_id = self.find_project(org, title)
        if project_id:
            self.logger.info(f"♻️ Reusing project '{title}'", project_id=project_id)
            return project_id
        if not owner_id:
            raise GitHubAPIError(f"Organization '{org}' not found or inaccessible")
        data = self.rest.graphql(_CREATE_PROJECT, {"ownerId": owner_id, "title": title})
        node = (data.get("createProjectV2") or {}).get("projectV2") or {}
        if not node.get("id"):
            raise GitHubAPIError(f"Project creation failed for '{title}'")
        self.logger.log_operation("project_created", project=title, project_id=node["id"])
        return str(node["id"])

    def add_item(self, project_id: str, content_id: str) -> str:
        data = self.rest.graphql(_ADD_ITEM, {"projectId": project_id, "contentId": content_id})
        item = (data.get("addProjectV2ItemById") or {}).get("item") or {}
        if not item.get("id"):
            raise GitHubAPIError(f"Failed to add {content_id} to project {project_id}")
        return str(item["id"])

    # ---------------- fields ----------------
    def fields(self, project_id: str) -> dict[str, ProjectField]:
        cached = self._fields.get(project_id)
        if cached is not None:
            return cached
        data = self.rest.graphql(_PROJECT_FIELDS, {"id": project_id})
        nodes = ((data.get("node") or {}).get("fields") or {}).get("nodes") or []
        parsed = {}
        for node in nodes:
            if isinstance(node, dict) and node.get("id") and node.get("name"):
                project_field = ProjectField.from_payload(node)
                parsed[project_field.name] = project_field
        self._fields[project_id] = parsed
        return parsed

    def field_id_by_name(self, project_id: str, name: str) -> str | None:
        project_field = self.fields(project_id).get(name)
        return project_field.id if project_field else None

    def set_item_field(self, project_id: str, item_id: str, field_id: str, value: str) -> None:
        project_field = next(
            (f for f in self.fields(project_id).values() if f.id == field_id), None
        )
        payload: dict[str, Any]
        if project_field is not None and project_field.options is not None:
            option_id = project_field.options.get(value.casefold())
            if option_id is None:
                raise BestEffortFieldError(
                    f"Value '{value}' not found among options for field '{project_field.name}'",
                    field_name=project_field.name,
                )
            payload = {"singleSelectOptionId": option_id}
        else:
            payload = {"text": value}
        self.rest.graphql(
            _SET_FIELD,
            {"projectId": project_id, "itemId": item_id, "fieldId": field_id, "value": payload},
        )


__all__ = ["ProjectField", "ProjectsClient"]
