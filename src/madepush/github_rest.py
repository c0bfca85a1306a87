from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests

from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "madepush-rest/0.2.0"
API_VERSION = "2022-11-28"
HTTP_ERROR_STATUS = 400
HTTP_NOT_FOUND = 404
# POST writes are only retried when GitHub refused them (see retry.py)
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE"})

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST/GraphQL API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text
        self.retry_after = retry_after


@dataclass(frozen=True)
class GitHubCredentials:
    """Explicit credential handed to every client that talks to GitHub."""

    token: str

    def __repr__(self) -> str:
        return "GitHubCredentials(token=<redacted>)"


def team_slug(name: str) -> str:
    """Approximate GitHub's slug derivation for team names."""
    return _SLUG_INVALID.sub("-", name.strip().lower()).strip("-")


def _retry_after(response: Any) -> float | None:
    headers = getattr(response, "headers", None) or {}
    value = headers.get("Retry-After") if hasattr(headers, "get") else None
    try:
        return float(value) if value else None
    except (TypeError, ValueError):
        return None


@dataclass
class GitHubRestClient:
    """Lightweight REST/GraphQL client for the GitHub operations madepush needs."""

    credentials: GitHubCredentials
    base_url: str = DEFAULT_API_URL
    graphql_url: str = DEFAULT_GRAPHQL_URL
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.credentials.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("X-GitHub-Api-Version", API_VERSION)
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        idempotent: bool | None = None,
    ) -> Any:
        if idempotent is None:
            idempotent = method.upper() in IDEMPOTENT_METHODS
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )

        def _run() -> Any:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=30,
            )
            if response.status_code >= HTTP_ERROR_STATUS:
                raise GitHubAPIError(
                    f"GitHub API {method} {url} failed with {response.status_code}",
                    status=response.status_code,
                    response_text=response.text,
                    retry_after=_retry_after(response),
                )
            return response

        response = run_with_retries(_run, cfg=self.retry, idempotent=idempotent)
        if response.text:
            try:
                return response.json()
            except ValueError:  # pragma: no cover - non-JSON body
                return response.text
        return None

    def _paginate(self, path: str, *, params: dict[str, Any] | None = None) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params)
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    # ---- Issue operations --------------------------------------------
    def create_issue(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        assignees: Iterable[str] | None = None,
        milestone: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        if assignees:
            payload["assignees"] = list(assignees)
        if milestone is not None:
            payload["milestone"] = milestone
        data = self._request("POST", f"/repos/{owner}/{repo}/issues", json_body=payload)
        if not isinstance(data, dict) or not isinstance(data.get("number"), int):
            raise GitHubAPIError(f"Unexpected issue payload for '{title}': {data!r}")
        return data

    def add_labels(self, owner: str, repo: str, number: int, labels: Iterable[str]) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/labels",
            json_body={"labels": list(labels)},
        )

    def create_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            json_body={"body": body},
        )

    # ---- Labels -------------------------------------------------------
    def get_label(self, owner: str, repo: str, name: str) -> dict[str, Any] | None:
        try:
            data = self._request("GET", f"/repos/{owner}/{repo}/labels/{quote(name, safe='')}")
        except GitHubAPIError as exc:
            if exc.status == HTTP_NOT_FOUND:
                return None
            raise
        return data if isinstance(data, dict) else None

    def create_label(
        self, owner: str, repo: str, *, name: str, color: str, description: str = ""
    ) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/labels",
            json_body={
                "name": name,
                "color": color.lstrip("#").lower(),
                "description": description[:100],
            },
        )

    # ---- Milestones ---------------------------------------------------
    def list_milestones(self, owner: str, repo: str) -> list[dict[str, Any]]:
        data = self._paginate(f"/repos/{owner}/{repo}/milestones", params={"state": "all"})
        return [entry for entry in data if isinstance(entry, dict)]

    def create_milestone(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        description: str = "",
        due_on: str | None = None,
        state: str = "open",
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": title, "description": description, "state": state}
        if due_on:
            payload["due_on"] = due_on
        data = self._request("POST", f"/repos/{owner}/{repo}/milestones", json_body=payload)
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected milestone payload for '{title}': {data!r}")
        return data

    # ---- Teams --------------------------------------------------------
    def get_team(self, org: str, slug: str) -> dict[str, Any] | None:
        try:
            data = self._request("GET", f"/orgs/{org}/teams/{slug}")
        except GitHubAPIError as exc:
            if exc.status == HTTP_NOT_FOUND:
                return None
            raise
        return data if isinstance(data, dict) else None

    def create_team(self, org: str, *, name: str, description: str = "") -> dict[str, Any]:
        data = self._request(
            "POST",
            f"/orgs/{org}/teams",
            json_body={"name": name, "description": description, "privacy": "closed"},
        )
        return data if isinstance(data, dict) else {}

    def add_team_membership(self, org: str, slug: str, username: str) -> None:
        self._request(
            "PUT",
            f"/orgs/{org}/teams/{slug}/memberships/{username}",
            json_body={"role": "member"},
        )

    # ---- GraphQL ------------------------------------------------------
    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = {"query": query, "variables": variables or {}}
        is_query = not query.lstrip().startswith("mutation")
        data = self._request("POST", self.graphql_url, json_body=payload, idempotent=is_query)
        if not isinstance(data, dict):
            raise GitHubAPIError(f"GraphQL query returned unexpected payload: {data!r}")
        if data.get("errors"):
            raise GitHubAPIError(f"GraphQL query failed: {data['errors']}")
        result = data.get("data")
        return result if isinstance(result, dict) else {}


__all__ = [
    "GitHubAPIError",
    "GitHubCredentials",
    "GitHubRestClient",
    "team_slug",
]
