"""Issue type normalisation and required-field validation."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass

from .errors import ValidationError
from .models import Issue, IssueKind

_KIND_ALIASES: dict[str, IssueKind] = {
    "epic": IssueKind.EPIC,
    "feature": IssueKind.FEATURE,
    "story": IssueKind.FEATURE,
    "task": IssueKind.TASK,
}


@dataclass(frozen=True)
class ValidationResult:
    issue: Issue
    error: ValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_type(type_: IssueKind | str | None) -> IssueKind | str:
    """Map loose type names onto :class:`IssueKind`.

    Unknown values are returned untouched; ``None``/empty yields ``""``.
    """
    if not type_:
        return ""
    return _KIND_ALIASES.get(str(type_).lower(), type_)


def _serialize(issue: Issue) -> str:
    try:
        return json.dumps(issue.to_dict(), ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):  # pragma: no cover - non-JSON payload smuggled in
        return repr(issue)


def check_issue(issue: Issue) -> ValidationResult:
    if not issue.title:
        return ValidationResult(
            issue,
            ValidationError(f"Issue without title detected: {_serialize(issue)}", field="title"),
        )
    if not issue.id:
        return ValidationResult(
            issue,
            ValidationError(f"Issue without id detected: {_serialize(issue)}", field="id"),
        )
    return ValidationResult(issue)


def validate_issue(issue: Issue) -> None:
    result = check_issue(issue)
    if result.error is not None:
        raise result.error


def prepare_issues(issues: Iterable[Issue], type_: IssueKind | str) -> None:
    """Normalise ``type`` on every issue in place, then validate each one."""
    kind = normalize_type(type_)
    for issue in issues:
        issue.type = kind
        validate_issue(issue)


__all__ = [
    "ValidationResult",
    "check_issue",
    "normalize_type",
    "prepare_issues",
    "validate_issue",
]
