"""madepush - push project plans (epics, stories, tasks, sprints, roadmaps) to GitHub.

High-level public API:

from madepush import load_config, load_document, build_service, resolve_credentials

cfg = load_config('madepush.yaml')
service = build_service(cfg, resolve_credentials(cfg))
summary = asyncio.run(service.push_document(cfg.github_org, cfg.github_repo,
                                            load_document('plan.json')))
print(summary.totals)

The CLI (``madepush push --input plan.json``) delegates to the same objects.
"""

from __future__ import annotations

from .config import ConfigError, PushConfig, default_config, load_config
from .loader import LoadError, load_document
from .models import Issue, IssueKind, PushDocument, PushResult
from .push_service import GitHubPushService, LinkOutcome, PushSummary, map_id_to_github_number
from .runtime import build_service, resolve_credentials

# Version constant (keep in sync with pyproject)
__version__ = "0.2.0"

__all__ = [
    "ConfigError",
    "GitHubPushService",
    "Issue",
    "IssueKind",
    "LinkOutcome",
    "LoadError",
    "PushConfig",
    "PushDocument",
    "PushResult",
    "PushSummary",
    "build_service",
    "default_config",
    "load_config",
    "load_document",
    "map_id_to_github_number",
    "resolve_credentials",
    "__version__",
]
