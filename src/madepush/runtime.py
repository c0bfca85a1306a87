"""Runtime helpers wiring configuration and credentials into a push service."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import requests

from .config import PushConfig, default_config, load_config
from .env_auth import EnvAuthConfig, create_env_auth_manager
from .github_rest import GitHubCredentials, GitHubRestClient
from .project import ProjectsClient
from .push_service import GitHubPushService
from .store import RepositorySet
from .sync_service import GitHubSyncService
from .tracker import GitHubTracker


def prepare_config(
    args: Any, *, loader: Callable[[str], PushConfig] = load_config
) -> PushConfig:
    """Load PushConfig for the given argparse namespace and apply CLI overrides."""
    path = getattr(args, "config", None)
    cfg = loader(path) if path else default_config()
    for attr, target in (("org", "github_org"), ("repo", "github_repo"), ("project", "project_name")):
        value = getattr(args, attr, None)
        if value:
            setattr(cfg, target, value)
    return cfg


def resolve_credentials(cfg: PushConfig) -> GitHubCredentials:
    manager = create_env_auth_manager(
        EnvAuthConfig(load_dotenv=cfg.env_load_dotenv, dotenv_path=cfg.env_dotenv_path)
    )
    return manager.credentials()


def build_service(
    cfg: PushConfig,
    credentials: GitHubCredentials,
    *,
    session: requests.Session | None = None,
) -> GitHubPushService:
    """Assemble the GitHub-backed collaborators behind a GitHubPushService."""
    rest = GitHubRestClient(
        credentials=credentials,
        base_url=cfg.github_api_url,
        graphql_url=cfg.github_graphql_url,
        session=session,
    )
    projects = ProjectsClient(rest)
    return GitHubPushService(
        GitHubTracker(rest, projects),
        GitHubSyncService(projects),
        RepositorySet(cfg.data_dir),
        batch_config=cfg.batch,
    )


__all__ = ["build_service", "prepare_config", "resolve_credentials"]
