from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from .concurrency import BatchConfig
from .github_rest import DEFAULT_API_URL, DEFAULT_GRAPHQL_URL

DEFAULT_DATA_DIR = "./data/db"


class ConfigError(RuntimeError):
    pass


@dataclass
class PushConfig:
    source_file: Path | None
    github_org: str | None
    github_repo: str | None
    github_api_url: str
    github_graphql_url: str
    project_name: str | None
    data_dir: Path
    # Batch configuration
    batch_size: int
    batch_delay_seconds: float
    batch_individual_delay_seconds: float
    # Logging configuration
    logging_json_enabled: bool
    logging_level: str
    # Environment authentication configuration
    env_load_dotenv: bool
    env_dotenv_path: str | None

    @property
    def batch(self) -> BatchConfig:
        return BatchConfig(
            batch_size=self.batch_size,
            batch_delay=self.batch_delay_seconds,
            individual_delay=self.batch_individual_delay_seconds,
        )


def _resolve_env_var(value: Any) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith('$'):
        return os.getenv(value[1:], value)  # Fallback to original if not found
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Configuration section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _build(raw: dict[str, Any], base: Path | None, source: Path | None) -> PushConfig:
    gh = _section(raw, 'github')
    project = _section(raw, 'project')
    storage = _section(raw, 'storage')
    batch = _section(raw, 'batch')
    logging_config = _section(raw, 'logging')
    env_auth = _section(raw, 'environment')

    data_dir = Path(_resolve_env_var(storage.get('data_dir', DEFAULT_DATA_DIR)))
    if base is not None and not data_dir.is_absolute():
        data_dir = base / data_dir

    try:
        batch_size = int(_resolve_env_var(batch.get('size', 3)))
        batch_delay = float(_resolve_env_var(batch.get('delay_seconds', 1.0)))
        individual_delay = float(_resolve_env_var(batch.get('individual_delay_seconds', 0.5)))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f'Invalid batch configuration: {exc}') from exc
    if batch_size < 1:
        raise ConfigError('batch.size must be at least 1')

    return PushConfig(
        source_file=source,
        github_org=_resolve_env_var(gh.get('org')),
        github_repo=_resolve_env_var(gh.get('repo')),
        github_api_url=_resolve_env_var(gh.get('api_url', DEFAULT_API_URL)),
        github_graphql_url=_resolve_env_var(gh.get('graphql_url', DEFAULT_GRAPHQL_URL)),
        project_name=_resolve_env_var(project.get('name')),
        data_dir=data_dir,
        batch_size=batch_size,
        batch_delay_seconds=batch_delay,
        batch_individual_delay_seconds=individual_delay,
        logging_json_enabled=bool(logging_config.get('json_enabled', False)),
        logging_level=str(logging_config.get('level', 'INFO')),
        env_load_dotenv=bool(env_auth.get('load_dotenv', True)),
        env_dotenv_path=env_auth.get('dotenv_path'),
    )


def default_config() -> PushConfig:
    return _build({}, None, None)


def load_config(path: str | Path) -> PushConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f'Configuration file not found: {p}')
    try:
        raw = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Invalid YAML in {p}: {exc}') from exc
    if not isinstance(raw, dict):
        raise ConfigError(f'Configuration root must be a mapping: {p}')
    return _build(cast(dict[str, Any], raw), p.parent, p)
