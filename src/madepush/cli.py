"""madepush CLI.

Subcommands:
  push      -> full push of a project document (labels, issues, links, sprints, roadmaps)
  labels    -> provision labels only
  validate  -> load, normalise and validate a document without touching GitHub
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from collections.abc import Callable
from typing import Any

from .config import ConfigError, PushConfig
from .env_auth import CredentialsError
from .errors import PushError
from .github_rest import GitHubAPIError
from .loader import LoadError, load_document
from .logging import configure_logging
from .models import IssueKind, PushDocument
from .runtime import build_service, prepare_config, resolve_credentials
from .validation import check_issue, prepare_issues

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _add_target_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--input", required=True, help="Project document (JSON or YAML)")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--org", help="Override target organisation")
    parser.add_argument("--repo", help="Override target repository name")


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(prog="madepush", description="Push project plans to GitHub")
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress informational logging (env: MADEPUSH_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pp = sub.add_parser("push", help="Push project, issues, links, sprints and roadmaps")
    _add_target_args(pp)
    pp.add_argument("--project", help="Override project board name")

    pl = sub.add_parser("labels", help="Ensure labels exist in the repository")
    _add_target_args(pl)

    pv = sub.add_parser("validate", help="Validate a project document offline")
    pv.add_argument("--input", required=True, help="Project document (JSON or YAML)")
    return p


def _require_target(cfg: PushConfig) -> tuple[str, str]:
    if not cfg.github_org or not cfg.github_repo:
        raise ConfigError("GitHub org and repo are required (--org/--repo or github.org/repo)")
    return cfg.github_org, cfg.github_repo


def _normalise(document: PushDocument) -> None:
    tiers = (
        (document.tasks, IssueKind.TASK),
        (document.stories, IssueKind.FEATURE),
        (document.epics, IssueKind.EPIC),
    )
    for issues, kind in tiers:
        for issue in issues:
            issue.type = kind


def _cmd_validate(args: argparse.Namespace) -> int:
    document = load_document(args.input)
    _normalise(document)
    problems: list[str] = []
    checked = 0
    for issues in (document.tasks, document.stories, document.epics):
        for issue in issues:
            checked += 1
            result = check_issue(issue)
            if result.error is not None:
                problems.append(str(result.error))
    if problems:
        for problem in problems:
            print(f"[validate] {problem}")
        print(f"[validate] {len(problems)} of {checked} issues invalid")
        return EXIT_FAILURE
    if not args.quiet:
        print(f"[validate] {checked} issues valid for project '{document.project.name}'")
    return EXIT_OK


def _cmd_labels(args: argparse.Namespace, cfg: PushConfig) -> int:
    org, repo = _require_target(cfg)
    document = load_document(args.input)
    service = build_service(cfg, resolve_credentials(cfg))
    asyncio.run(
        service.ensure_labels(org, repo, document.backlogs, document.timeboxes, document.roadmaps)
    )
    if not args.quiet:
        print(f"[labels] labels ensured for {org}/{repo}")
    return EXIT_OK


def _cmd_push(args: argparse.Namespace, cfg: PushConfig) -> int:
    org, repo = _require_target(cfg)
    document = load_document(args.input)
    if cfg.project_name:
        document.project.name = cfg.project_name
    # full_push assigns the issue types; validate here to fail before any remote call
    prepare_issues(document.tasks, IssueKind.TASK)
    prepare_issues(document.stories, IssueKind.FEATURE)
    prepare_issues(document.epics, IssueKind.EPIC)
    service = build_service(cfg, resolve_credentials(cfg))
    summary = asyncio.run(service.push_document(org, repo, document))
    payload = {"project_id": summary.project_id, "totals": summary.totals}
    print(json.dumps(payload, indent=None if args.quiet else 2))
    return EXIT_OK


def _build_handlers(
    args: argparse.Namespace, cfg: PushConfig | None
) -> dict[str, Callable[[], int]]:
    handlers: dict[str, Callable[[], int]] = {"validate": lambda: _cmd_validate(args)}
    if cfg is not None:
        handlers["push"] = lambda: _cmd_push(args, cfg)
        handlers["labels"] = lambda: _cmd_labels(args, cfg)
    return handlers


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.quiet and os.environ.get("MADEPUSH_QUIET") == "1":
        args.quiet = True
    try:
        cfg = None if args.cmd == "validate" else prepare_config(args)
        if cfg is not None:
            level = "WARNING" if args.quiet else cfg.logging_level
            configure_logging(cfg.logging_json_enabled, level)
        elif args.quiet:
            configure_logging(level="WARNING")
        handler = _build_handlers(args, cfg).get(args.cmd)
        if handler is None:  # pragma: no cover - argparse enforces valid choices
            parser.print_help()
            return EXIT_FAILURE
        return handler()
    except (ConfigError, LoadError, CredentialsError) as exc:
        print(f"[error] {exc}")
        return EXIT_USAGE
    except (PushError, GitHubAPIError) as exc:
        print(f"[error] {exc}")
        return EXIT_FAILURE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
