"""issuecascade CLI.

Subcommands:
  move  -> set status / priority / branch / microsprint on project items,
           optionally cascading through sub-issues
"""

from __future__ import annotations

import argparse
from collections.abc import Callable
from typing import Any

from .config import DEFAULT_DEPTH, CascadeConfig, ConfigError
from .errors import CascadeError, redact
from .github_client import GitHubAPIError, GitHubProjectsClient, TrackerClient, resolve_token
from .move import MoveCommand, MoveOptions
from .runtime import execute_command, prepare_config
from .ux import print_error

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.RawDescriptionHelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


_MOVE_EPILOG = """\
examples:
  issuecascade move 42 --status in_progress
  issuecascade move 42 43 --status done --yes
  issuecascade move 10 --recursive --depth 2 --status ready --dry-run
  issuecascade move 42 --branch current
  issuecascade move 42 --backlog
"""


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="issuecascade", description="Bulk GitHub Projects field updates"
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    mv = sub.add_parser(
        "move",
        help="Update project fields for one or more issues",
        epilog=_MOVE_EPILOG,
    )
    mv.add_argument("issues", nargs="+", metavar="ISSUE", help="42, #42, owner/repo#42 or URL")
    mv.add_argument("--status", default="", help="Status value or configured alias")
    mv.add_argument("--priority", default="", help="Priority value or configured alias")
    mv.add_argument("--branch", default="", help="Branch to assign ('current' for the active one)")
    mv.add_argument(
        "--microsprint", default="", help="Microsprint to assign ('current' for today's)"
    )
    mv.add_argument(
        "--backlog", action="store_true", help="Clear branch and microsprint assignments"
    )
    mv.add_argument("-r", "--recursive", action="store_true", help="Also update sub-issues")
    mv.add_argument(
        "--depth",
        type=int,
        default=None,
        help=(
            "Maximum sub-issue depth with --recursive "
            f"(default: behavior.default_depth, else {DEFAULT_DEPTH})"
        ),
    )
    mv.add_argument("--dry-run", action="store_true", help="Preview changes without applying")
    mv.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompts")
    mv.add_argument(
        "-f", "--force", action="store_true", help="Bypass the checklist rule (not body/release)"
    )
    mv.add_argument("-R", "--repo", default="", help="Override target repository (owner/repo)")
    mv.add_argument("--config", help="Path to .issuecascade.yml (default: search upward)")
    return p


def _make_client(cfg: CascadeConfig) -> TrackerClient:
    token = resolve_token()
    if not token:
        raise ConfigError(
            "no GitHub token found; set ISSUECASCADE_GITHUB_TOKEN, GITHUB_TOKEN or GH_TOKEN"
        )
    return GitHubProjectsClient(token=token)


def _options_from_args(args: argparse.Namespace, cfg: CascadeConfig) -> MoveOptions:
    return MoveOptions(
        issues=list(args.issues),
        status=args.status,
        priority=args.priority,
        branch=args.branch,
        microsprint=args.microsprint,
        backlog=args.backlog,
        recursive=args.recursive,
        depth=args.depth if args.depth is not None else cfg.default_depth,
        dry_run=args.dry_run,
        yes=args.yes,
        force=args.force,
        repo=args.repo,
    )


def _cmd_move(args: argparse.Namespace, cfg: CascadeConfig) -> int:
    try:
        opts = _options_from_args(args, cfg)
        opts.validate()
        client = _make_client(cfg)
        MoveCommand(cfg, client).run(opts)
    except (CascadeError, ConfigError, GitHubAPIError) as exc:
        print_error(redact(str(exc)))
        return 1
    return 0


def _build_handlers(
    args: argparse.Namespace, cfg: CascadeConfig
) -> dict[str, Callable[[], int]]:
    return {"move": lambda: _cmd_move(args, cfg)}


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = prepare_config(args)
    except ConfigError as exc:
        print_error(str(exc))
        return 1
    handlers = _build_handlers(args, cfg)
    handler = handlers.get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    return execute_command(handler, args, args.cmd)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
