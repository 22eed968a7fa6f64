"""Command line interface for dottor."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import load_settings
from .config_loader import load_settings_files
from .config_schema import UnifiedConfig
from .dependencies import check_dependencies
from .errors import DottorError
from .host import PlatformInfo
from .logger import setup_logging
from .reconcile.engine import ReconcileEngine
from .reconcile.reporter import (
    format_dry_run_preview,
    format_run_report,
    report_to_json,
)
from .repository import (
    create_config,
    delete_config,
    init_repository,
    scan_repository,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dottor",
        description="dottor - link a dotfiles repository into place",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start a new repository and add a configuration
  dottor init ~/dotfiles
  dottor --repo ~/dotfiles config create nvim

  # Preview, then deploy
  dottor --repo ~/dotfiles status
  dottor --repo ~/dotfiles deploy

  # Move existing files aside instead of reporting conflicts
  dottor deploy --backup

  # Check the programs configurations depend on
  dottor check

Settings are read from .dottor/config.yml (or DOTTOR_CONFIG) and can be
overridden with DOTTOR_* environment variables and the flags below.
        """,
    )
    parser.add_argument(
        "--repo",
        help="Dotfiles repository (takes precedence over DOTTOR_REPOSITORY "
        "and config files; default: current directory)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write the log to this file")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"dottor version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    init = commands.add_parser("init", help="Create a new repository")
    init.add_argument(
        "path", nargs="?", help="Directory to create (default: --repo or cwd)"
    )

    config = commands.add_parser("config", help="Manage configurations")
    config_commands = config.add_subparsers(dest="config_command", metavar="ACTION")
    config_commands.required = True
    create = config_commands.add_parser("create", help="Add a configuration")
    create.add_argument("name")
    delete = config_commands.add_parser("delete", help="Remove a configuration")
    delete.add_argument("name")
    delete.add_argument(
        "--yes", action="store_true", help="Do not ask for confirmation"
    )

    deploy = commands.add_parser("deploy", help="Link every entry into place")
    deploy.add_argument(
        "--dry-run",
        action="store_true",
        help="Show planned actions without changing anything",
    )
    deploy.add_argument(
        "--backup",
        action="store_true",
        default=None,
        help="Move existing files and directories aside instead of "
        "reporting a conflict",
    )
    deploy.add_argument(
        "--hardlink-fallback",
        action="store_true",
        default=None,
        help="On Windows without symlink privilege, hard-link files",
    )
    deploy.add_argument(
        "--workers", type=int, help="Entries reconciled in parallel (1-64)"
    )
    deploy.add_argument("--json", action="store_true", help="Print JSON")

    status = commands.add_parser(
        "status", help="Show what deploy would do (dry run)"
    )
    status.add_argument("--json", action="store_true", help="Print JSON")

    commands.add_parser("check", help="Check configuration dependencies")

    return parser


def _load(args: argparse.Namespace) -> UnifiedConfig:
    return load_settings(
        repository=args.repo,
        backup=getattr(args, "backup", None),
        hardlink_fallback=getattr(args, "hardlink_fallback", None),
        max_workers=getattr(args, "workers", None),
        raw=load_settings_files(),
    )


def _repo_root(settings: UnifiedConfig) -> Path:
    return Path(settings.reconcile.repository or Path.cwd())


def _confirm(message: str) -> bool:
    try:
        answer = input(f"{message}\nContinue? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init(args: argparse.Namespace, settings: UnifiedConfig) -> int:
    target = Path(args.path).expanduser() if args.path else _repo_root(settings)
    root_file = init_repository(target)
    print(f"Initialised dottor repository: {root_file.parent}")
    return EXIT_OK


def cmd_config(args: argparse.Namespace, settings: UnifiedConfig) -> int:
    root = _repo_root(settings)
    if args.config_command == "create":
        directory = create_config(root, args.name)
        print(f"Created configuration: {directory}")
        return EXIT_OK

    confirm = (lambda _message: True) if args.yes else _confirm
    if delete_config(root, args.name, confirm):
        print(f"Deleted configuration: {args.name}")
    else:
        print("Nothing deleted.")
    return EXIT_OK


def cmd_deploy(
    args: argparse.Namespace, settings: UnifiedConfig, dry_run: bool = False
) -> int:
    root = _repo_root(settings)
    scan = scan_repository(root)
    engine = ReconcileEngine(PlatformInfo.capture(), root, settings.reconcile)
    report = engine.run(
        scan.entries, scan.exclude, dry_run=dry_run or args.dry_run
    )

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif report.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_run_report(report))

    return EXIT_OK if report.ok else EXIT_FAILED


def cmd_status(args: argparse.Namespace, settings: UnifiedConfig) -> int:
    args.dry_run = True
    return cmd_deploy(args, settings, dry_run=True)


def cmd_check(args: argparse.Namespace, settings: UnifiedConfig) -> int:
    root = _repo_root(settings)
    scan = scan_repository(root)
    statuses = check_dependencies(root, scan.configurations)
    if not statuses:
        print("No dependencies declared.")
        return EXIT_OK

    for status in statuses:
        if status.satisfied:
            mark = "ok"
        elif status.required:
            mark = "MISSING"
        else:
            mark = "optional"
        line = f"[{mark}] {status.config}: {status.name} ({status.kind.value})"
        if status.found_version:
            line += f" {status.found_version}"
        if status.detail and not status.satisfied:
            line += f" - {status.detail}"
        print(line)

    return EXIT_FAILED if any(s.blocking for s in statuses) else EXIT_OK


_COMMANDS = {
    "init": cmd_init,
    "config": cmd_config,
    "deploy": cmd_deploy,
    "status": cmd_status,
    "check": cmd_check,
}


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # .env first so interpolation and DOTTOR_* lookups can see it
    load_dotenv()

    try:
        settings = _load(args)
    except (ValueError, OSError, yaml.YAMLError) as exc:
        _stderr_print(f"Error: {exc}")
        return EXIT_USAGE

    setup_logging(
        debug=args.debug,
        log_file=args.log_file or settings.logging.file,
        debug_format=args.log_format,
        level=settings.logging.level,
    )
    logger.debug("Running %s with %s", args.command, settings)

    try:
        return _COMMANDS[args.command](args, settings)
    except DottorError as exc:
        logger.debug("Command failed", exc_info=True)
        _stderr_print(f"Error: {exc}")
        return EXIT_FAILED


def run() -> None:
    """Entry point that handles errors gracefully."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        _stderr_print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    run()
