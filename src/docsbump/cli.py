from __future__ import annotations

import argparse
from pathlib import Path
import sys

from docsbump.config import AppConfig, load_config
from docsbump.observability import configure_logging
from docsbump.orchestrator import UpgradeOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docsbump")
    subparsers = parser.add_subparsers(dest="command", required=True)

    upgrade_parser = subparsers.add_parser(
        "upgrade",
        help="Check the tracked SHA and open or refresh the upgrade pull request",
    )
    check_parser = subparsers.add_parser(
        "check",
        help="Only check whether the tracked SHA is up to date (exit 1 if not)",
    )
    for sub in (upgrade_parser, check_parser):
        sub.add_argument("--config", type=Path, default=Path("docsbump.toml"))
        sub.add_argument(
            "--branch",
            type=str,
            default=None,
            help="Target branch (defaults to target.default_branch)",
        )
        sub.add_argument(
            "-v",
            "--verbose",
            nargs="?",
            const="high",
            default=None,
            choices=("low", "high"),
            help="Log to stderr; 'low' keeps only high-signal events",
        )

    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(args.verbose)
    config = load_config(args.config)

    if args.command == "upgrade":
        _cmd_upgrade(config, branch=args.branch)
        return
    if args.command == "check":
        _cmd_check(config, branch=args.branch)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_upgrade(config: AppConfig, *, branch: str | None) -> None:
    outcome = UpgradeOrchestrator.from_config(config).check_and_upgrade(branch)
    if outcome.status == "up_to_date":
        print(f"No upgrade needed. {outcome.reason}")
    elif outcome.status == "pr_exists":
        print(outcome.reason)
    else:
        print(f"Upgrade completed successfully | {outcome.reason}")


def _cmd_check(config: AppConfig, *, branch: str | None) -> None:
    up_to_date = UpgradeOrchestrator.from_config(config).check_only(branch)
    target_branch = branch or config.default_branch
    if up_to_date:
        print(f"{config.tracked.path}#{target_branch} is up to date.")
        return
    print(f"{config.tracked.path}#{target_branch} needs an upgrade.")
    sys.exit(1)
