#!/usr/bin/env python3
"""Command-line interface for running playbooks.

Usage:
    runbookpilot run playbooks/ioc-triage.yml --input alert.json
    runbookpilot run playbooks/ioc-triage.yml --mode production --automation-level L1 --auto-approve
    runbookpilot run playbooks/ioc-triage.yml --dry-run --format json
    runbookpilot validate playbooks/ioc-triage.yml
    runbookpilot list --dir playbooks
    runbookpilot health --config config.yml

Exit codes: 0 success, 1 failure or invalid input, 2 usage error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import structlog

from runbookpilot import __version__
from runbookpilot.adapters.errors import AdapterConfigError
from runbookpilot.adapters.models import ExecutionMode, HealthState
from runbookpilot.adapters.registry import AdapterRegistry, build_registry
from runbookpilot.engine.orchestrator import ApprovalRequest, Orchestrator, RunOptions, RunResult
from runbookpilot.engine.playbook import AutomationLevel, PlaybookLoader, PlaybookValidationError
from runbookpilot.logging_config import configure_logging
from runbookpilot.settings import Settings, SettingsError, load_settings

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

# Used when the config file declares no adapters
DEFAULT_ADAPTERS: dict[str, Any] = {
    "virustotal": {"type": "enrichment"},
    "mock": {"type": "mock"},
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML config file (defaults to $RUNBOOKPILOT_CONFIG)",
    )
    common.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output",
    )

    parser = argparse.ArgumentParser(
        prog="runbookpilot",
        description="Security-operations playbook runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run playbook command
    run_parser = subparsers.add_parser("run", parents=[common], help="Run a playbook")
    run_parser.add_argument("playbook", type=str, help="Playbook YAML file")
    run_parser.add_argument(
        "--input",
        type=str,
        default=None,
        help="Alert JSON file made available to templates as 'alert'",
    )
    run_parser.add_argument(
        "--mode",
        choices=[m.value for m in ExecutionMode],
        default=ExecutionMode.SIMULATION.value,
        help="Execution mode",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate every step without executing (overrides --mode)",
    )
    run_parser.add_argument(
        "--automation-level",
        choices=[level.value for level in AutomationLevel],
        default=None,
        help="Override the playbook's automation level",
    )
    run_parser.add_argument(
        "--enable-l2",
        action="store_true",
        help="Allow full automation (L2)",
    )
    run_parser.add_argument(
        "--auto-approve",
        action="store_true",
        help="Approve every step that requires approval",
    )

    # Validate playbook command
    validate_parser = subparsers.add_parser(
        "validate", parents=[common], help="Validate a playbook"
    )
    validate_parser.add_argument("playbook", type=str, help="Playbook YAML file")

    # List playbooks command
    list_parser = subparsers.add_parser("list", parents=[common], help="List playbooks")
    list_parser.add_argument(
        "--dir",
        type=str,
        action="append",
        default=None,
        help="Playbook directory (repeatable; defaults to configured playbook_dirs)",
    )

    # Health command
    subparsers.add_parser("health", parents=[common], help="Check adapter health")

    return parser


# =============================================================================
# Helpers
# =============================================================================


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _load_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    configure_logging(
        verbose=args.verbose,
        json_output=args.format == "json",
        level=settings.log_level,
    )
    return settings


def _build_registry(settings: Settings) -> AdapterRegistry:
    if settings.adapters:
        return build_registry(settings.adapter_configs())
    return build_registry(Settings(adapters=DEFAULT_ADAPTERS).adapter_configs())


def _load_alert(path: str | None) -> dict[str, Any]:
    if path is None:
        return {}
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Alert file {path} must contain a JSON object")
    return data


async def _auto_approve(request: ApprovalRequest) -> bool:
    logger.info(
        "step_auto_approved",
        step=request.step_id,
        action=request.action,
        classification=request.classification,
    )
    return True


def format_run_result(result: RunResult) -> str:
    """Format a run result as readable text."""
    lines = [
        "=" * 60,
        f"PLAYBOOK RUN: {result.playbook_id}",
        "=" * 60,
        f"Run ID:           {result.run_id}",
        f"Mode:             {result.mode.value}",
        f"Automation level: {result.automation_level.value}",
        f"State:            {result.state.value}",
        f"Duration:         {result.duration_ms}ms",
        "",
        "Steps:",
        "-" * 40,
    ]

    for step in result.steps:
        if step.skipped:
            status = f"SKIPPED ({step.skip_reason})"
        elif step.success:
            status = "OK"
        else:
            status = f"FAILED [{step.error.code}] {step.error.message}" if step.error else "FAILED"
        lines.append(f"  {step.step_id} {step.action}@{step.executor}: {status}")

    if result.rollbacks:
        lines.extend(["", "Rollbacks:", "-" * 40])
        for rollback in result.rollbacks:
            status = "OK" if rollback.success else "FAILED"
            if rollback.error:
                status += f" [{rollback.error.code}] {rollback.error.message}"
            lines.append(f"  {rollback.step_id} {rollback.action}@{rollback.executor}: {status}")

    if result.error:
        lines.extend(["", f"Error: [{result.error.code}] {result.error.message}"])

    lines.append("=" * 60)
    return "\n".join(lines)


# =============================================================================
# Commands
# =============================================================================


async def run_command(args: argparse.Namespace) -> int:
    """Run a playbook."""
    settings = _load_settings(args)
    loader = PlaybookLoader()
    playbook = loader.load_from_file(args.playbook)

    validation = loader.validate(playbook)
    if not validation.valid:
        for error in validation.errors:
            print(f"error: {error}", file=sys.stderr)
        return EXIT_FAILURE

    alert = _load_alert(args.input)
    level = args.automation_level or settings.automation_level
    options = RunOptions(
        mode=ExecutionMode(args.mode),
        automation_level=AutomationLevel(level) if level else None,
        dry_run=args.dry_run,
        verbose=args.verbose,
        enable_l2=args.enable_l2,
        max_execution_time=settings.max_execution_time,
        approval_callback=_auto_approve if args.auto_approve else None,
    )

    registry = _build_registry(settings)
    try:
        result = await Orchestrator(registry, options).run(playbook, alert)
    finally:
        await registry.shutdown_all()

    if args.format == "json":
        _print_json(result.to_dict())
    else:
        print(format_run_result(result))

    return EXIT_OK if result.success else EXIT_FAILURE


def validate_command(args: argparse.Namespace) -> int:
    """Validate a playbook."""
    _load_settings(args)
    loader = PlaybookLoader()
    try:
        playbook = loader.load_from_file(args.playbook)
    except PlaybookValidationError as e:
        errors = e.errors or [str(e)]
        if args.format == "json":
            _print_json({"valid": False, "errors": errors, "warnings": []})
        else:
            for error in errors:
                print(f"error: {error}", file=sys.stderr)
        return EXIT_FAILURE

    validation = loader.validate(playbook)
    if args.format == "json":
        _print_json({"id": playbook.id, **validation.model_dump()})
    else:
        for error in validation.errors:
            print(f"error: {error}")
        for warning in validation.warnings:
            print(f"warning: {warning}")
        if validation.valid:
            print(f"{playbook.id}: valid ({len(playbook.steps)} steps)")

    return EXIT_OK if validation.valid else EXIT_FAILURE


def list_command(args: argparse.Namespace) -> int:
    """List playbooks in the configured directories."""
    settings = _load_settings(args)
    loader = PlaybookLoader()
    rows = []
    for directory in args.dir or settings.playbook_dirs:
        for path, playbook in loader.load_directory(directory).items():
            rows.append(
                {
                    "id": playbook.id,
                    "name": playbook.name,
                    "automation_level": playbook.config.automation_level.value,
                    "steps": len(playbook.steps),
                    "path": str(path),
                }
            )

    if args.format == "json":
        _print_json(rows)
    elif not rows:
        print("No playbooks found.")
    else:
        print("Available Playbooks:")
        print("-" * 40)
        for row in rows:
            print(
                f"  - {row['id']}: {row['name']} "
                f"({row['automation_level']}, {row['steps']} steps) [{row['path']}]"
            )

    return EXIT_OK


async def health_command(args: argparse.Namespace) -> int:
    """Check the health of every configured adapter."""
    settings = _load_settings(args)
    registry = _build_registry(settings)
    try:
        statuses = await registry.health_check_all()
    finally:
        await registry.shutdown_all()

    if args.format == "json":
        _print_json({name: status.to_dict() for name, status in statuses.items()})
    else:
        for name, status in statuses.items():
            print(f"  {name}: {status.status.value} - {status.message}")

    unhealthy = any(s.status == HealthState.UNHEALTHY for s in statuses.values())
    return EXIT_FAILURE if unhealthy else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    try:
        if args.command == "run":
            return asyncio.run(run_command(args))
        if args.command == "validate":
            return validate_command(args)
        if args.command == "list":
            return list_command(args)
        if args.command == "health":
            return asyncio.run(health_command(args))
    except (SettingsError, AdapterConfigError, PlaybookValidationError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except ValueError as e:
        print(f"error: invalid input: {e}", file=sys.stderr)
        return EXIT_FAILURE

    parser.print_help()
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
