#!/usr/bin/env python3
"""
Model Keeper command line interface.

Examples:
  modelkeeper check                      # List available updates
  modelkeeper install phi-3-mini         # Install the current version
  modelkeeper install --all              # Install every registry model
  modelkeeper update                     # Apply every available update
  modelkeeper rollback phi-3-mini        # Return to the previous version
  modelkeeper --json list                # Installed models as JSON
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .commands import CommandResult, ModelCommands
from .config.settings import load_settings
from .models.types import OperationStage, UpdateProgress
from .utils.file_utils import format_bytes
from .utils.logging import setup_logging

console = Console()


class ProgressPrinter:
    """Prints stage changes and download progress in 10% steps."""

    def __init__(self, output: Console):
        self.output = output
        self.last_stage = {}
        self.last_decile = {}

    def __call__(self, progress: UpdateProgress) -> None:
        key = f"{progress.model_id}-{progress.variant}"
        if self.last_stage.get(key) != progress.stage:
            self.last_stage[key] = progress.stage
            self.last_decile[key] = -1
            style = "red" if progress.stage in (OperationStage.FAILING, OperationStage.FAILED) else "cyan"
            self.output.print(f"[{style}]{key} {progress.version}: {progress.stage.value}[/{style}]")
        if progress.stage == OperationStage.DOWNLOADING and progress.total_bytes:
            decile = int(progress.progress_percent // 10)
            if decile > self.last_decile.get(key, -1):
                self.last_decile[key] = decile
                self.output.print(
                    f"  {progress.progress_percent:5.1f}% of {format_bytes(progress.total_bytes)} "
                    f"at {progress.speed_mbps:.1f} MB/s"
                )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modelkeeper",
        description="Install, verify, update and roll back local ML models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
    )
    parser.add_argument("--models-dir", type=Path, help="Models directory (default: $MODELKEEPER_MODELS_DIR)")
    parser.add_argument("--app-version", help="Host application version for compatibility checks")
    parser.add_argument("--json", action="store_true", help="Print structured JSON results")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="List installed models with newer compatible versions")

    install = sub.add_parser("install", help="Install a model, or several with --all")
    install.add_argument("model_ids", nargs="*", metavar="model_id")
    install.add_argument("--all", action="store_true",
                         help="Install the listed models, or every registry model, concurrently")
    install.add_argument("--version", dest="model_version", help="Pin a registry version")
    install.add_argument("--variant", help="Install slot (default: the version's variant)")
    install.add_argument("--force", action="store_true", help="Reinstall even if already installed")

    update = sub.add_parser("update", help="Update one model, or all with available updates")
    update.add_argument("model_id", nargs="?")
    update.add_argument("--force", action="store_true", help="Reinstall even if already current")

    rollback = sub.add_parser("rollback", help="Return a model to an earlier version")
    rollback.add_argument("model_id")
    rollback.add_argument("--version", dest="model_version", help="Target version (default: previous)")
    rollback.add_argument("--variant", help="Variant, when several are installed")
    rollback.add_argument("--cleanup-backup", action="store_true", help="Delete the backup once restored")

    sub.add_parser("list", help="List installed models")

    cleanup = sub.add_parser("cleanup", help="Prune old backups")
    cleanup.add_argument("--keep", type=int, dest="keep_count", help="Backups to keep per model")
    cleanup.add_argument("--no-protect", action="store_true",
                         help="Allow deleting the backup of each installed version's predecessor")

    history = sub.add_parser("history", help="Show published versions of a model")
    history.add_argument("model_id")

    verify = sub.add_parser("verify", help="Verify installed artifacts")
    verify.add_argument("model_id", nargs="?")

    remove = sub.add_parser("remove", help="Remove an installed model (backups are kept)")
    remove.add_argument("model_id")
    remove.add_argument("--variant")

    sub.add_parser("available", help="List registry models that are not installed")

    auto = sub.add_parser("auto-update", help="Enable or disable automatic updates")
    auto.add_argument("state", choices=["on", "off"])

    refresh = sub.add_parser("refresh", help="Replace the registry with a new document")
    refresh.add_argument("source", type=Path)

    return parser


async def dispatch(commands: ModelCommands, args: argparse.Namespace) -> CommandResult:
    if args.command == "check":
        return await commands.check()
    if args.command == "install" and args.all:
        return await commands.install_all(args.model_ids or None, force=args.force)
    if args.command == "install":
        return await commands.install(args.model_ids[0], version=args.model_version,
                                      variant=args.variant, force=args.force)
    if args.command == "update":
        return await commands.update(args.model_id, force=args.force)
    if args.command == "rollback":
        return await commands.rollback(args.model_id, version=args.model_version,
                                       variant=args.variant, cleanup_backup=args.cleanup_backup)
    if args.command == "list":
        return await commands.list()
    if args.command == "cleanup":
        return await commands.cleanup(args.keep_count, protect_predecessors=not args.no_protect)
    if args.command == "history":
        return await commands.history(args.model_id)
    if args.command == "verify":
        return await commands.verify(args.model_id)
    if args.command == "remove":
        return await commands.remove(args.model_id, variant=args.variant)
    if args.command == "available":
        return await commands.available()
    if args.command == "auto-update":
        return await commands.auto_update(args.state == "on")
    if args.command == "refresh":
        return await commands.refresh(args.source)
    raise ValueError(f"Unknown command {args.command}")


def render(result: CommandResult, output: Console) -> None:
    """Human-readable rendering of a command result."""
    if not result.success:
        details = result.message
        if result.stage:
            details += f"\nStage: {result.stage}"
        if result.error and result.error.get("error_type"):
            details += f"\nError: {result.error['error_type']}"
        output.print(Panel(details, title=f"{result.command} failed", style="red", expand=False))
    else:
        output.print(f"[green]{result.message}[/green]")

    data = result.data
    if result.command == "check" and data:
        table = Table(title="Available Updates")
        for column in ("Model", "Variant", "Installed", "Latest", "Type", "Breaking"):
            table.add_column(column)
        for c in data:
            table.add_row(c["model_id"], c["variant"], c["current_version"], c["latest_version"],
                          c["update_type"], "yes" if c["is_breaking"] else "no")
        output.print(table)
    elif result.command in ("list", "remove") and data:
        table = Table(title="Installed Models" if result.command == "list" else "Removed")
        for column in ("Model", "Variant", "Version", "Size", "Installed At"):
            table.add_column(column)
        for m in data:
            table.add_row(m["model_id"], m["variant"], m["version"],
                          format_bytes(m["size_bytes"]), str(m["installed_at"]))
        output.print(table)
    elif result.command == "history" and data:
        table = Table(title=f"{result.model_id} Versions")
        for column in ("Version", "Released", "Size", "Compatibility", "Changelog"):
            table.add_column(column)
        for v in data:
            table.add_row(v["version"], str(v["release_date"] or "-"), format_bytes(v["size_bytes"]),
                          ", ".join(v["compatibility"]), v["changelog"])
        output.print(table)
    elif result.command == "available" and data:
        table = Table(title="Available Models")
        for column in ("Model", "Name", "Current Version", "Category"):
            table.add_column(column)
        for m in data:
            table.add_row(m["id"], m["name"], m["current_version"], m["category"])
        output.print(table)
    elif result.command == "verify" and data:
        table = Table(title="Verification")
        for column in ("Artifact", "Status", "Details"):
            table.add_column(column)
        for key, report in data.items():
            status = "[green]ok[/green]" if report["ok"] else "[red]failed[/red]"
            details = "; ".join(report["messages"]) or ("low trust" if report["low_trust"] else "")
            table.add_row(key, status, details)
        output.print(table)
    elif result.command in ("update", "install_all") and data:
        for outcome in data:
            key = outcome["model_id"] + (f"-{outcome['variant']}" if outcome["variant"] else "")
            if outcome["ok"]:
                output.print(f"  {key}: {outcome['result']['version']}")
            else:
                output.print(f"  [red]{key}: {outcome['error']['message']}[/red]")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point. Returns 0 on success and 1 on any failure."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "install" and not args.all and len(args.model_ids) != 1:
        parser.error("install takes exactly one model id unless --all is given")
    settings = load_settings(models_dir=args.models_dir, app_version=args.app_version)
    setup_logging(settings, level="DEBUG" if args.verbose else None)

    commands = ModelCommands(settings)
    if not args.json:
        commands.orchestrator.add_progress_callback(ProgressPrinter(Console(stderr=True)))

    result = asyncio.run(dispatch(commands, args))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        render(result, console)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
