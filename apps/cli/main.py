"""CLI application for DepMend."""

import asyncio
import logging
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from core.advisories import AdvisorySource, JsonFileAdvisorySource, OsvAdvisorySource
from core.config import PlannerSettings, get_settings
from core.errors import LookupFailure, MalformedInputError, RunCancelledError
from core.remediate import remediate
from core.report import (
    EXIT_FAILED,
    EXIT_INPUT_ERROR,
    exit_status,
    format_json,
    render_summary,
    update_manifest_content,
)

console = Console()

LOCKFILE_NAMES = ("package-lock.json", "npm-shrinkwrap.json")


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def find_lockfile(manifest_path: Path) -> Path | None:
    """Lockfile next to the manifest, shrinkwrap taking precedence as npm does."""
    for name in reversed(LOCKFILE_NAMES):
        candidate = manifest_path.parent / name
        if candidate.exists():
            return candidate
    return None


def build_source(advisories: str | None, osv: bool, settings: PlannerSettings) -> AdvisorySource:
    if advisories and osv:
        raise typer.BadParameter("Use either --advisories or --osv, not both")
    if advisories:
        return JsonFileAdvisorySource(advisories)
    if osv:
        return OsvAdvisorySource(base_url=settings.osv_url, timeout=settings.lookup_timeout)
    raise typer.BadParameter("An advisory source is required: --advisories FILE or --osv")


app = typer.Typer(
    name="depmend",
    help="DepMend - Plan npm overrides that remediate vulnerable dependencies",
    add_completion=False,
)


@app.command()
def plan(
    manifest_path: str = typer.Argument("package.json", help="Path to package.json"),
    lockfile: str | None = typer.Option(None, "--lockfile", "-l", help="Lockfile (default: next to package.json)"),
    advisories: str | None = typer.Option(None, "--advisories", "-a", help="JSON advisory database"),
    osv: bool = typer.Option(False, "--osv", help="Query advisories from OSV.dev"),
    format_type: str = typer.Option("text", "--format", help="Output format: text or json"),
    output: str | None = typer.Option(None, "--out", "-o", help="Write the JSON report to a file"),
    write_overrides: bool = typer.Option(False, "--write-overrides", help="Add the overrides to package.json"),
    severity_floor: str | None = typer.Option(None, "--severity-floor", help="Ignore advisories below this severity"),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Maximum concurrent advisory lookups"),
    positional: bool | None = typer.Option(
        None, "--positional/--no-positional", help="Allow overrides scoped to one occurrence"
    ),
    partial: bool | None = typer.Option(None, "--partial/--no-partial", help="Continue past failed lookups"),
    omit_dev: bool = typer.Option(False, "--omit-dev", help="Leave devDependencies out of the graph"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """DepMend - Plan and verify overrides for vulnerable dependencies."""
    configure_logging(verbose)

    try:
        if format_type not in ("text", "json"):
            raise typer.BadParameter(f"Unknown format: {format_type}")

        settings = get_settings(
            severity_floor=severity_floor,
            concurrency_limit=concurrency,
            allow_positional_overrides=positional,
            partial_results=partial,
            include_dev=False if omit_dev else None,
        )

        manifest_file = Path(manifest_path)
        if not manifest_file.exists():
            console.print(f"Error: File {manifest_path} not found", style="red")
            raise typer.Exit(EXIT_INPUT_ERROR)
        lock_file = Path(lockfile) if lockfile else find_lockfile(manifest_file)
        if lock_file is None or not lock_file.exists():
            console.print(f"Error: No lockfile found for {manifest_path}", style="red")
            raise typer.Exit(EXIT_INPUT_ERROR)

        source = build_source(advisories, osv, settings)
        manifest_content = manifest_file.read_text()
        report = asyncio.run(
            remediate(
                manifest_content,
                lock_file.read_text(),
                source,
                settings,
                manifest_name=str(manifest_file),
                lockfile_name=str(lock_file),
            )
        )

        if format_type == "json":
            typer.echo(format_json(report))
        else:
            render_summary(report, console)

        if output:
            Path(output).write_text(format_json(report) + "\n")
            if format_type == "text":
                console.print(f"Wrote report to {output}")

        if write_overrides:
            if not report.verification.valid:
                console.print("Plan failed verification; package.json left unchanged", style="red")
            elif report.plan.overrides:
                manifest_file.write_text(update_manifest_content(manifest_content, report.plan))
                if format_type == "text":
                    console.print(f"Updated overrides in {manifest_path}")

        raise typer.Exit(exit_status(report))

    except typer.Exit:
        raise
    except (typer.BadParameter, ValidationError, MalformedInputError) as e:
        console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(EXIT_INPUT_ERROR)
    except (LookupFailure, RunCancelledError) as e:
        console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(EXIT_FAILED)
    except KeyboardInterrupt:
        console.print("Error: Interrupted; no plan produced", style="red")
        raise typer.Exit(EXIT_FAILED)


if __name__ == "__main__":
    app()
