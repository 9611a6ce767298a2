"""CLI interface for portal assignment uploads."""

import asyncio
import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)
from rich.prompt import Prompt
from rich.table import Table

from ..core.api import PortalUploadAPI
from ..core.exceptions import PortalUploadError
from ..core.models import MIB, TaskStatus, UploadContext, UploaderConfig
from ..core.task import UploadTask

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

STATUS_STYLES = {
    TaskStatus.READY: "dim",
    TaskStatus.UPLOADING: "cyan",
    TaskStatus.COMPLETE: "green",
    TaskStatus.ERROR: "red",
    TaskStatus.CANCELLED: "yellow",
}


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    elif size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


def get_api_url_interactively():
    """Prompt user for the portal endpoint URL if not provided."""
    api_url = os.getenv("PORTAL_API_URL")

    if not api_url:
        console.print("\n[yellow]Welcome to Portal Uploads![/yellow]")
        console.print("You'll need the portal's assignment endpoint URL.")
        api_url = Prompt.ask("Please enter the portal API URL")
        console.print("\nTo skip this prompt next time, add to your shell profile:")
        console.print(f'[green]export PORTAL_API_URL="{api_url}"[/green]\n')

    return api_url


def build_results_table(tasks, skipped) -> Table:
    table = Table(title="Upload Results")
    table.add_column("File", style="cyan")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Status")
    table.add_column("Remote URL", style="dim", overflow="fold")

    for task in tasks:
        style = STATUS_STYLES.get(task.status, "")
        reference = task.reference
        table.add_row(
            task.source.name,
            task.display_name or "-",
            format_size(task.source.size),
            f"[{style}]{task.status_text}[/{style}]",
            reference.file_url if reference else "",
        )
    for path in skipped:
        table.add_row(
            Path(path).name,
            "-",
            format_size(Path(path).stat().st_size),
            "[dim]inline attachment[/dim]",
            "",
        )
    return table


async def run_uploads(api, context, files, display_names):
    """Upload every large file concurrently with one progress bar per task."""
    skipped = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.fields[status]}"),
        console=console,
    ) as progress:
        bars = {}

        def on_change(task: UploadTask) -> None:
            bar = bars.get(task.id)
            if bar is not None:
                progress.update(bar, completed=task.progress_percent, status=task.status_text)

        async with api.open_submission(context) as registry:
            registry.add_listener(on_change)
            for i, path in enumerate(files):
                name = display_names[i] if i < len(display_names) else Path(path).name
                task_id = registry.add(path, name)
                if task_id is None:
                    skipped.append(path)
                    continue
                bars[task_id] = progress.add_task(
                    Path(path).name, total=100, status="ready"
                )
            tasks = await registry.wait_all()

    return tasks, skipped


@click.group()
@click.option(
    "--api-url",
    envvar="PORTAL_API_URL",
    help="Portal API URL (or set PORTAL_API_URL env var)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, api_url, verbose):
    """Portal Uploads CLI - Upload large assignment attachments."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--assignment-id", envvar="PORTAL_ASSIGNMENT_ID", required=True, help="Assignment ID")
@click.option("--email", envvar="PORTAL_STUDENT_EMAIL", required=True, help="Student email")
@click.option("--name", "student_name", envvar="PORTAL_STUDENT_NAME", required=True, help="Student name")
@click.option(
    "--display-name",
    "display_names",
    multiple=True,
    help="Label for each file, in order (default: file name)",
)
@click.option(
    "--allowed-types",
    envvar="PORTAL_ALLOWED_FILE_TYPES",
    default="",
    help="Comma separated allowed extensions (default: any)",
)
@click.option("--chunk-size", type=int, default=None, help="Chunk size in MB (default: 5)")
@click.pass_context
def upload(ctx, files, assignment_id, email, student_name, display_names, allowed_types, chunk_size):
    """Upload one or more files to an assignment submission."""
    try:
        api_url = ctx.obj["api_url"] or get_api_url_interactively()
        config = UploaderConfig.from_env()
        if chunk_size:
            config = config.model_copy(update={"chunk_size": chunk_size * MIB})

        context = UploadContext(
            assignment_id=assignment_id,
            student_email=email,
            student_name=student_name,
            allowed_file_types=allowed_types,
        )

        async def _run():
            async with PortalUploadAPI(api_url, config=config) as api:
                return await run_uploads(api, context, files, list(display_names))

        console.print(
            f"Uploading {len(files)} file(s) to assignment [green]{assignment_id}[/green]"
        )
        tasks, skipped = asyncio.run(_run())
        console.print(build_results_table(tasks, skipped))

        failed = [t for t in tasks if t.status == TaskStatus.ERROR]
        unverified = [t for t in tasks if t.reference and not t.reference.verified]
        if unverified:
            console.print(
                f"[yellow]{len(unverified)} upload(s) finished but are pending verification.[/yellow]"
            )
        if failed:
            console.print(f"[red]{len(failed)} upload(s) failed. Re-run to retry them.[/red]")
            sys.exit(1)
        console.print("[green]✓[/green] Uploads finished!")

    except PortalUploadError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Error: invalid input: {escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
def config():
    """Show the effective uploader configuration."""
    try:
        cfg = UploaderConfig.from_env()
    except ValueError as e:
        console.print(f"[red]Error: invalid configuration: {escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title="Uploader Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Endpoint", os.getenv("PORTAL_API_URL", "[dim]not set[/dim]"))
    table.add_row("Chunk size", format_size(cfg.chunk_size))
    table.add_row("Large-file threshold", format_size(cfg.large_file_threshold))
    table.add_row("Chunk timeout", f"{cfg.chunk_timeout:g}s")
    table.add_row("Request timeout", f"{cfg.request_timeout:g}s")
    table.add_row(
        "Chunk retries",
        f"{cfg.chunk_retry.max_attempts} x {cfg.chunk_retry.base_delay:g}s",
    )
    table.add_row(
        "Finalize retries",
        f"{cfg.finalize_retry.max_attempts} x {cfg.finalize_retry.base_delay:g}s",
    )
    table.add_row("Recovery threshold", f"{cfg.recovery_threshold:.0%}")

    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
