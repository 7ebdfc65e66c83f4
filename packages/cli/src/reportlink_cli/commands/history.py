"""history command — display the runs recorded on a pull/merge request."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from reportlink_cli.commands.publish import AnnotationFailed
from reportlink_core import section
from reportlink_core.history import HistoryStore
from reportlink_core.renderer import format_timestamp
from reportlink_providers.base import ProviderError, Target

console = Console()


@click.command("history")
@click.option("--repo", required=True, help="Repository (owner/name) or GitLab project path.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull/merge request number.")
@click.option(
    "--update-pr",
    type=click.Choice(["comment", "description"]),
    default=None,
    help="Where the report links live. Defaults to the config file.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    default=20,
    show_default=True,
    help="Maximum number of runs to show.",
)
@click.pass_context
def history_cmd(ctx, repo: str, pr_number: int, update_pr: str | None, limit: int):
    """Show the report runs recorded on a pull/merge request, newest first."""
    config = ctx.obj["config"]
    provider = ctx.obj.get("provider")
    if provider is None:
        raise click.UsageError(f"No {config['provider']} token found. Set GITHUB_TOKEN or GITLAB_AUTH_TOKEN.")

    mode = update_pr or config.get("update_pr", "comment")
    target = Target(project=repo, request_id=pr_number)

    try:
        if mode == "description":
            text = provider.fetch_description(target)
        else:
            comment = provider.find_main_comment(target)
            text = comment.body if comment else None
    except ProviderError as e:
        raise AnnotationFailed(e)

    span = section.extract(text)
    runs = HistoryStore.from_section(span.slice(text), limit=limit) if span else HistoryStore(limit=limit)
    if not runs:
        console.print("[yellow]No report runs found.[/yellow]")
        return

    table = Table(title=f"Report History — {target}", show_header=True, header_style="bold cyan")
    table.add_column("Run", style="bold")
    table.add_column("Status", width=8)
    table.add_column("Total", justify="right")
    table.add_column("Passed", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Broken", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Created At", width=24)
    table.add_column("Report", overflow="fold")

    for run in runs:
        s = run.summary
        status = "[red]FAILED[/red]" if s.has_failures else "[green]PASSED[/green]"
        table.add_row(
            escape(run.label),
            status,
            str(s.total),
            str(s.passed),
            str(s.failed),
            str(s.broken),
            str(s.skipped),
            format_timestamp(run),
            escape(run.report_url),
        )

    console.print(table)
