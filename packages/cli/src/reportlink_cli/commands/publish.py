"""publish command — add or refresh the report links on a pull/merge request."""

from __future__ import annotations

import json
import os
from pathlib import Path

import click
from rich.console import Console

from reportlink_cli.ci import detect_context
from reportlink_core.engine import AlertAction, AnnotationEngine, AnnotationOptions
from reportlink_core.models import RunRecord, Summary
from reportlink_providers.base import ProviderError, Target

console = Console()


class AnnotationFailed(click.ClickException):
    """The report is published but the PR/MR could not be annotated."""

    exit_code = 3

    def __init__(self, error: ProviderError):
        super().__init__(f"Report link annotation failed: {error}")
        self.error = error


def load_summary(summary_file: str | None, counts: dict) -> Summary:
    """Build the test summary from an Allure summary.json and/or explicit counts.

    Explicit counts win over the file. ``total`` defaults to the sum of the
    other counts when neither source provides it.
    """
    statistic: dict = {}
    if summary_file:
        path = Path(summary_file)
        if not path.exists():
            raise click.UsageError(f"Summary file not found: {summary_file}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise click.UsageError(f"Summary file is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise click.UsageError("Summary file must contain a JSON object.")
        block = data.get("statistic", data)
        if not isinstance(block, dict):
            raise click.UsageError("Summary file 'statistic' must be a JSON object.")
        statistic = dict(block)

    for key, value in counts.items():
        if value is not None:
            statistic[key] = value

    try:
        return Summary.from_statistic(statistic)
    except (TypeError, ValueError) as e:
        raise click.UsageError(f"Invalid test summary: {e}")


def _print_result(result, target: Target) -> None:
    where = "description" if result.mode == "description" else f"comment {result.comment_id}"
    if result.action == "unchanged":
        console.print(f"[dim]Report links on {target} ({where}) already up to date.[/dim]")
    else:
        console.print(f"[green]Report links {result.action} on {target} ({where}).[/green]")

    if result.alert_action is AlertAction.CREATE:
        console.print("[red]Failure alert posted.[/red]")
    elif result.alert_action is AlertAction.RECREATE:
        console.print("[red]Failure alert re-posted.[/red]")
    elif result.alert_cleared:
        console.print("[green]Failure alert cleared.[/green]")


@click.command("publish")
@click.option("--report-url", required=True, help="Absolute URL of the uploaded report.")
@click.option("--repo", default=None, help="Repository (owner/name) or GitLab project path. Auto-detected in CI.")
@click.option("--pr", "pr_number", type=int, default=None, help="Pull/merge request number. Auto-detected in CI.")
@click.option(
    "--summary-file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Allure widgets/summary.json to read test counts from.",
)
@click.option("--total", type=click.IntRange(min=0), default=None, help="Total number of tests.")
@click.option("--passed", type=click.IntRange(min=0), default=None, help="Passed tests.")
@click.option("--failed", type=click.IntRange(min=0), default=None, help="Failed tests.")
@click.option("--broken", type=click.IntRange(min=0), default=None, help="Broken tests.")
@click.option("--skipped", type=click.IntRange(min=0), default=None, help="Skipped tests.")
@click.option("--build-order", default=None, help="Pipeline run id. Auto-detected in CI.")
@click.option("--build-name", default=None, help="Job name. Auto-detected in CI.")
@click.option("--build-url", default=None, help="Pipeline URL. Auto-detected in CI.")
@click.option("--sha", default=None, help="Commit SHA the report was built from.")
@click.option(
    "--update-pr",
    type=click.Choice(["comment", "description"]),
    default=None,
    help="Where to put the report links. Overrides config file.",
)
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print the updated text without writing to the PR/MR.",
)
@click.pass_context
def publish_cmd(
    ctx,
    report_url: str,
    repo: str | None,
    pr_number: int | None,
    summary_file: str | None,
    total: int | None,
    passed: int | None,
    failed: int | None,
    broken: int | None,
    skipped: int | None,
    build_order: str | None,
    build_name: str | None,
    build_url: str | None,
    sha: str | None,
    update_pr: str | None,
    shadow: bool,
):
    """Add or refresh the report links on a pull/merge request.

    The links live in a marked section of the PR comment (or description).
    Earlier runs stay listed under the newest one; text outside the section
    is never touched.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI) for --provider github
      GITLAB_AUTH_TOKEN    GitLab token for --provider gitlab
    """
    config = dict(ctx.obj["config"])
    if update_pr is not None:
        config["update_pr"] = update_pr
    provider = ctx.obj.get("provider")

    try:
        options = AnnotationOptions.from_config(config)
        context = detect_context(
            config["provider"],
            os.environ,
            overrides={
                "project": repo,
                "request_id": pr_number,
                "build_order": build_order,
                "build_name": build_name,
                "build_url": build_url,
                "commit_sha": sha,
            },
        )
    except ValueError as e:
        raise click.UsageError(str(e))

    summary = load_summary(
        summary_file,
        {"total": total, "passed": passed, "failed": failed, "broken": broken, "skipped": skipped},
    )

    try:
        run = RunRecord.from_context(context, report_url=report_url, summary=summary)
    except ValueError as e:
        raise click.UsageError(str(e))

    target = Target(project=context.project, request_id=context.request_id)
    engine = AnnotationEngine(run, options)

    if shadow:
        existing = None
        try:
            if provider is not None:
                if options.update_mode == "description":
                    existing = provider.fetch_description(target)
                else:
                    comment = provider.find_main_comment(target)
                    existing = comment.body if comment else None
        except ProviderError as e:
            raise AnnotationFailed(e)
        console.print(f"\n[bold]Shadow run — {options.update_mode} for {target} (not written)[/bold]\n")
        console.print(engine.upsert_document(existing), markup=False, highlight=False, soft_wrap=True)
        if summary.has_failures and options.failure_alert:
            console.print("\n[red]A failure alert would be posted.[/red]")
        return

    if provider is None:
        raise click.UsageError(
            f"No {config['provider']} token found. "
            + ("Set GITLAB_AUTH_TOKEN." if config["provider"] == "gitlab" else "Set GITHUB_TOKEN or run `gh auth login`.")
        )

    try:
        result = engine.publish(provider, target)
    except ProviderError as e:
        raise AnnotationFailed(e)

    _print_result(result, target)
