"""init command — interactive setup wizard.

Writes .reportlink.yml and, optionally, a CI job that publishes the report
links after the report has been uploaded.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()

_GITHUB_WORKFLOW_TEMPLATE = """\
name: Test report links

on:
  pull_request:
    types: [opened, synchronize, reopened]

jobs:
  report:
    runs-on: ubuntu-latest
    permissions:
      contents: read
      pull-requests: write

    steps:
      - uses: actions/checkout@v4

      # Run your tests and upload the Allure report here, then expose its URL
      # as REPORT_URL for the step below.

      - name: Set up Python
        uses: actions/setup-python@v5
        with:
          python-version: "3.12"

      - name: Install reportlink
        run: pip install "reportlink=={version}"

      - name: Publish report links
        env:
          GITHUB_TOKEN: ${{{{ secrets.GITHUB_TOKEN }}}}
        run: |
          reportlink publish \\
            --report-url "$REPORT_URL" \\
            --summary-file allure-report/widgets/summary.json
"""

_GITLAB_JOB_TEMPLATE = """\
# Include this file from .gitlab-ci.yml and set REPORT_URL to the uploaded
# report before the job runs. GITLAB_AUTH_TOKEN must be a CI/CD variable.
reportlink:
  stage: .post
  image: python:3.12-slim
  rules:
    - if: $CI_PIPELINE_SOURCE == "merge_request_event"
  script:
    - pip install "reportlink=={version}"
    - reportlink publish --report-url "$REPORT_URL" --summary-file allure-report/widgets/summary.json
"""


@click.command("init")
def init_cmd():
    """Set up reportlink for your repository.

    Creates .reportlink.yml and optionally a CI job definition.
    """
    console.print("\n[bold cyan]reportlink init[/bold cyan] — setup wizard\n")

    detected = _detect_provider_from_git()
    if detected:
        console.print(f"[dim]Detected hosting provider: {detected}[/dim]")

    provider = click.prompt(
        "Hosting provider",
        type=click.Choice(["github", "gitlab"]),
        default=detected or "github",
    )

    console.print("\nWhere should the report links go?")
    console.print("  [bold]comment[/bold]      — a dedicated PR/MR comment (default)")
    console.print("  [bold]description[/bold]  — a section appended to the PR/MR description")
    update_pr = click.prompt(
        "Update mode",
        type=click.Choice(["comment", "description"]),
        default="comment",
    )

    history_limit = click.prompt("Number of earlier runs to keep listed", type=click.IntRange(min=0), default=10)

    config: dict = {"provider": provider, "update_pr": update_pr, "history_limit": history_limit}

    if provider == "gitlab":
        gitlab_url = click.prompt("GitLab server URL", default="https://gitlab.com")
        if gitlab_url != "https://gitlab.com":
            config["gitlab_url"] = gitlab_url

    _write_config(config)
    console.print("[green]Created .reportlink.yml[/green]")

    if provider == "github":
        if click.confirm("\nGenerate .github/workflows/reportlink.yml for GitHub Actions?", default=True):
            path = _write_ci_file(Path(".github/workflows/reportlink.yml"), _GITHUB_WORKFLOW_TEMPLATE)
            console.print(f"[green]Created {path}[/green]")
    else:
        if click.confirm("\nGenerate .gitlab/reportlink.gitlab-ci.yml?", default=True):
            path = _write_ci_file(Path(".gitlab/reportlink.gitlab-ci.yml"), _GITLAB_JOB_TEMPLATE)
            console.print(f"[green]Created {path}[/green]")
            console.print(
                "\n[yellow]Remember to add [bold]GITLAB_AUTH_TOKEN[/bold] to your "
                "project CI/CD variables (Settings → CI/CD → Variables).[/yellow]"
            )

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Publish links with: [bold]reportlink publish --report-url <url>[/bold]")


def _detect_provider_from_git() -> str | None:
    """Guess the hosting provider from the git remote URL."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    url = result.stdout.strip()
    if "github.com" in url:
        return "github"
    if "gitlab" in url:
        return "gitlab"
    return None


def _write_config(config: dict) -> None:
    """Write or update .reportlink.yml, preserving any existing keys."""
    path = Path(".reportlink.yml")
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


def _get_version() -> str:
    """Read the current reportlink version from the installed package metadata."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("reportlink")
    except PackageNotFoundError:
        return "0.1.0"


def _write_ci_file(path: Path, template: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(template.format(version=_get_version()))
    return path
