"""CLI entry point for reportlink.

Commands:
  publish  — add or refresh the report links on a pull/merge request
  history  — display the runs recorded on a pull/merge request
  init     — interactive setup wizard
"""

from __future__ import annotations

import importlib.metadata
import logging
import os

import click
from rich.console import Console

from reportlink_cli.commands.history import history_cmd
from reportlink_cli.commands.init import init_cmd
from reportlink_cli.commands.publish import publish_cmd

console = Console()


def _build_provider(config: dict):
    """Instantiate the configured hosting provider, or None without credentials.

    Provider selection:
      provider: github → GitHubProvider (requires github_token)
      provider: gitlab → GitLabProvider (requires gitlab_token)

    Commands that need a provider raise a UsageError when this returns None,
    so `init` keeps working on a machine with no tokens at all.
    """
    provider = config.get("provider", "github")

    if provider == "github":
        token = config.get("github_token")
        if not token:
            return None
        from reportlink_providers.github import GitHubProvider

        return GitHubProvider(token=token, base_url=config.get("github_api_url"), timeout=config.get("timeout", 30))

    if provider == "gitlab":
        token = config.get("gitlab_token")
        if not token:
            return None
        from reportlink_providers.gitlab import GitLabProvider

        return GitLabProvider(
            token=token,
            server_url=config.get("gitlab_url") or "https://gitlab.com",
            timeout=config.get("timeout", 30),
        )

    raise click.UsageError(f"Unknown provider: {provider!r}. Choose 'github' or 'gitlab'.")


@click.group()
@click.version_option(
    version=importlib.metadata.version("reportlink"),
    prog_name="reportlink",
)
@click.option(
    "--config",
    "config_path",
    default=".reportlink.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="REPORTLINK_CONFIG",
)
@click.option(
    "--provider",
    type=click.Choice(["github", "gitlab"]),
    default=None,
    help="Hosting platform. Overrides config file; auto-detected in CI.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, provider: str | None, verbose: bool):
    """Publish test report links on pull and merge requests."""
    from reportlink_core.config import load_config
    from reportlink_cli.auth import resolve_token
    from reportlink_cli.ci import detect_provider

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    ctx.ensure_object(dict)

    try:
        config = load_config(config_path, cli_overrides={"provider": provider})
    except ValueError as e:
        raise click.UsageError(str(e))

    # An explicit --provider wins; otherwise a CI runner overrides the file default.
    if provider is None:
        detected = detect_provider(os.environ)
        if detected:
            config["provider"] = detected

    token = resolve_token(config["provider"])
    if token:
        config[f"{config['provider']}_token"] = token

    platform = _build_provider(config)
    ctx.obj["config"] = config
    ctx.obj["provider"] = platform
    if platform is not None:
        ctx.call_on_close(platform.close)


main.add_command(publish_cmd)
main.add_command(history_cmd)
main.add_command(init_cmd)
