"""Token resolution for the hosting platforms.

GitHub resolution order (stops at first success):
  1. GITHUB_TOKEN environment variable (CI / explicit override)
  2. `gh auth token` (GitHub CLI session — works after `gh auth login`)

GitLab reads GITLAB_AUTH_TOKEN only; CI job tokens cannot write MR notes.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def resolve_github_token() -> str | None:
    """Return a GitHub token or None if no valid source is available.

    Never raises — callers should check for None and emit a UsageError.
    """
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            gh_token = result.stdout.strip()
            if gh_token:
                logger.debug("Resolved GitHub token via gh CLI session.")
                return gh_token
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # gh is not installed or timed out — fall through.
        pass

    return None


def resolve_gitlab_token() -> str | None:
    return os.environ.get("GITLAB_AUTH_TOKEN") or None


def resolve_token(provider: str) -> str | None:
    if provider == "gitlab":
        return resolve_gitlab_token()
    return resolve_github_token()
