"""CI metadata detection.

Reads pipeline metadata from an explicit environment mapping (normally
``os.environ``) exactly once and freezes it into a RunContext. Command-line
values always win over what the CI provides.

GitHub Actions:
  GITHUB_REPOSITORY, GITHUB_EVENT_PATH (pull_request payload) or
  GITHUB_REF=refs/pull/<n>/merge, GITHUB_RUN_ID, GITHUB_JOB, GITHUB_SHA,
  GITHUB_SERVER_URL

GitLab CI (ALLURE_* values override the CI_* ones):
  ALLURE_PROJECT_PATH / CI_MERGE_REQUEST_PROJECT_PATH / CI_PROJECT_PATH,
  ALLURE_MERGE_REQUEST_IID / CI_MERGE_REQUEST_IID, CI_PIPELINE_ID,
  CI_PIPELINE_URL, ALLURE_JOB_NAME / CI_JOB_NAME,
  ALLURE_COMMIT_SHA / CI_MERGE_REQUEST_SOURCE_BRANCH_SHA / CI_COMMIT_SHA,
  CI_SERVER_URL
"""

from __future__ import annotations

import json
import logging
import re
from typing import Mapping, Optional

from reportlink_core.models import ExecutorType, RunContext

logger = logging.getLogger(__name__)

_PULL_REF_RE = re.compile(r"^refs/pull/(\d+)/")


def _env(environ: Mapping[str, str], *names: str) -> str | None:
    """Return the first non-empty value among ``names``."""
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


def detect_provider(environ: Mapping[str, str]) -> str | None:
    if environ.get("GITLAB_CI") == "true":
        return "gitlab"
    if environ.get("GITHUB_ACTIONS") == "true":
        return "github"
    return None


def _github_event(environ: Mapping[str, str]) -> dict:
    path = _env(environ, "GITHUB_EVENT_PATH")
    if not path:
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f) or {}
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read GitHub event payload %s: %s", path, e)
        return {}


def _github_values(environ: Mapping[str, str]) -> dict:
    event = _github_event(environ)
    pull = event.get("pull_request") or {}

    pr_number = pull.get("number")
    if pr_number is None:
        match = _PULL_REF_RE.match(environ.get("GITHUB_REF", ""))
        pr_number = match.group(1) if match else None

    server_url = _env(environ, "GITHUB_SERVER_URL") or "https://github.com"
    project = _env(environ, "GITHUB_REPOSITORY")
    run_id = _env(environ, "GITHUB_RUN_ID")
    return {
        "project": project,
        "request_id": pr_number,
        "executor_name": "Github",
        "executor_type": ExecutorType.GITHUB,
        "build_url": f"{server_url}/{project}/actions/runs/{run_id}" if project and run_id else "",
        "build_order": run_id,
        "build_name": _env(environ, "GITHUB_JOB"),
        "commit_sha": (pull.get("head") or {}).get("sha") or _env(environ, "GITHUB_SHA"),
        "server_url": server_url,
    }


def _gitlab_values(environ: Mapping[str, str]) -> dict:
    return {
        "project": _env(environ, "ALLURE_PROJECT_PATH", "CI_MERGE_REQUEST_PROJECT_PATH", "CI_PROJECT_PATH"),
        "request_id": _env(environ, "ALLURE_MERGE_REQUEST_IID", "CI_MERGE_REQUEST_IID"),
        "executor_name": "Gitlab",
        "executor_type": ExecutorType.GITLAB,
        "build_url": _env(environ, "CI_PIPELINE_URL"),
        "build_order": _env(environ, "CI_PIPELINE_ID"),
        "build_name": _env(environ, "ALLURE_JOB_NAME", "CI_JOB_NAME"),
        "commit_sha": _env(environ, "ALLURE_COMMIT_SHA", "CI_MERGE_REQUEST_SOURCE_BRANCH_SHA", "CI_COMMIT_SHA"),
        "server_url": _env(environ, "CI_SERVER_URL"),
    }


def detect_context(
    provider: str,
    environ: Mapping[str, str],
    overrides: Optional[dict] = None,
) -> RunContext:
    """Build the RunContext for ``provider`` from CI variables and CLI overrides.

    Raises ValueError when the project or request id cannot be determined.
    """
    if provider == "gitlab":
        values = _gitlab_values(environ)
    elif provider == "github":
        values = _github_values(environ)
    else:
        raise ValueError(f"Unknown provider: {provider!r}. Choose 'github' or 'gitlab'.")

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    if not values.get("project"):
        raise ValueError("Could not determine the repository/project. Pass --repo.")
    if values.get("request_id") in (None, ""):
        raise ValueError("Could not determine the pull/merge request number. Pass --pr.")
    try:
        request_id = int(values["request_id"])
    except (TypeError, ValueError):
        raise ValueError(f"Invalid pull/merge request number: {values['request_id']!r}")

    return RunContext(
        project=values["project"],
        request_id=request_id,
        executor_name=values.get("executor_name") or "Unknown",
        executor_type=values.get("executor_type") or ExecutorType.UNKNOWN,
        build_url=values.get("build_url") or "",
        build_order=str(values.get("build_order") or ""),
        build_name=values.get("build_name") or "",
        commit_sha=values.get("commit_sha") or "",
        server_url=values.get("server_url") or "",
    )
