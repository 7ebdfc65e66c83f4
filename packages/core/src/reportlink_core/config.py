import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "provider": "github",  # "github" | "gitlab"
    "update_pr": "comment",  # "comment" | "description"
    "history_limit": 10,
    "report_title": "Allure report",
    "failure_alert": True,
    "clear_alert_on_success": True,
    "alert_text": "There are some test failures that need attention",
    "gitlab_url": "https://gitlab.com",
    "github_api_url": None,  # None = api.github.com; set for GitHub Enterprise
    "timeout": 30,
}


def load_config(config_path: str = ".reportlink.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .reportlink.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping, got {type(file_config).__name__}.")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    alert_text = os.environ.get("REPORTLINK_FAILURE_ALERT_COMMENT")
    if alert_text:
        config["alert_text"] = alert_text

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["gitlab_token"] = os.environ.get("GITLAB_AUTH_TOKEN")

    return config
