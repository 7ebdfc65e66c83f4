"""GitHubProvider — PR description and issue comments through PyGithub.

GitHub keeps PR conversation comments on the underlying issue, so both the
report comment and the failure alert are issue comments. Pagination is handled
by PyGithub's PaginatedList.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

import requests
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
    UnknownObjectException,
)

from reportlink_core import section
from reportlink_providers.base import BaseProvider, Comment, ErrorKind, ProviderError, Target

logger = logging.getLogger(__name__)


def _error_message(e: GithubException) -> str:
    data = e.data
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return str(data or e)


@contextmanager
def _translate_errors(operation: str, target: Target):
    """Re-raise PyGithub and transport failures as ProviderError."""
    try:
        yield
    except RateLimitExceededException as e:
        raise ProviderError(ErrorKind.RATE_LIMITED, operation, target, _error_message(e)) from e
    except BadCredentialsException as e:
        raise ProviderError(ErrorKind.AUTH, operation, target, _error_message(e)) from e
    except UnknownObjectException as e:
        raise ProviderError(ErrorKind.NOT_FOUND, operation, target, _error_message(e)) from e
    except GithubException as e:
        message = _error_message(e)
        kind = ErrorKind.from_status(e.status)
        # GitHub signals secondary rate limits with a 403.
        if e.status == 403 and "rate limit" in message.lower():
            kind = ErrorKind.RATE_LIMITED
        raise ProviderError(kind, operation, target, message) from e
    except requests.exceptions.RequestException as e:
        raise ProviderError(ErrorKind.NETWORK, operation, target, str(e)) from e


class GitHubProvider(BaseProvider):
    name = "github"

    def __init__(self, token: str, base_url: str | None = None, timeout: int = 30):
        kwargs: dict = {"auth": Auth.Token(token), "timeout": timeout}
        if base_url:
            kwargs["base_url"] = base_url
        self._gh = Github(**kwargs)

    def _pull(self, target: Target):
        return self._gh.get_repo(target.project).get_pull(target.request_id)

    def fetch_description(self, target: Target) -> str | None:
        with _translate_errors("fetch_description", target):
            return self._pull(target).body or None

    def write_description(self, target: Target, text: str) -> None:
        with _translate_errors("write_description", target):
            self._pull(target).edit(body=text)

    def _find_comment(self, target: Target, predicate) -> Comment | None:
        for c in self._pull(target).get_issue_comments():
            if predicate(c.body or ""):
                return Comment(id=c.id, body=c.body or "")
        return None

    def find_main_comment(self, target: Target) -> Comment | None:
        with _translate_errors("find_main_comment", target):
            return self._find_comment(target, section.is_match)

    def create_comment(self, target: Target, body: str) -> Comment:
        with _translate_errors("create_comment", target):
            c = self._pull(target).create_issue_comment(body)
        logger.debug("Created comment %s on %s.", c.id, target)
        return Comment(id=c.id, body=c.body or body)

    def update_comment(self, target: Target, comment_id: int, body: str) -> None:
        with _translate_errors("update_comment", target):
            self._pull(target).get_issue_comment(comment_id).edit(body)

    def find_alert_comment(self, target: Target, marker: str) -> Comment | None:
        with _translate_errors("find_alert_comment", target):
            return self._find_comment(target, lambda body: section.is_alert(body, marker))

    def create_alert_comment(self, target: Target, body: str) -> Comment:
        with _translate_errors("create_alert_comment", target):
            c = self._pull(target).create_issue_comment(body)
        return Comment(id=c.id, body=c.body or body)

    def delete_comment(self, target: Target, comment_id: int) -> None:
        with _translate_errors("delete_comment", target):
            self._pull(target).get_issue_comment(comment_id).delete()

    def close(self) -> None:
        self._gh.close()
