"""GitLabProvider — MR description and notes through the GitLab v4 REST API.

The failure alert is posted as a reply in the report comment's discussion
thread, so it shows up next to the report links. Notes created this way are
still ordinary notes and can be found and deleted through the notes endpoint.
"""

from __future__ import annotations

import logging
from typing import Iterator
from urllib.parse import quote

import requests

from reportlink_core import section
from reportlink_providers.base import BaseProvider, Comment, ErrorKind, ProviderError, Target

logger = logging.getLogger(__name__)

_PER_PAGE = 100


class GitLabProvider(BaseProvider):
    name = "gitlab"

    def __init__(self, token: str, server_url: str = "https://gitlab.com", timeout: int = 30):
        self._api = f"{server_url.rstrip('/')}/api/v4"
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"PRIVATE-TOKEN": token})

    # ------------------------------------------------------------------ #
    # HTTP plumbing                                                        #
    # ------------------------------------------------------------------ #

    def _mr_path(self, target: Target) -> str:
        return f"/projects/{quote(target.project, safe='')}/merge_requests/{target.request_id}"

    def _request(self, operation: str, target: Target, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self._session.request(method, self._api + path, timeout=self._timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise ProviderError(ErrorKind.NETWORK, operation, target, str(e)) from e
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise ProviderError(
                ErrorKind.from_status(response.status_code),
                operation,
                target,
                f"HTTP {response.status_code}: {message}",
            )
        return response

    def _paginate(self, operation: str, target: Target, path: str) -> Iterator[dict]:
        page = "1"
        while page:
            response = self._request(
                operation,
                target,
                "GET",
                path,
                params={"per_page": _PER_PAGE, "page": page, "sort": "asc", "order_by": "created_at"},
            )
            yield from response.json()
            page = response.headers.get("X-Next-Page", "")

    def _notes(self, operation: str, target: Target) -> Iterator[dict]:
        for note in self._paginate(operation, target, self._mr_path(target) + "/notes"):
            if not note.get("system"):
                yield note

    # ------------------------------------------------------------------ #
    # BaseProvider                                                         #
    # ------------------------------------------------------------------ #

    def fetch_description(self, target: Target) -> str | None:
        mr = self._request("fetch_description", target, "GET", self._mr_path(target)).json()
        return mr.get("description") or None

    def write_description(self, target: Target, text: str) -> None:
        logger.debug("Updating description for mr !%s", target.request_id)
        self._request("write_description", target, "PUT", self._mr_path(target), json={"description": text})

    def find_main_comment(self, target: Target) -> Comment | None:
        for note in self._notes("find_main_comment", target):
            if section.is_match(note.get("body")):
                return Comment(id=note["id"], body=note["body"])
        return None

    def create_comment(self, target: Target, body: str) -> Comment:
        note = self._request(
            "create_comment", target, "POST", self._mr_path(target) + "/notes", json={"body": body}
        ).json()
        return Comment(id=note["id"], body=note.get("body", body))

    def update_comment(self, target: Target, comment_id: int, body: str) -> None:
        self._request(
            "update_comment", target, "PUT", f"{self._mr_path(target)}/notes/{comment_id}", json={"body": body}
        )

    def find_alert_comment(self, target: Target, marker: str) -> Comment | None:
        for note in self._notes("find_alert_comment", target):
            if section.is_alert(note.get("body"), marker):
                return Comment(id=note["id"], body=note["body"])
        return None

    def _report_discussion_id(self, target: Target) -> str | None:
        path = self._mr_path(target) + "/discussions"
        for discussion in self._paginate("create_alert_comment", target, path):
            if any(section.is_match(note.get("body")) for note in discussion.get("notes", [])):
                return discussion["id"]
        return None

    def create_alert_comment(self, target: Target, body: str) -> Comment:
        discussion_id = self._report_discussion_id(target)
        if discussion_id is None:
            return self.create_comment(target, body)
        note = self._request(
            "create_alert_comment",
            target,
            "POST",
            f"{self._mr_path(target)}/discussions/{discussion_id}/notes",
            json={"body": body},
        ).json()
        return Comment(id=note["id"], body=note.get("body", body))

    def delete_comment(self, target: Target, comment_id: int) -> None:
        self._request("delete_comment", target, "DELETE", f"{self._mr_path(target)}/notes/{comment_id}")

    def close(self) -> None:
        self._session.close()
