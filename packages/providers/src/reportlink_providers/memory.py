"""In-memory provider — a test double and a sandbox for shadow runs.

Keeps descriptions and comment threads in dictionaries keyed by Target.
Failures can be injected per operation to exercise error paths.
"""

from __future__ import annotations

import itertools

from reportlink_core import section
from reportlink_providers.base import BaseProvider, Comment, ErrorKind, ProviderError, Target


class InMemoryProvider(BaseProvider):
    name = "memory"

    def __init__(self):
        self.descriptions: dict[Target, str] = {}
        self.comments: dict[Target, list[Comment]] = {}
        self.calls: list[str] = []
        self._ids = itertools.count(1)
        self._failures: dict[str, ErrorKind] = {}

    def fail_on(self, operation: str, kind: ErrorKind = ErrorKind.UNKNOWN) -> None:
        """Make every later call to ``operation`` raise ProviderError."""
        self._failures[operation] = kind

    def _record(self, operation: str, target: Target) -> None:
        self.calls.append(operation)
        kind = self._failures.get(operation)
        if kind is not None:
            raise ProviderError(kind, operation, target, "injected failure")

    def _thread(self, target: Target) -> list[Comment]:
        return self.comments.setdefault(target, [])

    def _find(self, target: Target, operation: str, comment_id: int) -> int:
        for i, c in enumerate(self._thread(target)):
            if c.id == comment_id:
                return i
        raise ProviderError(ErrorKind.NOT_FOUND, operation, target, f"comment {comment_id} does not exist")

    def fetch_description(self, target: Target) -> str | None:
        self._record("fetch_description", target)
        return self.descriptions.get(target) or None

    def write_description(self, target: Target, text: str) -> None:
        self._record("write_description", target)
        self.descriptions[target] = text

    def find_main_comment(self, target: Target) -> Comment | None:
        self._record("find_main_comment", target)
        return next((c for c in self._thread(target) if section.is_match(c.body)), None)

    def create_comment(self, target: Target, body: str) -> Comment:
        self._record("create_comment", target)
        comment = Comment(id=next(self._ids), body=body)
        self._thread(target).append(comment)
        return comment

    def update_comment(self, target: Target, comment_id: int, body: str) -> None:
        self._record("update_comment", target)
        i = self._find(target, "update_comment", comment_id)
        self._thread(target)[i] = Comment(id=comment_id, body=body)

    def find_alert_comment(self, target: Target, marker: str) -> Comment | None:
        self._record("find_alert_comment", target)
        return next((c for c in self._thread(target) if section.is_alert(c.body, marker)), None)

    def create_alert_comment(self, target: Target, body: str) -> Comment:
        self._record("create_alert_comment", target)
        comment = Comment(id=next(self._ids), body=body)
        self._thread(target).append(comment)
        return comment

    def delete_comment(self, target: Target, comment_id: int) -> None:
        self._record("delete_comment", target)
        i = self._find(target, "delete_comment", comment_id)
        del self._thread(target)[i]
