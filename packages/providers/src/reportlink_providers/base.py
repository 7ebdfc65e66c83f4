"""Abstract provider interface.

Each hosting platform (GitHub, GitLab, an in-memory double for tests)
implements this interface. The annotation engine depends on BaseProvider, not
on a concrete platform, so platforms are chosen by configuration at startup.

Every method raises ProviderError on failure. Retries and timeouts, if any,
belong to the implementation; callers treat a ProviderError as fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    AUTH = "auth"
    NOT_FOUND = "not-found"
    RATE_LIMITED = "rate-limited"
    NETWORK = "network"
    UNKNOWN = "unknown"

    @classmethod
    def from_status(cls, status: int | None) -> ErrorKind:
        if status in (401, 403):
            return cls.AUTH
        if status == 404:
            return cls.NOT_FOUND
        if status == 429:
            return cls.RATE_LIMITED
        return cls.UNKNOWN


@dataclass(frozen=True)
class Target:
    """A single pull/merge request: project path plus request number."""

    project: str
    request_id: int

    def __str__(self) -> str:
        return f"{self.project}#{self.request_id}"


@dataclass(frozen=True)
class Comment:
    id: int
    body: str = ""


class ProviderError(Exception):
    """A hosting-platform call failed.

    Carries the operation name and target so the failure can be diagnosed
    from the message alone.
    """

    def __init__(self, kind: ErrorKind, operation: str, target: Target, message: str = ""):
        self.kind = kind
        self.operation = operation
        self.target = target
        self.message = message
        super().__init__(f"{operation} on {target} failed ({kind.value}): {message}")


class BaseProvider(ABC):
    """Read and write access to PR/MR descriptions and comments."""

    name: str = "base"

    @abstractmethod
    def fetch_description(self, target: Target) -> str | None:
        """Return the current description, or None when it is empty."""

    @abstractmethod
    def write_description(self, target: Target, text: str) -> None:
        """Replace the description with ``text``."""

    @abstractmethod
    def find_main_comment(self, target: Target) -> Comment | None:
        """Return the comment holding the managed section, if any."""

    @abstractmethod
    def create_comment(self, target: Target, body: str) -> Comment:
        """Post a new comment and return it."""

    @abstractmethod
    def update_comment(self, target: Target, comment_id: int, body: str) -> None:
        """Replace the body of an existing comment."""

    @abstractmethod
    def find_alert_comment(self, target: Target, marker: str) -> Comment | None:
        """Return the failure-alert comment, identified by ``marker``."""

    @abstractmethod
    def delete_comment(self, target: Target, comment_id: int) -> None:
        """Delete a comment."""

    def create_alert_comment(self, target: Target, body: str) -> Comment:
        """Post the failure alert.

        Alerts are ordinary comments on most platforms; override where the
        platform threads them differently.
        """
        return self.create_comment(target, body)

    def close(self) -> None:
        """Release any resources held by the provider (HTTP sessions).

        Optional — default is a no-op so callers can always call close() safely.
        """
