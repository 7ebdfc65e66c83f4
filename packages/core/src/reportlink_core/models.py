"""Run data models.

RunContext is assembled once from CI metadata and CLI options. RunRecord is
the immutable description of one report publication built from it; the only
place a RunRecord is ever persisted is the serialized history line inside the
managed section.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import urlparse


class ExecutorType(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> ExecutorType:
        if not isinstance(value, str):
            return cls.UNKNOWN
        try:
            return cls(value.lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Summary:
    """Test outcome counts for one run."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    broken: int = 0
    skipped: int = 0

    def __post_init__(self):
        for name in ("total", "passed", "failed", "broken", "skipped"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"Summary.{name} must be a non-negative integer, got {value!r}")

    @property
    def has_failures(self) -> bool:
        return self.failed > 0 or self.broken > 0

    @classmethod
    def from_statistic(cls, statistic: dict) -> Summary:
        """Build a Summary from an Allure ``widgets/summary.json`` statistic block.

        Allure reports ``unknown`` separately; it is folded into ``skipped``.
        When ``total`` is missing it is derived from the other counts.
        """
        passed = int(statistic.get("passed", 0))
        failed = int(statistic.get("failed", 0))
        broken = int(statistic.get("broken", 0))
        skipped = int(statistic.get("skipped", 0)) + int(statistic.get("unknown", 0))
        total = statistic.get("total")
        total = int(total) if total is not None else passed + failed + broken + skipped
        return cls(total=total, passed=passed, failed=failed, broken=broken, skipped=skipped)


@dataclass(frozen=True)
class RunContext:
    """Everything reportlink needs from the CI environment, resolved up front."""

    project: str
    request_id: int
    executor_name: str = "Unknown"
    executor_type: ExecutorType = ExecutorType.UNKNOWN
    build_url: str = ""
    build_order: str = ""
    build_name: str = ""
    commit_sha: str = ""
    server_url: str = ""

    @property
    def commit_url(self) -> str:
        """Link to the commit inside the pull/merge request, or "" when it cannot be built."""
        if not (self.server_url and self.commit_sha):
            return ""
        server = self.server_url.rstrip("/")
        if self.executor_type is ExecutorType.GITLAB:
            return f"{server}/{self.project}/-/merge_requests/{self.request_id}/diffs?commit_id={self.commit_sha}"
        if self.executor_type is ExecutorType.GITHUB:
            return f"{server}/{self.project}/pull/{self.request_id}/commits/{self.commit_sha}"
        return ""


@dataclass(frozen=True)
class RunRecord:
    """One report publication event. Never mutated after construction."""

    report_url: str
    build_order: str
    created_at: datetime
    summary: Summary = field(default_factory=Summary)
    executor_name: str = "Unknown"
    executor_type: ExecutorType = ExecutorType.UNKNOWN
    build_url: str = ""
    build_name: str = ""
    commit_sha: str = ""
    commit_url: str = ""

    def __post_init__(self):
        parsed = urlparse(self.report_url if isinstance(self.report_url, str) else "")
        if not (parsed.scheme and parsed.netloc):
            raise ValueError(f"report_url must be an absolute URL, got {self.report_url!r}")
        if not isinstance(self.executor_type, ExecutorType):
            object.__setattr__(self, "executor_type", ExecutorType.parse(self.executor_type))
        # Naive timestamps are taken as UTC so rendering is stable across hosts.
        if self.created_at.tzinfo is None:
            object.__setattr__(self, "created_at", self.created_at.replace(tzinfo=timezone.utc))

    @classmethod
    def from_context(
        cls,
        context: RunContext,
        report_url: str,
        summary: Summary,
        created_at: datetime | None = None,
    ) -> RunRecord:
        return cls(
            report_url=report_url,
            build_order=context.build_order,
            created_at=created_at or datetime.now(timezone.utc),
            summary=summary,
            executor_name=context.executor_name,
            executor_type=context.executor_type,
            build_url=context.build_url,
            build_name=context.build_name,
            commit_sha=context.commit_sha,
            commit_url=context.commit_url,
        )

    @property
    def identity(self) -> tuple[str, str, str]:
        """Key under which a retried run replaces its earlier entry."""
        return (self.build_name, self.build_order, self.report_url)

    @property
    def label(self) -> str:
        name = self.build_name or self.executor_name or "Unknown"
        return f"{name} #{self.build_order}" if self.build_order else name
