"""History of earlier runs, stored as one line per run inside the managed section.

Each run the renderer emits ends with a hidden, machine-readable payload:

    - ✅ [rspec #41](https://...) · 2026-10-18 09:12:44 UTC · ... <!-- reportlink-run {...} -->

Only the payload is read back; the visible part of the line is free to change
between releases. A line whose payload does not decode is dropped — damage to
old entries must never stop the current run from being published.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Iterable, Iterator

from reportlink_core.models import ExecutorType, RunRecord, Summary

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10

_RUN_PREFIX = "<!-- reportlink-run "
_RUN_RE = re.compile(r"<!-- reportlink-run (?P<payload>\{.*\}) -->")


def encode_run(run: RunRecord) -> str:
    """Serialize a run into its hidden HTML-comment payload."""
    payload = {
        "at": run.created_at.isoformat(),
        "build": run.build_url,
        "commit": run.commit_url,
        "exec": run.executor_name,
        "name": run.build_name,
        "order": run.build_order,
        "sha": run.commit_sha,
        "summary": [
            run.summary.total,
            run.summary.passed,
            run.summary.failed,
            run.summary.broken,
            run.summary.skipped,
        ],
        "type": run.executor_type.value,
        "url": run.report_url,
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    # Angle brackets would let a crafted URL close the comment early.
    raw = raw.replace("<", "\\u003c").replace(">", "\\u003e")
    return f"{_RUN_PREFIX}{raw} -->"


def decode_run(line: str) -> RunRecord | None:
    """Return the run encoded in ``line``, or None when the line carries no payload.

    Raises ValueError (or KeyError/TypeError) when a payload is present but
    malformed; callers decide whether that is fatal.
    """
    match = _RUN_RE.search(line)
    if match is None:
        if _RUN_PREFIX in line:
            raise ValueError("unterminated run payload")
        return None
    data = json.loads(match.group("payload"))
    if not isinstance(data, dict):
        raise ValueError("run payload is not an object")

    counts = data["summary"]
    if not isinstance(counts, list) or len(counts) != 5:
        raise ValueError(f"summary must be a list of 5 counts, got {counts!r}")
    total, passed, failed, broken, skipped = counts

    return RunRecord(
        report_url=_text(data, "url"),
        build_order=_text(data, "order", ""),
        created_at=datetime.fromisoformat(_text(data, "at")),
        summary=Summary(total=total, passed=passed, failed=failed, broken=broken, skipped=skipped),
        executor_name=_text(data, "exec", "Unknown"),
        executor_type=ExecutorType.parse(_text(data, "type", ExecutorType.UNKNOWN.value)),
        build_url=_text(data, "build", ""),
        build_name=_text(data, "name", ""),
        commit_sha=_text(data, "sha", ""),
        commit_url=_text(data, "commit", ""),
    )


def _text(data: dict, key: str, default: str | None = None) -> str:
    """Return ``data[key]`` as a string; a missing key falls back to ``default``."""
    if key not in data:
        if default is None:
            raise KeyError(key)
        return default
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {value!r}")
    return value


def parse_runs(section: str) -> list[RunRecord]:
    """Return every salvageable run in ``section``, in document order (newest first).

    The first run is the section's headline; the rest are earlier runs.
    """
    runs: list[RunRecord] = []
    for lineno, line in enumerate(section.splitlines(), 1):
        try:
            run = decode_run(line)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Dropping unreadable history entry on line %d: %s", lineno, e)
            continue
        if run is not None:
            runs.append(run)
    return runs


class HistoryStore:
    """Bounded, newest-first sequence of earlier runs.

    Rebuilt on every invocation from the previous document. Entries past
    ``limit`` are dropped from the old end.
    """

    def __init__(self, entries: Iterable[RunRecord] = (), limit: int = DEFAULT_HISTORY_LIMIT):
        if limit < 0:
            raise ValueError(f"history limit must be >= 0, got {limit}")
        self._limit = limit
        self._entries = tuple(entries)[:limit]

    @classmethod
    def from_section(
        cls,
        section: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        exclude: RunRecord | None = None,
    ) -> HistoryStore:
        """Rebuild history from a previously rendered section.

        ``exclude`` drops any entry for the same run, so a retried job
        replaces its earlier line instead of appearing twice.
        """
        runs = parse_runs(section)
        if exclude is not None:
            runs = [r for r in runs if r.identity != exclude.identity]
        return cls(runs, limit=limit)

    @property
    def entries(self) -> tuple[RunRecord, ...]:
        return self._entries

    @property
    def limit(self) -> int:
        return self._limit

    def __iter__(self) -> Iterator[RunRecord]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        if not isinstance(other, HistoryStore):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"HistoryStore({len(self._entries)} entries, limit={self._limit})"
