"""Render the managed report-links section."""

from __future__ import annotations

from datetime import timezone
from urllib.parse import quote

from reportlink_core.history import HistoryStore, encode_run
from reportlink_core.models import RunRecord, Summary
from reportlink_core.section import end_marker, start_marker

DEFAULT_TITLE = "Allure report"

PASSED_ICON = "✅"
FAILED_ICON = "❌"

_TEXT_ESCAPES = str.maketrans(
    {"&": "&amp;", "<": "&lt;", ">": "&gt;", "[": "\\[", "]": "\\]", "\\": "\\\\", "`": "\\`"}
)
_URL_SAFE = ":/?#[]@!$&'*+,;=%~"


def status_icon(summary: Summary) -> str:
    return FAILED_ICON if summary.has_failures else PASSED_ICON


def format_timestamp(run: RunRecord) -> str:
    return run.created_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_summary(summary: Summary) -> str:
    return (
        f"{summary.total} total · {summary.passed} passed · {summary.failed} failed · "
        f"{summary.broken} broken · {summary.skipped} skipped"
    )


def escape_text(value: str) -> str:
    """Make a CI-provided value safe as single-line markdown text.

    Angle brackets are entity-encoded so no value can form a section marker.
    """
    return " ".join(value.split()).translate(_TEXT_ESCAPES)


def escape_url(url: str) -> str:
    """Percent-encode everything a markdown link target or HTML comment could trip on."""
    return quote(url, safe=_URL_SAFE)


def _links(run: RunRecord) -> str:
    parts = [f"[{escape_text(run.label)}]({escape_url(run.report_url)})"]
    if run.build_url:
        parts.append(f"[build]({escape_url(run.build_url)})")
    if run.commit_sha:
        short_sha = f"`{escape_text(run.commit_sha[:8])}`"
        parts.append(f"[{short_sha}]({escape_url(run.commit_url)})" if run.commit_url else short_sha)
    return " · ".join(parts)


def render_history_line(run: RunRecord) -> str:
    return (
        f"- {status_icon(run.summary)} {_links(run)} · {format_timestamp(run)} · "
        f"{format_summary(run.summary)} {encode_run(run)}"
    )


def render(current: RunRecord, history: HistoryStore, title: str = DEFAULT_TITLE) -> str:
    """Render the full section, markers included.

    Pure: the same run, history and title always give byte-identical output.
    The current run is rendered as the headline and is never part of ``history``.
    """
    lines = [
        start_marker(),
        f"### {status_icon(current.summary)} {escape_text(title)}",
        "",
        f"**Latest run:** {_links(current)} · {format_timestamp(current)}",
        "",
        f"**Summary:** {format_summary(current.summary)}",
        encode_run(current),
    ]

    if len(history):
        lines += [
            "",
            "<details>",
            f"<summary>Previous runs ({len(history)})</summary>",
            "",
        ]
        lines += [render_history_line(run) for run in history]
        lines += ["", "</details>"]

    lines.append(end_marker())
    return "\n".join(lines)
