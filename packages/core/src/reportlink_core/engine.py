"""Annotation engine: keep one report-links section up to date on a PR/MR.

The engine works in two layers:

  upsert_document() — pure text transformation. Finds the managed section in
                      an existing description or comment body, rebuilds its
                      history, renders the new section and splices it back in
                      place (or appends it when there is none).
  publish()         — the read-modify-write cycle against a provider, plus the
                      failure-alert comment lifecycle.

All I/O goes through the provider passed to publish(). Provider errors are not
caught here; they end the run and are reported by the caller.

There is no locking between concurrent pipeline runs. Two runs updating the
same PR at the same moment can lose one update; the next run repairs it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from reportlink_core import section
from reportlink_core.history import DEFAULT_HISTORY_LIMIT, HistoryStore
from reportlink_core.models import RunRecord
from reportlink_core.renderer import DEFAULT_TITLE, render

if TYPE_CHECKING:
    from reportlink_providers.base import BaseProvider, Target

logger = logging.getLogger(__name__)

DEFAULT_ALERT_TEXT = "There are some test failures that need attention"

UPDATE_MODES = ("comment", "description")


class AlertAction(str, Enum):
    NONE = "none"
    CREATE = "create"
    RECREATE = "recreate"


def decide_alert_action(has_failures: bool, alert_exists: bool) -> AlertAction:
    """Choose what to do with the failure alert for the current run.

    A persisting failure recreates the alert so it stays the newest item in
    the discussion. Without failures the answer is always NONE; clearing a
    stale alert is a separate policy applied by publish().
    """
    if not has_failures:
        return AlertAction.NONE
    return AlertAction.RECREATE if alert_exists else AlertAction.CREATE


@dataclass(frozen=True)
class AnnotationOptions:
    update_mode: str = "comment"
    history_limit: int = DEFAULT_HISTORY_LIMIT
    title: str = DEFAULT_TITLE
    failure_alert: bool = True
    clear_alert_on_success: bool = True
    alert_text: str = DEFAULT_ALERT_TEXT

    def __post_init__(self):
        if self.update_mode not in UPDATE_MODES:
            raise ValueError(f"Unknown update mode: {self.update_mode!r}. Choose 'comment' or 'description'.")
        if self.history_limit < 0:
            raise ValueError(f"history_limit must be >= 0, got {self.history_limit}")

    @classmethod
    def from_config(cls, config: dict) -> AnnotationOptions:
        return cls(
            update_mode=config.get("update_pr", "comment"),
            history_limit=int(config.get("history_limit", DEFAULT_HISTORY_LIMIT)),
            title=config.get("report_title") or DEFAULT_TITLE,
            failure_alert=bool(config.get("failure_alert", True)),
            clear_alert_on_success=bool(config.get("clear_alert_on_success", True)),
            alert_text=config.get("alert_text") or DEFAULT_ALERT_TEXT,
        )


@dataclass(frozen=True)
class AnnotationResult:
    """What publish() did, for reporting back to the user."""

    mode: str
    action: str  # "created" | "updated" | "unchanged"
    comment_id: int | None = None
    alert_action: AlertAction = AlertAction.NONE
    alert_cleared: bool = False


class AnnotationEngine:
    def __init__(self, run: RunRecord, options: AnnotationOptions | None = None):
        self.run = run
        self.options = options or AnnotationOptions()

    # ------------------------------------------------------------------ #
    # Pure text operations                                                 #
    # ------------------------------------------------------------------ #

    def prior_history(self, text: str | None) -> HistoryStore:
        """History to render under the current run: every run already in the section."""
        span = section.extract(text)
        if span is None:
            return HistoryStore(limit=self.options.history_limit)
        if span.version != section.VERSION:
            logger.warning(
                "Managed section has format v%d (this release writes v%d); discarding its history.",
                span.version,
                section.VERSION,
            )
            return HistoryStore(limit=self.options.history_limit)
        return HistoryStore.from_section(span.slice(text), limit=self.options.history_limit, exclude=self.run)

    def render_section(self, history: HistoryStore) -> str:
        return render(self.run, history, title=self.options.title)

    def upsert_document(self, existing: str | None) -> str:
        """Return ``existing`` with the managed section created or replaced.

        Text outside the section is preserved byte for byte. When there is no
        well-formed section, a fresh one is appended; an orphaned start marker
        is left alone rather than guessed at.
        """
        text = existing or ""
        span = section.extract(text)
        if span is None:
            fresh = self.render_section(HistoryStore(limit=self.options.history_limit))
            if not text:
                return fresh
            separator = "" if text.endswith("\n") else "\n"
            return f"{text}{separator}{fresh}"

        rendered = self.render_section(self.prior_history(text))
        return text[: span.start] + rendered + text[span.end :]

    # ------------------------------------------------------------------ #
    # Provider round trip                                                  #
    # ------------------------------------------------------------------ #

    def publish(self, provider: BaseProvider, target: Target) -> AnnotationResult:
        """Write the report links to ``target`` and manage the failure alert."""
        if self.options.update_mode == "description":
            mode, action, comment_id = "description", self._publish_description(provider, target), None
        else:
            mode = "comment"
            action, comment_id = self._publish_comment(provider, target)

        alert_action, cleared = AlertAction.NONE, False
        if self.options.failure_alert:
            alert_action, cleared = self._sync_alert(provider, target)

        return AnnotationResult(
            mode=mode,
            action=action,
            comment_id=comment_id,
            alert_action=alert_action,
            alert_cleared=cleared,
        )

    def _publish_description(self, provider: BaseProvider, target: Target) -> str:
        existing = provider.fetch_description(target)
        updated = self.upsert_document(existing)
        if updated == (existing or ""):
            logger.debug("Description of %s already up to date.", target)
            return "unchanged"
        logger.debug("Updating description of %s.", target)
        provider.write_description(target, updated)
        return "updated"

    def _publish_comment(self, provider: BaseProvider, target: Target) -> tuple[str, int | None]:
        comment = provider.find_main_comment(target)
        if comment is None:
            logger.debug("Creating report comment on %s.", target)
            created = provider.create_comment(target, self.upsert_document(None))
            return "created", created.id

        updated = self.upsert_document(comment.body)
        if updated == comment.body:
            logger.debug("Report comment %s on %s already up to date.", comment.id, target)
            return "unchanged", comment.id
        logger.debug("Updating report comment %s on %s.", comment.id, target)
        provider.update_comment(target, comment.id, updated)
        return "updated", comment.id

    def _sync_alert(self, provider: BaseProvider, target: Target) -> tuple[AlertAction, bool]:
        alert = provider.find_alert_comment(target, section.ALERT_MARKER)
        action = decide_alert_action(self.run.summary.has_failures, alert is not None)

        if action is AlertAction.NONE:
            if alert is not None and self.options.clear_alert_on_success:
                logger.debug("Failures cleared; removing alert comment %s on %s.", alert.id, target)
                provider.delete_comment(target, alert.id)
                return action, True
            return action, False

        if action is AlertAction.RECREATE:
            logger.debug("Recreating alert comment %s on %s.", alert.id, target)
            provider.delete_comment(target, alert.id)
        provider.create_alert_comment(target, self.alert_body())
        return action, False

    def alert_body(self) -> str:
        return f"{self.options.alert_text}\n\n{section.ALERT_MARKER}"
