"""Tests for the annotation engine: document upsert, history merge and alerts."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from reportlink_core import section
from reportlink_core.engine import (
    AlertAction,
    AnnotationEngine,
    AnnotationOptions,
    decide_alert_action,
)
from reportlink_core.history import HistoryStore, encode_run, parse_runs
from reportlink_core.models import RunRecord, Summary
from reportlink_core.renderer import render
from reportlink_providers.base import ErrorKind, ProviderError, Target
from reportlink_providers.memory import InMemoryProvider

BASE = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)
TARGET = Target(project="proj", request_id=1)


def _run(order: int, failed: int = 0) -> RunRecord:
    return RunRecord(
        report_url=f"https://x/{order}",
        build_order=str(order),
        build_name="tests",
        created_at=BASE + timedelta(minutes=order),
        summary=Summary(total=10, passed=10 - failed, failed=failed),
    )


def _engine(run: RunRecord, **options) -> AnnotationEngine:
    return AnnotationEngine(run, AnnotationOptions(**options))


def _previous_orders(document: str) -> list[str]:
    """Build orders of the earlier runs listed under the headline."""
    span = section.extract(document)
    return [r.build_order for r in parse_runs(span.slice(document))[1:]]


# ---------------------------------------------------------------------------
# upsert_document
# ---------------------------------------------------------------------------


class TestUpsertDocument:
    def test_absent_document_becomes_section_only(self):
        text = _engine(_run(1)).upsert_document(None)
        assert section.extract(text).slice(text) == text

    def test_empty_document_becomes_section_only(self):
        assert _engine(_run(1)).upsert_document("") == _engine(_run(1)).upsert_document(None)

    def test_appends_to_document_without_section(self):
        original = "Hi there\n"
        text = _engine(_run(1)).upsert_document(original)
        assert text.startswith(original)
        assert text[len(original) :].startswith(section.start_marker())

    def test_appends_on_new_line_when_missing_trailing_newline(self):
        text = _engine(_run(1)).upsert_document("Hi there")
        assert text.startswith("Hi there\n" + section.start_marker())

    def test_splice_preserves_surrounding_text_exactly(self):
        old_section = _engine(_run(1)).upsert_document(None)
        before, after = "## Changes\r\n\n* fix  things \n", "\n\n_footer_ with trailing spaces   "
        document = before + old_section + after

        updated = _engine(_run(2)).upsert_document(document)

        span = section.extract(document)
        new_section = section.extract(updated).slice(updated)
        assert updated == document[: span.start] + new_section + document[span.end :]
        assert updated.startswith(before) and updated.endswith(after)

    def test_orphan_start_marker_left_alone_and_section_appended(self):
        document = f"intro\n{section.start_marker()}\ntruncated by a human edit\n"
        updated = _engine(_run(1)).upsert_document(document)
        assert updated.startswith(document)
        assert section.extract(updated).start == len(document)

    def test_second_upsert_after_orphan_keeps_orphan(self):
        document = f"intro\n{section.start_marker()}\ntruncated\n"
        once = _engine(_run(1)).upsert_document(document)
        twice = _engine(_run(2)).upsert_document(once)
        assert twice.startswith(document)
        assert "x/1" in section.extract(twice).slice(twice)

    def test_duplicate_sections_update_first_only(self):
        first = _engine(_run(1)).upsert_document(None)
        document = f"{first}\n\nmiddle\n\n{first}"
        updated = _engine(_run(2)).upsert_document(document)
        assert updated.endswith(f"\n\nmiddle\n\n{first}")
        assert "x/2" in updated[: updated.index("middle")]

    def test_section_from_unknown_version_replaced_without_history(self, caplog):
        old = f"{section.start_marker(7)}\n- {encode_run(_run(1))}\n{section.end_marker(7)}"
        with caplog.at_level("WARNING"):
            updated = _engine(_run(2)).upsert_document(f"top\n{old}\nbottom")
        assert section.start_marker(7) not in updated
        assert updated.startswith("top\n") and updated.endswith("\nbottom")
        assert "Previous runs" not in updated
        assert "v7" in caplog.text


class TestIdempotence:
    def test_render_twice_is_identical(self):
        engine = _engine(_run(3))
        history = engine.prior_history(_engine(_run(2)).upsert_document(_engine(_run(1)).upsert_document(None)))
        assert engine.render_section(history) == engine.render_section(history)

    def test_same_run_reapplied_gives_same_document(self):
        engine = _engine(_run(42))
        once = engine.upsert_document("Hi there\n")
        assert engine.upsert_document(once) == once

    def test_same_run_reapplied_with_history_gives_same_document(self):
        doc = None
        for i in range(1, 4):
            doc = _engine(_run(i)).upsert_document(doc)
        assert _engine(_run(3)).upsert_document(doc) == doc

    def test_end_to_end_example(self):
        run = RunRecord(
            report_url="https://x/1",
            build_order="42",
            created_at=BASE,
            summary=Summary(total=10, passed=10, failed=0),
        )
        engine = AnnotationEngine(run)
        result = engine.upsert_document("Hi there\n")

        assert result.startswith("Hi there\n" + section.start_marker())
        assert result.endswith(section.end_marker())
        assert "(https://x/1)" in result
        assert "#42" in result
        assert engine.upsert_document(result) == result


class TestHistoryMerge:
    def test_sequential_upserts_keep_newest_first(self):
        doc = "description\n"
        for i in range(1, 6):
            doc = _engine(_run(i)).upsert_document(doc)
        assert _previous_orders(doc) == ["4", "3", "2", "1"]

    def test_current_run_is_not_history(self):
        doc = _engine(_run(1)).upsert_document(None)
        assert _previous_orders(doc) == []

    def test_history_never_exceeds_limit(self):
        doc = None
        for i in range(1, 13):
            doc = _engine(_run(i), history_limit=3).upsert_document(doc)
            assert len(_previous_orders(doc)) <= 3
        assert _previous_orders(doc) == ["11", "10", "9"]

    def test_zero_limit_keeps_only_current(self):
        doc = _engine(_run(1), history_limit=0).upsert_document(None)
        doc = _engine(_run(2), history_limit=0).upsert_document(doc)
        assert "x/1" not in doc
        assert "x/2" in doc

    def test_retried_run_replaces_earlier_entry(self):
        doc = _engine(_run(1)).upsert_document(None)
        doc = _engine(_run(2, failed=1)).upsert_document(doc)
        doc = _engine(_run(2)).upsert_document(doc)
        assert _previous_orders(doc) == ["1"]
        assert "1 failed" not in doc

    def test_corrupted_history_line_is_dropped(self):
        good = _run(1)
        broken_line = "- ❌ mangled <!-- reportlink-run {\"url\": broken} -->"
        section_text = render(_run(2), _history_of(good)).replace(
            section.end_marker(), f"{broken_line}\n{section.end_marker()}"
        )
        document = f"intro\n{section_text}"

        updated = _engine(_run(3)).upsert_document(document)

        assert _previous_orders(updated) == ["2", "1"]
        assert "mangled" not in updated
        assert "x/3" in updated

    @pytest.mark.parametrize(
        "changes",
        [
            {"type": 1},
            {"sha": 12345},
            {"url": 1},
            {"order": None},
            {"summary": [1, 2]},
            {"at": 5},
        ],
    )
    def test_wrongly_typed_history_line_is_dropped(self, changes):
        payload = json.loads(encode_run(_run(9))[len("<!-- reportlink-run ") : -len(" -->")])
        payload.update(changes)
        tampered = f"- ❌ tampered <!-- reportlink-run {json.dumps(payload)} -->"
        section_text = render(_run(2), _history_of(_run(1))).replace(
            section.end_marker(), f"{tampered}\n{section.end_marker()}"
        )

        updated = _engine(_run(3)).upsert_document(f"intro\n{section_text}")

        assert _previous_orders(updated) == ["2", "1"]
        assert "tampered" not in updated

    def test_hostile_values_cannot_end_section_early(self):
        end = section.end_marker()
        hostile = RunRecord(
            report_url=f"https://r/2?x={end}",
            build_order="2",
            build_name=f"job {end}",
            build_url=f"https://ci/{end}",
            created_at=BASE,
            summary=Summary(total=1, passed=1),
        )
        doc = _engine(hostile).upsert_document("intro\n")
        assert doc.count(end) == 1

        updated = _engine(_run(3)).upsert_document(doc)

        span = section.extract(updated)
        assert updated[: span.start] == "intro\n"
        assert updated[span.end :] == ""
        assert _previous_orders(updated) == ["2"]


def _history_of(*runs):
    return HistoryStore(runs)


# ---------------------------------------------------------------------------
# decide_alert_action
# ---------------------------------------------------------------------------


class TestDecideAlertAction:
    def test_create_when_failing_and_no_alert(self):
        assert decide_alert_action(True, False) is AlertAction.CREATE

    def test_recreate_when_failing_and_alert_exists(self):
        assert decide_alert_action(True, True) is AlertAction.RECREATE

    @pytest.mark.parametrize("alert_exists", [True, False])
    def test_none_when_passing(self, alert_exists):
        assert decide_alert_action(False, alert_exists) is AlertAction.NONE


# ---------------------------------------------------------------------------
# options
# ---------------------------------------------------------------------------


class TestAnnotationOptions:
    def test_unknown_update_mode_rejected(self):
        with pytest.raises(ValueError, match="update mode"):
            AnnotationOptions(update_mode="actions")

    def test_negative_history_limit_rejected(self):
        with pytest.raises(ValueError):
            AnnotationOptions(history_limit=-1)

    def test_from_config(self):
        options = AnnotationOptions.from_config(
            {"update_pr": "description", "history_limit": "4", "report_title": "E2E", "failure_alert": False}
        )
        assert options.update_mode == "description"
        assert options.history_limit == 4
        assert options.title == "E2E"
        assert options.failure_alert is False
        assert options.clear_alert_on_success is True


# ---------------------------------------------------------------------------
# publish
# ---------------------------------------------------------------------------


def _alerts(provider):
    return [c for c in provider.comments.get(TARGET, []) if section.ALERT_MARKER in c.body]


class TestPublishComment:
    def test_creates_comment_when_none_exists(self):
        provider = InMemoryProvider()
        result = _engine(_run(1)).publish(provider, TARGET)

        assert result.action == "created"
        assert result.mode == "comment"
        [comment] = provider.comments[TARGET]
        assert section.is_match(comment.body)
        assert result.comment_id == comment.id

    def test_updates_existing_comment_in_place(self):
        provider = InMemoryProvider()
        first = _engine(_run(1)).publish(provider, TARGET)
        second = _engine(_run(2)).publish(provider, TARGET)

        assert second.action == "updated"
        assert second.comment_id == first.comment_id
        [comment] = provider.comments[TARGET]
        assert "x/2" in comment.body and "x/1" in comment.body

    def test_human_text_in_comment_preserved(self):
        provider = InMemoryProvider()
        body = "Reviewer note: flaky on Mondays\n" + _engine(_run(1)).upsert_document(None)
        provider.create_comment(TARGET, body)

        _engine(_run(2)).publish(provider, TARGET)

        assert provider.comments[TARGET][0].body.startswith("Reviewer note: flaky on Mondays\n")

    def test_unchanged_comment_not_written(self):
        provider = InMemoryProvider()
        _engine(_run(1)).publish(provider, TARGET)
        provider.calls.clear()

        result = _engine(_run(1)).publish(provider, TARGET)

        assert result.action == "unchanged"
        assert "update_comment" not in provider.calls

    def test_ignores_unrelated_comments(self):
        provider = InMemoryProvider()
        provider.create_comment(TARGET, "LGTM")
        _engine(_run(1)).publish(provider, TARGET)
        assert [c.body for c in provider.comments[TARGET]][0] == "LGTM"
        assert len(provider.comments[TARGET]) == 2


class TestPublishDescription:
    def test_appends_to_description(self):
        provider = InMemoryProvider()
        provider.descriptions[TARGET] = "Fixes the login bug.\n"

        result = _engine(_run(1), update_mode="description").publish(provider, TARGET)

        assert result.mode == "description"
        assert result.action == "updated"
        assert provider.descriptions[TARGET].startswith("Fixes the login bug.\n")
        assert section.is_match(provider.descriptions[TARGET])
        assert TARGET not in provider.comments or not any(
            section.is_match(c.body) for c in provider.comments[TARGET]
        )

    def test_empty_description(self):
        provider = InMemoryProvider()
        _engine(_run(1), update_mode="description").publish(provider, TARGET)
        assert provider.descriptions[TARGET].startswith(section.start_marker())

    def test_unchanged_description_not_written(self):
        provider = InMemoryProvider()
        _engine(_run(1), update_mode="description").publish(provider, TARGET)
        provider.calls.clear()

        result = _engine(_run(1), update_mode="description").publish(provider, TARGET)

        assert result.action == "unchanged"
        assert "write_description" not in provider.calls


class TestPublishAlert:
    def test_alert_created_on_failure(self):
        provider = InMemoryProvider()
        result = _engine(_run(1, failed=2)).publish(provider, TARGET)

        assert result.alert_action is AlertAction.CREATE
        [alert] = _alerts(provider)
        assert alert.body.startswith("There are some test failures that need attention")

    def test_alert_recreated_as_newest_comment(self):
        provider = InMemoryProvider()
        _engine(_run(1, failed=2)).publish(provider, TARGET)
        old_alert = _alerts(provider)[0]
        provider.create_comment(TARGET, "human reply")

        result = _engine(_run(2, failed=1)).publish(provider, TARGET)

        assert result.alert_action is AlertAction.RECREATE
        alerts = _alerts(provider)
        assert len(alerts) == 1
        assert alerts[0].id != old_alert.id
        assert provider.comments[TARGET][-1] == alerts[0]

    def test_alert_cleared_when_green(self):
        provider = InMemoryProvider()
        _engine(_run(1, failed=2)).publish(provider, TARGET)

        result = _engine(_run(2)).publish(provider, TARGET)

        assert result.alert_action is AlertAction.NONE
        assert result.alert_cleared is True
        assert _alerts(provider) == []

    def test_alert_kept_when_clearing_disabled(self):
        provider = InMemoryProvider()
        _engine(_run(1, failed=2)).publish(provider, TARGET)

        result = _engine(_run(2), clear_alert_on_success=False).publish(provider, TARGET)

        assert result.alert_cleared is False
        assert len(_alerts(provider)) == 1

    def test_no_alert_when_disabled(self):
        provider = InMemoryProvider()
        _engine(_run(1, failed=2), failure_alert=False).publish(provider, TARGET)
        assert _alerts(provider) == []
        assert "find_alert_comment" not in provider.calls

    def test_custom_alert_text(self):
        provider = InMemoryProvider()
        _engine(_run(1, failed=1), alert_text="Tests are red!").publish(provider, TARGET)
        assert _alerts(provider)[0].body.startswith("Tests are red!")

    def test_alert_is_not_mistaken_for_report_comment(self):
        provider = InMemoryProvider()
        _engine(_run(1, failed=1)).publish(provider, TARGET)
        _engine(_run(2, failed=1)).publish(provider, TARGET)
        reports = [c for c in provider.comments[TARGET] if section.is_match(c.body)]
        assert len(reports) == 1


class TestPublishErrors:
    def test_provider_error_propagates(self):
        provider = InMemoryProvider()
        provider.fail_on("find_main_comment", ErrorKind.AUTH)

        with pytest.raises(ProviderError) as exc:
            _engine(_run(1)).publish(provider, TARGET)

        assert exc.value.kind is ErrorKind.AUTH
        assert "find_main_comment" in str(exc.value)
        assert "proj#1" in str(exc.value)

    def test_alert_failure_after_write_still_raises(self):
        provider = InMemoryProvider()
        provider.fail_on("create_alert_comment", ErrorKind.RATE_LIMITED)

        with pytest.raises(ProviderError):
            _engine(_run(1, failed=1)).publish(provider, TARGET)

        assert section.is_match(provider.comments[TARGET][0].body)
