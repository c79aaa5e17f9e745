"""
Tests for cvpatch/redline/engine.py — applying ordered changes with highlights.

Run: python3 test_engine.py
From: python/
"""

from unittest import mock

from cvpatch.markup import HIGHLIGHT_STYLE, strip_highlights
from cvpatch.models import InsertEdit, MatchOptions, MatchStrategy, OutcomeStatus, ReplaceEdit, UnrecognizedEdit
from cvpatch.redline import engine
from cvpatch.redline.engine import apply_changes

HL = '<span class="cv-change-highlight">'

CV_DOC = """<html>
<head><title>CV</title></head>
<body>
  <h2>Experience</h2>
  <ul>
    <li><b>Operational Efficiency:</b> Architected automation workflows.</li>
    <li>Led a cross-functional team of twelve engineers to deliver the payments platform on time.</li>
  </ul>
  <h2>Skills</h2>
  <p>Python, SQL</p>
</body>
</html>"""


class RecordingLogger:
    """Minimal structlog-compatible sink."""

    def __init__(self, events=None, context=None):
        self.events = events if events is not None else []
        self.context = context or {}

    def bind(self, **kw):
        return RecordingLogger(self.events, {**self.context, **kw})

    def _record(self, level, event, **kw):
        self.events.append({"level": level, "event": event, **self.context, **kw})

    def debug(self, event, **kw):
        self._record("debug", event, **kw)

    def info(self, event, **kw):
        self._record("info", event, **kw)

    def warning(self, event, **kw):
        self._record("warning", event, **kw)

    def exception(self, event, **kw):
        self._record("exception", event, **kw)


def test_replace_keeps_tags_balanced():
    """Matching across </b> must take the <b> opener with it."""
    markup = "<li><b>Operational Efficiency:</b> Architected automation workflows.</li>"
    result = apply_changes(
        markup,
        [
            {
                "find": "Operational Efficiency: Architected automation workflows.",
                "replace": "New Strategy: Implemented new things.",
            }
        ],
    )

    assert result.outcomes[0].status == OutcomeStatus.APPLIED
    assert f"<li>{HL}New Strategy: Implemented new things.</span></li>" in result.markup
    assert result.markup.count(HL) == 1
    assert "<b>" not in result.markup
    assert "</b>" not in result.markup
    print("PASS: tag balance")


def test_changes_apply_in_order():
    """The second change sees the first change's output."""
    result = apply_changes("<p>Python developer</p>", [{"find": "Python", "replace": "Go"}, {"find": "Go", "replace": "Rust"}])

    assert [o.status for o in result.outcomes] == [OutcomeStatus.APPLIED, OutcomeStatus.APPLIED]
    assert f"{HL}{HL}Rust</span></span> developer" in result.markup
    assert "Go" not in result.markup
    assert strip_highlights(result.markup).endswith("<p>Rust developer</p>")
    print("PASS: order dependence")


def test_skipped_versus_failed():
    result = apply_changes("<p>Python</p>", [{}, {"find": "zzz-not-present", "replace": "x"}])

    skipped, failed = result.outcomes
    assert skipped.status == OutcomeStatus.SKIPPED
    assert skipped.reason == "missing find/replace or anchor/content fields"
    assert isinstance(skipped.instruction, UnrecognizedEdit)
    assert failed.status == OutcomeStatus.FAILED
    assert failed.reason.startswith('text not found: "zzz-not-present')
    assert result.markup == "<p>Python</p>"
    print("PASS: skip vs fail")


def test_empty_replace_is_skipped():
    result = apply_changes("<p>Python</p>", [{"find": "Python", "replace": ""}])
    assert result.outcomes[0].status == OutcomeStatus.SKIPPED
    assert result.markup == "<p>Python</p>"
    print("PASS: empty replace")


def test_summary_counts():
    instructions = [
        {"find": "Python", "replace": "Go"},
        {"find": "missing text", "replace": "x"},
        {"anchor": "SQL", "content": "Docker", "type": "insert"},
        {"note": "no fields"},
        "not even a mapping",
    ]
    result = apply_changes(CV_DOC, instructions)
    s = result.summary

    assert s.total_count == len(instructions)
    assert (s.applied_count, s.failed_count, s.skipped_count) == (2, 1, 2)
    assert s.applied_count + s.failed_count + s.skipped_count == s.total_count
    assert len(result.outcomes) == len(instructions)
    print("PASS: summary")


def test_whitespace_tolerant_replace():
    result = apply_changes(
        "<p>Led   cross-functional\nteam</p>",
        [{"find": "Led cross-functional team", "replace": "Directed the team"}],
    )

    outcome = result.outcomes[0]
    assert outcome.status == OutcomeStatus.APPLIED
    assert outcome.strategy == MatchStrategy.NORMALIZED
    assert f"<p>{HL}Directed the team</span></p>" in result.markup
    print("PASS: whitespace tolerance")


def test_exact_match_recorded_at_first_occurrence():
    markup = "<p>Python <b>and</b> Go</p><p>Python and Go</p>"
    result = apply_changes(markup, [ReplaceEdit(find="Python and Go", replace="Rust")])

    outcome = result.outcomes[0]
    assert outcome.strategy == MatchStrategy.EXACT
    assert outcome.match_start == markup.index("Python and Go")
    assert result.markup.endswith(f"<p>Python <b>and</b> Go</p><p>{HL}Rust</span></p>")
    print("PASS: exact precedence")


def test_insert_after_list_item():
    markup = "<ul><li>Python</li><li>SQL</li></ul>"
    result = apply_changes(markup, [{"type": "insert", "anchor": "SQL", "content": "Docker"}])

    assert result.outcomes[0].status == OutcomeStatus.APPLIED
    assert f"<li>SQL</li>\n<li>{HL}Docker</span></li></ul>" in result.markup
    print("PASS: insert li")


def test_insert_after_paragraph():
    markup = "<div><p>Summary text.</p><p>More.</p></div>"
    result = apply_changes(markup, [InsertEdit(anchor="Summary text.", content="Certified AWS architect.")])

    assert f"<p>Summary text.</p>\n<p>{HL}Certified AWS architect.</span></p><p>More.</p>" in result.markup
    print("PASS: insert p")


def test_insert_inline_for_other_elements():
    markup = "<div><span>Python</span></div>"
    result = apply_changes(markup, [{"anchor": "Python", "content": "Go"}])

    assert f"<span>Python</span>, {HL}Go</span></div>" in result.markup
    print("PASS: insert inline")


def test_insert_anchor_found_via_normalized_view():
    markup = "<ul>\n  <li>Built   REST\n APIs</li>\n</ul>"
    result = apply_changes(markup, [{"anchor": "Built REST APIs", "content": "Wrote gRPC services"}])

    outcome = result.outcomes[0]
    assert outcome.status == OutcomeStatus.APPLIED
    assert outcome.strategy == MatchStrategy.NORMALIZED
    assert f"APIs</li>\n<li>{HL}Wrote gRPC services</span></li>" in result.markup
    print("PASS: insert normalized anchor")


def test_insert_without_element_boundary_fails():
    markup = "<p>Skills: Python<br>SQL</p>"
    result = apply_changes(markup, [{"anchor": "Python", "content": "Go"}])

    assert result.outcomes[0].status == OutcomeStatus.FAILED
    assert result.outcomes[0].reason == "could not find element boundary"
    assert result.markup == markup
    print("PASS: insert boundary")


def test_insert_boundary_scan_is_bounded():
    markup = "<p>Python" + " and more" * 20 + "</p>"
    result = apply_changes(markup, [{"anchor": "Python", "content": "Go"}], MatchOptions(boundary_scan_limit=50))
    assert result.outcomes[0].reason == "could not find element boundary"
    print("PASS: bounded scan")


def test_insert_anchor_never_fuzzy():
    drifted = "Led a cross-functional team of twelve engineers to ship the payments platform on time."
    result = apply_changes(CV_DOC, [{"anchor": drifted, "content": "x"}])

    assert result.outcomes[0].status == OutcomeStatus.FAILED
    assert result.outcomes[0].reason.startswith("anchor not found")
    print("PASS: no fuzzy anchors")


def test_fuzzy_replace_and_confidence_threshold():
    change = {
        "find": "Led a cross-functional team of twelve engineers to ship the payments platform on time.",
        "replace": "Led 12 engineers shipping the payments platform on schedule.",
    }

    loose = apply_changes(CV_DOC, [change])
    assert loose.outcomes[0].status == OutcomeStatus.APPLIED
    assert loose.outcomes[0].strategy == MatchStrategy.FUZZY
    assert f"<li>{HL}Led 12 engineers shipping the payments platform on schedule.</span></li>" in loose.markup

    strict = apply_changes(CV_DOC, [change], MatchOptions(min_confidence=0.99))
    assert strict.outcomes[0].status == OutcomeStatus.FAILED
    assert "confidence" in strict.outcomes[0].reason
    assert strict.markup == CV_DOC
    print("PASS: fuzzy confidence")


def test_styles_injected_once_in_head():
    first = apply_changes(CV_DOC, [{"find": "Python", "replace": "Go"}])
    assert first.markup.count("<style>") == 1
    assert first.markup.index(HIGHLIGHT_STYLE) < first.markup.index("</head>")

    second = apply_changes(first.markup, [{"find": "SQL", "replace": "PostgreSQL"}])
    assert second.markup.count("<style>") == 1
    print("PASS: style injected once")


def test_no_styles_when_nothing_applied():
    result = apply_changes(CV_DOC, [{"find": "COBOL", "replace": "Go"}])
    assert result.markup == CV_DOC
    print("PASS: no style without changes")


def test_extra_fields_preserved_in_outcome():
    change = {"type": "keyword", "find": "SQL", "replace": "PostgreSQL", "reason": "JD asks for Postgres"}
    outcome = apply_changes(CV_DOC, [change]).outcomes[0]

    assert outcome.instruction.find == "SQL"
    assert outcome.instruction.model_extra["type"] == "keyword"
    assert outcome.instruction.model_extra["reason"] == "JD asks for Postgres"
    print("PASS: extra fields")


def test_invalid_insert_position_is_skipped():
    outcome = apply_changes(CV_DOC, [{"anchor": "SQL", "content": "Go", "position": "before"}]).outcomes[0]
    assert outcome.status == OutcomeStatus.SKIPPED
    assert outcome.reason.startswith("invalid instruction")
    print("PASS: invalid position")


def test_orphaned_closer_is_a_residual_risk():
    """A matched opener without its closer is not repaired: the closer is left behind."""
    markup = "<li>Built APIs <b>in Go</b></li>"
    result = apply_changes(markup, [{"find": "Built APIs in", "replace": "Shipped services in"}])

    assert result.outcomes[0].status == OutcomeStatus.APPLIED
    assert result.markup.endswith(f"<li>{HL}Shipped services in</span> Go</b></li>")
    assert "<b>" not in result.markup
    print("PASS: residual orphan")


def test_unexpected_error_does_not_stop_later_changes():
    real_expand = engine.expand_to_balanced_tags

    def flaky_expand(markup, position):
        if markup[position.start : position.end] == "Python":
            raise RuntimeError("boom")
        return real_expand(markup, position)

    with mock.patch.object(engine, "expand_to_balanced_tags", side_effect=flaky_expand):
        result = apply_changes(CV_DOC, [{"find": "Python", "replace": "Go"}, {"find": "SQL", "replace": "Postgres"}])

    assert result.outcomes[0].status == OutcomeStatus.FAILED
    assert result.outcomes[0].reason == "internal error: boom"
    assert result.outcomes[1].status == OutcomeStatus.APPLIED
    assert f"{HL}Postgres</span>" in result.markup
    print("PASS: error isolation")


def test_injected_logger_receives_diagnostics():
    log = RecordingLogger()
    apply_changes(CV_DOC, [{"find": "Python", "replace": "Go"}, {"find": "COBOL", "replace": "x"}, {}], log=log)

    by_event = {}
    for e in log.events:
        by_event.setdefault(e["event"], []).append(e)

    assert by_event["Change applied"][0]["edit_index"] == 0
    assert by_event["Change not applied"][0]["edit_index"] == 1
    assert by_event["Skipping change"][0]["edit_index"] == 2
    assert by_event["Applied changes"][0]["applied"] == 1
    print("PASS: injected logger")


def test_empty_instruction_list():
    result = apply_changes(CV_DOC, [])
    assert result.markup == CV_DOC
    assert result.summary.total_count == 0
    assert result.outcomes == []
    print("PASS: empty list")


if __name__ == "__main__":
    tests = [
        test_replace_keeps_tags_balanced,
        test_changes_apply_in_order,
        test_skipped_versus_failed,
        test_empty_replace_is_skipped,
        test_summary_counts,
        test_whitespace_tolerant_replace,
        test_exact_match_recorded_at_first_occurrence,
        test_insert_after_list_item,
        test_insert_after_paragraph,
        test_insert_inline_for_other_elements,
        test_insert_anchor_found_via_normalized_view,
        test_insert_without_element_boundary_fails,
        test_insert_boundary_scan_is_bounded,
        test_insert_anchor_never_fuzzy,
        test_fuzzy_replace_and_confidence_threshold,
        test_styles_injected_once_in_head,
        test_no_styles_when_nothing_applied,
        test_extra_fields_preserved_in_outcome,
        test_invalid_insert_position_is_skipped,
        test_orphaned_closer_is_a_residual_risk,
        test_unexpected_error_does_not_stop_later_changes,
        test_injected_logger_receives_diagnostics,
        test_empty_instruction_list,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print(f"\n{'='*60}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed == 0:
        print("ALL TESTS PASSED")
    else:
        print("SOME TESTS FAILED")
