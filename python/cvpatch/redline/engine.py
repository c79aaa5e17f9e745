import re
from typing import Any, Iterable, List, Optional, Tuple

import structlog

from cvpatch.markup import inject_highlight_styles, wrap_highlight
from cvpatch.models import (
    ApplyOutcome,
    ApplyResult,
    ApplySummary,
    EditInstruction,
    InsertEdit,
    MatchOptions,
    MatchStrategy,
    OutcomeStatus,
    ReplaceEdit,
    UnrecognizedEdit,
    coerce_instruction,
)
from cvpatch.redline.balance import expand_to_balanced_tags
from cvpatch.redline.locator import locate

logger = structlog.get_logger(__name__)

PREVIEW_LENGTH = 50
SKIPPED_REASON = "missing find/replace or anchor/content fields"

# Text up to (and including) the first tag after the anchor; that tag must be a closer.
_BOUNDARY_PATTERN = re.compile(r"^[^<]*(</(\w+)>)")

# Elements that get a new sibling of the same kind; anything else gets an inline fragment.
_SIBLING_TAGS = ("li", "p")


def _preview(text: str) -> str:
    return f'"{text[:PREVIEW_LENGTH]}..."'


def apply_changes(
    markup: str,
    instructions: Iterable[Any],
    options: Optional[MatchOptions] = None,
    log: Any = None,
) -> ApplyResult:
    """
    Applies edit instructions to markup, in order, wrapping each change in the
    highlight marker.

    Each instruction sees the document as left by the ones before it, so
    offsets are always relative to the already-patched markup.
    Never raises for a bad instruction: every input gets exactly one outcome.

    Args:
        markup: The HTML document.
        instructions: ReplaceEdit / InsertEdit models or plain mappings
                      ({"find", "replace"} or {"anchor", "content"}).
        options: Matching tunables; defaults to MatchOptions().
        log: structlog-compatible logger receiving diagnostics (defaults to the module logger).
    """
    options = options or MatchOptions()
    log = log or logger

    current = markup
    outcomes: List[ApplyOutcome] = []

    for idx, raw in enumerate(instructions):
        edit = coerce_instruction(raw)
        edit_log = log.bind(edit_index=idx)
        try:
            current, outcome = _apply_single_edit(current, edit, options, edit_log)
        except Exception as e:
            edit_log.exception("Unexpected error applying change")
            outcome = ApplyOutcome(instruction=edit, status=OutcomeStatus.FAILED, reason=f"internal error: {e}")
        outcomes.append(outcome)

    summary = ApplySummary.from_outcomes(outcomes)

    if summary.applied_count > 0:
        current = inject_highlight_styles(current)

    log.info(
        "Applied changes",
        applied=summary.applied_count,
        failed=summary.failed_count,
        skipped=summary.skipped_count,
        total=summary.total_count,
    )
    return ApplyResult(markup=current, summary=summary, outcomes=outcomes)


def _apply_single_edit(
    markup: str, edit: EditInstruction, options: MatchOptions, log: Any
) -> Tuple[str, ApplyOutcome]:
    if isinstance(edit, ReplaceEdit):
        return _apply_replace(markup, edit, options, log)
    if isinstance(edit, InsertEdit):
        return _apply_insert(markup, edit, options, log)

    reason = SKIPPED_REASON
    if isinstance(edit, UnrecognizedEdit) and edit.error:
        reason = f"invalid instruction: {edit.error}"
    log.warning("Skipping change", reason=reason)
    return markup, ApplyOutcome(instruction=edit, status=OutcomeStatus.SKIPPED, reason=reason)


def _failed(edit: EditInstruction, reason: str, log: Any, **extra) -> ApplyOutcome:
    log.warning("Change not applied", reason=reason)
    return ApplyOutcome(instruction=edit, status=OutcomeStatus.FAILED, reason=reason, **extra)


def _apply_replace(markup: str, edit: ReplaceEdit, options: MatchOptions, log: Any) -> Tuple[str, ApplyOutcome]:
    position = locate(markup, edit.find, options)
    if not position.found:
        return markup, _failed(edit, f"text not found: {_preview(edit.find)}", log)

    if position.strategy == MatchStrategy.FUZZY and position.confidence < options.min_confidence:
        return markup, _failed(
            edit,
            f"fuzzy match below confidence threshold ({position.confidence:.2f})",
            log,
            strategy=position.strategy,
            confidence=position.confidence,
        )

    # Replacing "Text</b>" alone would leave "<b>" behind.
    position = expand_to_balanced_tags(markup, position)

    log.info(
        "Change applied",
        strategy=position.strategy.value,
        start=position.start,
        length=position.length,
        matched=markup[position.start : position.start + min(position.length, PREVIEW_LENGTH)],
    )

    patched = markup[: position.start] + wrap_highlight(edit.replace) + markup[position.end :]
    return patched, ApplyOutcome(
        instruction=edit,
        status=OutcomeStatus.APPLIED,
        strategy=position.strategy,
        confidence=position.confidence,
        match_start=position.start,
        match_length=position.length,
    )


def _apply_insert(markup: str, edit: InsertEdit, options: MatchOptions, log: Any) -> Tuple[str, ApplyOutcome]:
    position = locate(markup, edit.anchor, options, allow_fuzzy=False)
    if not position.found:
        return markup, _failed(edit, f"anchor not found: {_preview(edit.anchor)}", log)

    after_anchor = markup[position.end : position.end + options.boundary_scan_limit]
    boundary = _BOUNDARY_PATTERN.match(after_anchor)
    if not boundary:
        return markup, _failed(edit, "could not find element boundary", log, strategy=position.strategy)

    tag_name = boundary.group(2).lower()
    highlighted = wrap_highlight(edit.content)
    if tag_name in _SIBLING_TAGS:
        new_element = f"\n<{tag_name}>{highlighted}</{tag_name}>"
    else:
        new_element = f", {highlighted}"

    insert_at = position.end + boundary.end(1)

    log.info("Change inserted", strategy=position.strategy.value, after=tag_name, offset=insert_at)

    patched = markup[:insert_at] + new_element + markup[insert_at:]
    return patched, ApplyOutcome(
        instruction=edit,
        status=OutcomeStatus.APPLIED,
        strategy=position.strategy,
        confidence=position.confidence,
        match_start=position.start,
        match_length=position.length,
    )
