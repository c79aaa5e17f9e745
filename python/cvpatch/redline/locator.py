"""
Locates edit targets inside raw markup.

Edit instructions are written against the text a reader sees, not against
the markup, so a target is tried in three ways, first success wins:

1. Exact      - verbatim substring of the raw markup.
2. Normalized - substring of the logical view (tags dropped, whitespace
                collapsed, smart quotes flattened), mapped back to raw offsets.
3. Fuzzy      - a shrinking prefix of the target is matched as in (2), and the
                end of the span is estimated from the target's last words.
"""

from typing import Optional

import structlog
from diff_match_patch import diff_match_patch

from cvpatch.models import NOT_FOUND, MatchOptions, MatchPosition, MatchStrategy
from cvpatch.redline.mapper import LogicalView, build_logical_view, normalize_for_search, normalize_quotes

logger = structlog.get_logger(__name__)

# Raw characters allowed past the estimated length when the tail words cannot be found.
FUZZY_FALLBACK_SLACK = 100

_DEFAULT_OPTIONS = MatchOptions()


def locate(
    markup: str,
    search_text: str,
    options: Optional[MatchOptions] = None,
    allow_fuzzy: bool = True,
) -> MatchPosition:
    """
    Returns the raw span of search_text in markup, or NOT_FOUND.
    Absence is a normal outcome; this never raises for it.
    """
    options = options or _DEFAULT_OPTIONS
    if not search_text or not search_text.strip():
        return NOT_FOUND

    # 1. Exact
    idx = markup.find(search_text)
    if idx != -1:
        return MatchPosition(start=idx, length=len(search_text), strategy=MatchStrategy.EXACT)

    # 2. Normalized
    target = normalize_for_search(search_text)
    view = build_logical_view(markup)
    position = _search_view(view, target)
    if position.found:
        return position

    # 3. Fuzzy
    if allow_fuzzy and options.enable_fuzzy:
        return _find_fuzzy(markup, view, target, options)

    return NOT_FOUND


def _search_view(view: LogicalView, target: str) -> MatchPosition:
    target = target.strip()
    if not target:
        return NOT_FOUND

    logical_idx = normalize_quotes(view.text).find(target)
    if logical_idx == -1:
        return NOT_FOUND

    start, length = view.to_raw(logical_idx, len(target))
    if start == -1:
        return NOT_FOUND
    return MatchPosition(start=start, length=length, strategy=MatchStrategy.NORMALIZED)


def _find_fuzzy(markup: str, view: LogicalView, target: str, options: MatchOptions) -> MatchPosition:
    for prefix_len in options.fuzzy_prefix_lengths:
        if len(target) < prefix_len:
            continue

        anchor = _search_view(view, target[:prefix_len])
        if not anchor.found:
            continue

        estimated_length = int(len(target) * options.fuzzy_length_multiplier)
        end = anchor.end
        remaining = target[prefix_len:].strip()

        if remaining:
            tail = " ".join(remaining.split()[-options.fuzzy_tail_words :])
            tail_end = _find_tail_end(markup, anchor.end, estimated_length, tail)
            if tail_end != -1:
                end = tail_end
            else:
                end = anchor.start + min(len(target) + FUZZY_FALLBACK_SLACK, estimated_length)

        end = _pull_back_out_of_tag(markup, anchor.start, min(end, len(markup)))
        confidence = _similarity(build_logical_view(markup[anchor.start : end]).text.strip(), target)

        logger.debug(
            "Fuzzy match",
            prefix_len=prefix_len,
            start=anchor.start,
            length=end - anchor.start,
            confidence=round(confidence, 3),
        )
        return MatchPosition(
            start=anchor.start,
            length=end - anchor.start,
            strategy=MatchStrategy.FUZZY,
            confidence=confidence,
        )

    return NOT_FOUND


def _find_tail_end(markup: str, window_start: int, window_length: int, tail: str) -> int:
    """
    Searches the logical view of markup[window_start : window_start + window_length]
    for tail. Returns the raw (exclusive) end offset of the tail, or -1.
    """
    window = build_logical_view(markup[window_start : window_start + window_length])
    idx = normalize_quotes(window.text).find(tail)
    if idx == -1:
        return -1
    start, length = window.to_raw(idx, len(tail))
    if start == -1:
        return -1
    return window_start + start + length


def _pull_back_out_of_tag(markup: str, start: int, end: int) -> int:
    # An estimated end can land inside "<...>"; cut before the tag instead.
    last_open = markup.rfind("<", start, end)
    if last_open > markup.rfind(">", start, end):
        return last_open
    return end


def _similarity(found: str, target: str) -> float:
    """1.0 for identical strings, 0.0 for nothing in common (character Levenshtein)."""
    longest = max(len(found), len(target))
    if longest == 0:
        return 1.0
    dmp = diff_match_patch()
    diffs = dmp.diff_main(found, target, False)
    return max(0.0, 1.0 - dmp.diff_levenshtein(diffs) / longest)
