import re
from dataclasses import replace
from typing import List

import structlog

from cvpatch.models import MatchPosition

logger = structlog.get_logger(__name__)

VOID_TAGS = frozenset({"br", "hr", "img", "input", "meta", "link"})

_TAG_PATTERN = re.compile(r"</?\w+[^>]*>")
_CLOSING_NAME = re.compile(r"</(\w+)")
_OPENING_NAME = re.compile(r"<(\w+)")


def find_unbalanced_closers(fragment: str) -> List[str]:
    """
    Names of closing tags in fragment whose opener is not also in fragment,
    in the order they appear.
    """
    stack: List[str] = []
    unbalanced: List[str] = []

    for match in _TAG_PATTERN.finditer(fragment):
        tag = match.group(0)
        if tag.startswith("</"):
            name_match = _CLOSING_NAME.match(tag)
            if not name_match:
                continue
            name = name_match.group(1)
            if stack and stack[-1] == name:
                stack.pop()
            else:
                unbalanced.append(name)
        elif not tag.endswith("/>"):
            name_match = _OPENING_NAME.match(tag)
            if name_match and name_match.group(1).lower() not in VOID_TAGS:
                stack.append(name_match.group(1))

    return unbalanced


def expand_to_balanced_tags(markup: str, position: MatchPosition) -> MatchPosition:
    """
    Grows a match leftwards so replacing it cannot orphan a tag.

    e.g. a match of "Title:</b> Description" is widened to
    "<b>Title:</b> Description". Only the first unbalanced closer is repaired.
    If its opener is not found before the match, the span is returned as is.
    """
    start, length = position.start, position.length
    if start < 0 or length <= 0 or start + length > len(markup):
        return position

    unbalanced = find_unbalanced_closers(markup[start : start + length])
    if not unbalanced:
        return position

    name = unbalanced[0]
    opener = re.compile(rf"<{re.escape(name)}(\s[^>]*)?>", re.IGNORECASE)

    last_open = -1
    for match in opener.finditer(markup, 0, start):
        last_open = match.start()

    if last_open == -1:
        logger.debug("No opener found for unbalanced closer", tag=name, start=start)
        return position

    logger.debug("Expanded selection to include opener", tag=name, old_start=start, new_start=last_open)
    return replace(position, start=last_open, length=length + (start - last_open))
