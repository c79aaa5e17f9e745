import re
from dataclasses import dataclass, field
from typing import List, Tuple

_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass
class LogicalView:
    """
    Tag-free, whitespace-collapsed projection of a markup string.

    position_map[i] is the raw offset of text[i]. A collapsed whitespace run
    maps to the first whitespace character of the run.
    """

    text: str = ""
    position_map: List[int] = field(default_factory=list)

    def to_raw(self, logical_start: int, logical_length: int) -> Tuple[int, int]:
        """
        Convert (logical_start, logical_length) -> (raw_start, raw_length).
        Returns (-1, 0) when the span is empty or falls outside the view.
        """
        if logical_length <= 0 or logical_start < 0:
            return -1, 0
        last = logical_start + logical_length - 1
        if last >= len(self.position_map):
            return -1, 0
        raw_start = self.position_map[logical_start]
        raw_end = self.position_map[last] + 1  # exclusive
        return raw_start, raw_end - raw_start


def build_logical_view(markup: str) -> LogicalView:
    """
    Walks the markup once. Everything from '<' to the next '>' is tag syntax
    and is dropped; quoted attribute values are not tracked, so a '>' inside
    an attribute ends the tag early.
    """
    chars: List[str] = []
    pos_map: List[int] = []
    in_tag = False
    last_was_space = False

    for i, ch in enumerate(markup):
        if ch == "<":
            in_tag = True
            continue
        if ch == ">":
            in_tag = False
            continue
        if in_tag:
            continue

        if ch.isspace():
            if not last_was_space:
                chars.append(" ")
                pos_map.append(i)
                last_was_space = True
        else:
            chars.append(ch)
            pos_map.append(i)
            last_was_space = False

    return LogicalView(text="".join(chars), position_map=pos_map)


def normalize_quotes(text: str) -> str:
    """Replace smart/curly quotes with ASCII equivalents. Length preserving."""
    return text.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")


def normalize_for_search(text: str) -> str:
    return normalize_quotes(_WHITESPACE_RUN.sub(" ", text)).strip()
