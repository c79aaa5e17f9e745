"""
The highlight marker convention shared by the engine, exports and print.

A change is marked by wrapping it in <span class="cv-change-highlight">.
Anything that needs to show, hide or remove changes matches on that exact
class name.
"""

import re

import structlog

logger = structlog.get_logger(__name__)

HIGHLIGHT_CLASS = "cv-change-highlight"
HIGHLIGHT_OPEN = f'<span class="{HIGHLIGHT_CLASS}">'
HIGHLIGHT_CLOSE = "</span>"

HIGHLIGHT_STYLE = f"""
<style>
/* CV change highlight */
.{HIGHLIGHT_CLASS} {{
    background: rgba(213, 143, 124, 0.25);
    border-bottom: 2px solid #D58F7C;
    padding: 0 2px;
    transition: background 0.3s ease;
}}
@media print {{
    .{HIGHLIGHT_CLASS} {{
        background: none !important;
        border-bottom: none !important;
    }}
}}
</style>"""

_MARKER_OPEN = re.compile(rf'<span class="{HIGHLIGHT_CLASS}">', re.IGNORECASE)
_SPAN_TAG = re.compile(r"<span\b[^>]*>|</span\s*>", re.IGNORECASE)


def wrap_highlight(text: str) -> str:
    return f"{HIGHLIGHT_OPEN}{text}{HIGHLIGHT_CLOSE}"


def has_highlights(markup: str) -> bool:
    return HIGHLIGHT_CLASS in markup


def _matching_close(markup: str, content_start: int) -> int:
    """Offset of the </span> closing the span whose content begins at content_start, or -1."""
    depth = 1
    for tag in _SPAN_TAG.finditer(markup, content_start):
        if tag.group(0).startswith("</"):
            depth -= 1
            if depth == 0:
                return tag.start()
        else:
            depth += 1
    return -1


def strip_highlights(markup: str) -> str:
    """
    Unwraps every highlight span, keeping its content.
    Other spans, including ones nested inside a highlight, are left alone.
    A marker without a matching </span> is left in place.
    """
    result = markup
    search_from = 0

    while True:
        opener = _MARKER_OPEN.search(result, search_from)
        if not opener:
            break

        close = _matching_close(result, opener.end())
        if close == -1:
            search_from = opener.end()
            continue

        close_end = _SPAN_TAG.match(result, close).end()
        result = result[: opener.start()] + result[opener.end() : close] + result[close_end:]
        # Content moved left to where the marker was; rescan it for nested markers.
        search_from = opener.start()

    return result


def inject_highlight_styles(markup: str) -> str:
    """
    Adds HIGHLIGHT_STYLE before </head>, else before <body, else at the start.
    No-op when the stylesheet selector is already present.
    """
    if f".{HIGHLIGHT_CLASS}" in markup:
        return markup

    if "</head>" in markup:
        where = "head"
        result = markup.replace("</head>", HIGHLIGHT_STYLE + "</head>", 1)
    elif "<body" in markup:
        where = "body"
        result = markup.replace("<body", HIGHLIGHT_STYLE + "<body", 1)
    else:
        where = "start"
        result = HIGHLIGHT_STYLE + markup

    logger.debug("Injected highlight styles", where=where)
    return result
