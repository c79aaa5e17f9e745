import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from mcp.server.fastmcp import FastMCP

from cvpatch.markup import has_highlights, strip_highlights
from cvpatch.models import MatchOptions, OutcomeStatus
from cvpatch.redline.engine import apply_changes
from cvpatch.utils.log import configure_logging

# MCP talks JSON-RPC over stdio: logs must never reach stdout.
logging.basicConfig(stream=sys.stderr, level=logging.INFO, force=True)
configure_logging(json_output=True)

logger = structlog.get_logger(__name__)

mcp = FastMCP("CV Change Applier")


def _read_text(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(p, "r", encoding="utf-8") as f:
        return f.read()


def _save_text(text: str, path: str):
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


@mcp.tool()
def apply_html_changes(
    html_path: str,
    changes: List[Dict[str, Any]],
    output_path: Optional[str] = None,
    min_confidence: float = 0.0,
) -> str:
    """
    Applies edits to a CV HTML file, highlighting each change.

    Each change is either a replacement {"find": ..., "replace": ...} or an
    insertion {"anchor": ..., "content": ...} that adds a new list item or
    paragraph after the element containing the anchor.

    Matching Strategy:
    - `find` may be copied from the visible text: tags and extra whitespace in the
      HTML are ignored when an exact match fails.
    - Slightly reworded `find` text is matched by its opening words (fuzzy).
      Raise `min_confidence` (0..1) to reject loose fuzzy matches.

    Args:
        html_path: Absolute path to the HTML file.
        changes: Ordered list of changes. Later changes see earlier results.
        output_path: Optional. Defaults to <name>_tailored.html next to the input.
        min_confidence: Minimum similarity for fuzzy matches.
    """
    try:
        html = _read_text(html_path)
        result = apply_changes(html, changes, MatchOptions(min_confidence=min_confidence))

        if not output_path:
            p = Path(html_path)
            if p.stem.endswith("_tailored"):
                output_path = str(p)
            else:
                output_path = str(p.parent / f"{p.stem}_tailored{p.suffix}")
        _save_text(result.markup, output_path)

        lines = [
            f"Applied {result.summary.applied_count} changes. "
            f"Failed {result.summary.failed_count}. Skipped {result.summary.skipped_count}. "
            f"Saved to: {output_path}"
        ]
        for idx, outcome in enumerate(result.outcomes):
            if outcome.status != OutcomeStatus.APPLIED:
                lines.append(f"- #{idx} {outcome.status.value}: {outcome.reason}")
        return "\n".join(lines)

    except Exception as e:
        logger.exception("apply_html_changes failed", html_path=html_path)
        return f"Error applying changes: {str(e)}"


@mcp.tool()
def strip_html_highlights(html_path: str, output_path: Optional[str] = None) -> str:
    """
    Removes change highlights from an HTML file, e.g. before export.
    Writes in place unless output_path is given.
    """
    try:
        html = _read_text(html_path)
        _save_text(strip_highlights(html), output_path or html_path)
        return f"Highlights removed. Saved to: {output_path or html_path}"
    except Exception as e:
        return f"Error stripping highlights: {str(e)}"


@mcp.tool()
def check_html_highlights(html_path: str) -> str:
    """Reports whether an HTML file still contains change highlights."""
    try:
        return "yes" if has_highlights(_read_text(html_path)) else "no"
    except Exception as e:
        return f"Error reading file: {str(e)}"


def main():
    mcp.run()


if __name__ == "__main__":
    main()
