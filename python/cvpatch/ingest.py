"""
Reads edit instructions produced by a text generator.

Responses come back as JSON, sometimes wrapped in a ```json fence, either as
a bare list or as an object holding the list under "changes" (tailoring)
or "items" (feedback, where the user approves entries one by one).
"""

import json
import re
from pathlib import Path
from typing import Any, List, Union

import structlog

from cvpatch.models import EditInstruction, coerce_instruction

logger = structlog.get_logger(__name__)

_FENCE_START = re.compile(r"^\s*```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE_END = re.compile(r"\n?```\s*$")


class InstructionParseError(ValueError):
    """Raised when an instruction payload is not usable JSON."""


def strip_code_fences(text: str) -> str:
    return _FENCE_END.sub("", _FENCE_START.sub("", text)).strip()


def _extract_entries(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data

    if isinstance(data, dict):
        if isinstance(data.get("changes"), list):
            return data["changes"]
        if isinstance(data.get("items"), list):
            items = data["items"]
            # Feedback items are only applied once the user approves them.
            if any(isinstance(i, dict) and "approved" in i for i in items):
                return [i for i in items if isinstance(i, dict) and i.get("approved")]
            return items

    raise InstructionParseError(
        f"Expected a list of changes or an object with 'changes'/'items', got {type(data).__name__}"
    )


def parse_instructions(text: str) -> List[EditInstruction]:
    """
    Parses a JSON payload into typed instructions.
    Entries of unknown shape are kept as UnrecognizedEdit so the engine
    can report them as skipped.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise InstructionParseError(f"Invalid JSON in instructions: {e}") from e

    entries = _extract_entries(data)
    instructions = [coerce_instruction(entry) for entry in entries]
    logger.debug("Parsed instructions", count=len(instructions))
    return instructions


def load_instructions(path: Union[str, Path]) -> List[EditInstruction]:
    with open(path, "r", encoding="utf-8") as f:
        return parse_instructions(f.read())
