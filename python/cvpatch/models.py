from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator


class MatchStrategy(str, Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"
    FUZZY = "fuzzy"


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class MatchPosition:
    """
    A span over raw markup offsets.
    start == -1 means "not found"; length is meaningless in that case.
    """

    start: int
    length: int
    strategy: Optional[MatchStrategy] = None
    confidence: float = 1.0

    @property
    def found(self) -> bool:
        return self.start != -1

    @property
    def end(self) -> int:
        return self.start + self.length


NOT_FOUND = MatchPosition(start=-1, length=0)


class ReplaceEdit(BaseModel):
    """
    Replace the first occurrence of `find` with `replace`.
    The text generator never sees raw markup, so `find` may only exist
    in the tag-stripped, whitespace-collapsed view of the document.
    """

    model_config = ConfigDict(extra="allow")

    find: str = Field(..., min_length=1, description="Text to locate in the document.")
    replace: str = Field(..., min_length=1, description="Text (or markup) to put in its place.")


class InsertEdit(BaseModel):
    """
    Add `content` as a new sibling of the element that contains `anchor`.
    """

    model_config = ConfigDict(extra="allow")

    anchor: str = Field(..., min_length=1, description="Text identifying the element to insert after.")
    content: str = Field(..., min_length=1, description="Text (or markup) of the new element.")
    position: Literal["after"] = "after"


class UnrecognizedEdit(BaseModel):
    """Input that matched neither instruction shape. Always reported as skipped."""

    raw: Any = None

    _error: Optional[str] = PrivateAttr(default=None)

    @property
    def error(self) -> Optional[str]:
        return self._error


EditInstruction = Union[ReplaceEdit, InsertEdit, UnrecognizedEdit]


def _has_text(data: Mapping, key: str) -> bool:
    value = data.get(key)
    return isinstance(value, str) and bool(value)


def coerce_instruction(raw: Any) -> EditInstruction:
    """
    Turns a raw instruction (model or mapping) into a typed instruction.
    Never raises: anything unusable becomes an UnrecognizedEdit.
    """
    if isinstance(raw, (ReplaceEdit, InsertEdit, UnrecognizedEdit)):
        return raw

    if not isinstance(raw, Mapping):
        return UnrecognizedEdit(raw=raw)

    data = dict(raw)
    try:
        if _has_text(data, "find") and _has_text(data, "replace"):
            return ReplaceEdit.model_validate(data)
        if _has_text(data, "anchor") and _has_text(data, "content"):
            return InsertEdit.model_validate(data)
    except ValidationError as e:
        edit = UnrecognizedEdit(raw=data)
        edit._error = "; ".join(err["msg"] for err in e.errors())
        return edit

    return UnrecognizedEdit(raw=data)


class ApplyOutcome(BaseModel):
    instruction: EditInstruction
    status: OutcomeStatus
    reason: Optional[str] = None
    strategy: Optional[MatchStrategy] = None
    confidence: Optional[float] = None
    match_start: Optional[int] = None
    match_length: Optional[int] = None


class ApplySummary(BaseModel):
    applied_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    total_count: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: List[ApplyOutcome]) -> "ApplySummary":
        return cls(
            applied_count=sum(1 for o in outcomes if o.status == OutcomeStatus.APPLIED),
            failed_count=sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED),
            skipped_count=sum(1 for o in outcomes if o.status == OutcomeStatus.SKIPPED),
            total_count=len(outcomes),
        )


class ApplyResult(BaseModel):
    markup: str
    summary: ApplySummary
    outcomes: List[ApplyOutcome] = Field(default_factory=list)


class MatchOptions(BaseModel):
    """
    Tunables for the locator and the insert boundary scan.
    Defaults reproduce the behaviour the tailoring flow was built around.
    """

    model_config = ConfigDict(frozen=True)

    enable_fuzzy: bool = Field(True, description="Fall back to prefix-anchored fuzzy matching for replacements.")
    fuzzy_prefix_lengths: Tuple[int, ...] = Field(
        (60, 40, 30, 20),
        description="Prefix lengths tried by the fuzzy strategy, longest first.",
    )
    fuzzy_length_multiplier: float = Field(
        1.5,
        ge=1.0,
        description="Inflation of the search length to allow for extra whitespace in raw markup.",
    )
    fuzzy_tail_words: int = Field(3, ge=1, description="Trailing words used to find the end of a fuzzy span.")
    min_confidence: float = Field(
        0.0,
        ge=0.0,
        le=1.0,
        description="Fuzzy matches scoring below this similarity are reported as failed.",
    )
    boundary_scan_limit: int = Field(
        2000,
        gt=0,
        description="How far past an insert anchor to look for the enclosing element's closing tag.",
    )

    @field_validator("fuzzy_prefix_lengths")
    @classmethod
    def _check_prefix_lengths(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        if any(n <= 0 for n in value):
            raise ValueError("prefix lengths must be positive")
        if any(a <= b for a, b in zip(value, value[1:])):
            raise ValueError("prefix lengths must be strictly descending")
        return value
