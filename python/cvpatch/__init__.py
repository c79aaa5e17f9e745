from importlib.metadata import PackageNotFoundError, version

from cvpatch.ingest import parse_instructions
from cvpatch.markup import has_highlights, strip_highlights
from cvpatch.models import ApplyOutcome, ApplyResult, ApplySummary, InsertEdit, MatchOptions, ReplaceEdit
from cvpatch.redline.engine import apply_changes

try:
    __version__ = version("cvpatch")
except PackageNotFoundError:
    # Running from a source checkout without an install.
    __version__ = "0.0.0-dev"

__all__ = [
    "apply_changes",
    "strip_highlights",
    "has_highlights",
    "parse_instructions",
    "ReplaceEdit",
    "InsertEdit",
    "MatchOptions",
    "ApplyOutcome",
    "ApplyResult",
    "ApplySummary",
    "__version__",
]
