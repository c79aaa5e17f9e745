import argparse
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from cvpatch import __version__
from cvpatch.ingest import InstructionParseError, load_instructions
from cvpatch.markup import has_highlights, strip_highlights
from cvpatch.models import MatchOptions, OutcomeStatus
from cvpatch.redline.engine import apply_changes
from cvpatch.utils.log import configure_logging


def _read_html(path: Path) -> str:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _write_or_print(text: str, output: Path | None):
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"✅ Saved to {output}", file=sys.stderr)
    else:
        sys.stdout.write(text)


def handle_apply(args):
    html = _read_html(args.html)

    if not args.changes.exists():
        print(f"Error: Changes file not found: {args.changes}", file=sys.stderr)
        sys.exit(1)
    try:
        instructions = load_instructions(args.changes)
    except InstructionParseError as e:
        print(f"Error parsing changes: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        options = MatchOptions(enable_fuzzy=not args.no_fuzzy, min_confidence=args.min_confidence)
    except ValidationError as e:
        print(f"Error: invalid matching options: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Applying {len(instructions)} changes...", file=sys.stderr)
    result = apply_changes(html, instructions, options)

    output_path = args.output or args.html.with_name(f"{args.html.stem}_tailored{args.html.suffix}")
    _write_or_print(result.markup, output_path)

    if args.json:
        print(json.dumps([o.model_dump(mode="json") for o in result.outcomes], indent=2))
    else:
        for idx, outcome in enumerate(result.outcomes):
            if outcome.status != OutcomeStatus.APPLIED:
                print(f"[{outcome.status.value}] #{idx}: {outcome.reason}", file=sys.stderr)

    s = result.summary
    print(f"Stats: {s.applied_count} applied, {s.failed_count} failed, {s.skipped_count} skipped.", file=sys.stderr)
    if s.failed_count > 0:
        sys.exit(1)


def handle_strip(args):
    html = _read_html(args.html)
    _write_or_print(strip_highlights(html), args.output)


def handle_check(args):
    html = _read_html(args.html)
    if has_highlights(html):
        print("highlights: yes")
    else:
        print("highlights: no")
        sys.exit(1)


def main(argv=None):
    parser = argparse.ArgumentParser(prog="cvpatch", description="Apply highlighted edits to CV HTML")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging on stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_apply = subparsers.add_parser("apply", help="Apply a JSON list of changes to an HTML file")
    p_apply.add_argument("html", type=Path, help="Input HTML file")
    p_apply.add_argument("changes", type=Path, help="JSON changes file (list, or object with 'changes'/'items')")
    p_apply.add_argument("-o", "--output", type=Path, help="Output HTML path (default: <input>_tailored.html)")
    p_apply.add_argument("--no-fuzzy", action="store_true", help="Disable fuzzy matching for replacements")
    p_apply.add_argument(
        "--min-confidence",
        type=float,
        default=0.0,
        help="Reject fuzzy matches scoring below this similarity (0..1, default: 0)",
    )
    p_apply.add_argument("--json", action="store_true", help="Print per-change outcomes as JSON")
    p_apply.set_defaults(func=handle_apply)

    p_strip = subparsers.add_parser("strip", help="Remove change highlights (for export)")
    p_strip.add_argument("html", type=Path, help="Input HTML file")
    p_strip.add_argument("-o", "--output", type=Path, help="Output HTML path (default: stdout)")
    p_strip.set_defaults(func=handle_strip)

    p_check = subparsers.add_parser("check", help="Report whether an HTML file contains change highlights")
    p_check.add_argument("html", type=Path, help="Input HTML file")
    p_check.set_defaults(func=handle_check)

    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
