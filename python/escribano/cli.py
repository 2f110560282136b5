import argparse
import getpass
import json
import sys
from pathlib import Path
from typing import Any, List

from escribano import __version__
from escribano.config import configure_logging, get_settings
from escribano.diff import diff, summarize
from escribano.markup import render_markup
from escribano.models import ReviewAction, ReviewActionType
from escribano.nodes import node_to_json
from escribano.pipeline import run_batch
from escribano.redline.content import text_to_document
from escribano.redline.mapper import project
from escribano.redline.tracking import accept_all, accept_group, apply_review_actions, reject_all, reject_group
from escribano.store import StoredDocument


def _load_document(path: Path) -> StoredDocument:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            try:
                return StoredDocument.from_json(path.stem, json.load(f))
            except (ValueError, KeyError) as e:
                print(f"Error: {path} is not a document: {e}", file=sys.stderr)
                sys.exit(1)
        return StoredDocument(doc_id=path.stem, version=0, content=text_to_document(f.read()))


def _save_document(stored: StoredDocument, path: Path):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(stored.to_json(), f, ensure_ascii=False, indent=2)


def _load_edits_from_json(path: Path) -> List[Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error parsing JSON edits: {e}", file=sys.stderr)
        sys.exit(1)
    if isinstance(data, dict):
        data = data.get("edits") or data.get("operations") or []
    return list(data)


def _output_path(args: argparse.Namespace, suffix: str) -> Path:
    if args.output:
        return args.output
    if args.input.suffix.lower() == ".json" and args.input.stem.endswith(suffix):
        return args.input
    return args.input.with_name(f"{args.input.stem}{suffix}.json")


def handle_extract(args):
    stored = _load_document(args.input)
    if args.raw:
        text = project(stored.content).text
    else:
        text = render_markup(stored.content, clean_view=args.clean)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"Extracted text to {args.output}", file=sys.stderr)
    else:
        print(text)


def handle_apply(args):
    stored = _load_document(args.input)
    edits = _load_edits_from_json(args.edits)
    print(f"Applying {len(edits)} edits...", file=sys.stderr)

    updated, result = run_batch(stored, edits, label=args.label or args.author)
    output_path = _output_path(args, "_redlined")
    _save_document(updated, output_path)

    print(f"✅ Saved to {output_path}", file=sys.stderr)
    print(f"Stats: {result.message}.", file=sys.stderr)
    for outcome in result.outcomes:
        if not outcome.applied:
            print(f"  [skipped #{outcome.index} {outcome.type}] {outcome.reason}: {outcome.detail}", file=sys.stderr)
    if result.applied < result.total:
        sys.exit(1)


def handle_diff(args):
    old = _load_document(args.original).content
    new = _load_document(args.modified).content
    changes = summarize(diff(old, new))

    if args.json:
        print(json.dumps(changes, indent=2, ensure_ascii=False))
        return
    print(f"Found {len(changes)} changes:", file=sys.stderr)
    for change in changes:
        symbol = {"insert": "+", "delete": "-", "move": ">"}[change["op"]]
        print(f"[{symbol}] {change['path']}: {change['text']}")


def handle_markup(args):
    stored = _load_document(args.input)
    print(render_markup(stored.content, clean_view=False, include_ids=not args.no_ids))


def _handle_review(args, accept: bool):
    stored = _load_document(args.input)
    content = stored.content
    groups = stored.change_groups
    if args.group:
        content, groups = (accept_group if accept else reject_group)(content, groups, args.group)
    elif args.change:
        action = ReviewActionType.ACCEPT if accept else ReviewActionType.REJECT
        content, applied, skipped = apply_review_actions(
            content, [ReviewAction(action=action, target_id=cid) for cid in args.change]
        )
        print(f"Stats: {applied} applied, {skipped} skipped.", file=sys.stderr)
    else:
        content = accept_all(content) if accept else reject_all(content)
        groups = []

    output_path = _output_path(args, "_reviewed")
    _save_document(StoredDocument(stored.doc_id, stored.version, content, list(groups)), output_path)
    print(f"✅ Saved to {output_path}", file=sys.stderr)


def handle_accept(args):
    _handle_review(args, accept=True)


def handle_reject(args):
    _handle_review(args, accept=False)


def handle_export(args):
    """Writes the bare document tree (no version, no change groups)."""
    stored = _load_document(args.input)
    print(json.dumps(node_to_json(stored.content), indent=2, ensure_ascii=False))


def main():
    configure_logging()
    parser = argparse.ArgumentParser(prog="escribano", description="Escribano: tracked-change editing for legal briefs")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_extract = subparsers.add_parser("extract", help="Print a document as Markdown (or its raw projected text)")
    p_extract.add_argument("input", type=Path, help="Document JSON or plain text file")
    p_extract.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")
    p_extract.add_argument("--raw", action="store_true", help="Print the plain projected text used for matching")
    p_extract.add_argument("--clean", action="store_true", help="Show the text as if all changes were accepted")
    p_extract.set_defaults(func=handle_extract)

    try:
        default_author = getpass.getuser()
    except Exception:
        default_author = get_settings().default_author

    p_apply = subparsers.add_parser("apply", help="Apply a JSON list of edit operations as tracked changes")
    p_apply.add_argument("input", type=Path, help="Document JSON or plain text file")
    p_apply.add_argument("edits", type=Path, help="JSON edits file")
    p_apply.add_argument("-o", "--output", type=Path, help="Output document path")
    p_apply.add_argument("--label", type=str, help="Label for the change group")
    p_apply.add_argument(
        "--author",
        type=str,
        default=default_author,
        help=f"Author recorded as the change group label when --label is absent (default: '{default_author}')",
    )
    p_apply.set_defaults(func=handle_apply)

    p_diff = subparsers.add_parser("diff", help="Compare two documents structurally")
    p_diff.add_argument("original", type=Path, help="Original document")
    p_diff.add_argument("modified", type=Path, help="Modified document")
    p_diff.add_argument("--json", action="store_true", help="Output raw JSON changes")
    p_diff.set_defaults(func=handle_diff)

    p_markup = subparsers.add_parser("markup", help="Print pending changes as CriticMarkup")
    p_markup.add_argument("input", type=Path, help="Document JSON")
    p_markup.add_argument("--no-ids", action="store_true", help="Omit [Chg:id] tags")
    p_markup.set_defaults(func=handle_markup)

    for name, handler, verb in (("accept", handle_accept, "Accept"), ("reject", handle_reject, "Reject")):
        p_review = subparsers.add_parser(name, help=f"{verb} pending changes (all by default)")
        p_review.add_argument("input", type=Path, help="Document JSON")
        p_review.add_argument("-o", "--output", type=Path, help="Output document path")
        target = p_review.add_mutually_exclusive_group()
        target.add_argument("--group", type=str, help="Change group id")
        target.add_argument("--change", type=str, action="append", help="Change id (repeatable)")
        p_review.set_defaults(func=handler)

    p_export = subparsers.add_parser("export", help="Print the bare document tree JSON")
    p_export.add_argument("input", type=Path, help="Document JSON or plain text file")
    p_export.set_defaults(func=handle_export)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
