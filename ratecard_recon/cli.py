from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from ratecard_recon import __version__ as TOOL_VERSION
from ratecard_recon.config import DEFAULT_CONFIG_NAME, Settings, load_settings, starter_config
from ratecard_recon.contracts import COMMIT, LISTING, PREVIEW, import_run_summary, with_contract
from ratecard_recon.errors import ArchiveConflictError, UploadFormatError
from ratecard_recon.importer import RateCardImporter, rate_card_status, summarize_store
from ratecard_recon.models import CommitMode, CommitResult, ParseResult
from ratecard_recon.overlap import describe_commission, format_date_range, format_label
from ratecard_recon.store import InMemoryRateCardStore, JsonFileRateCardStore
from ratecard_recon.template import TEMPLATE_TYPES, build_template

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_UNREADABLE_UPLOAD = 2
EXIT_ANALYSIS_ISSUES = 3
EXIT_IMPORT_SKIPPED = 4
EXIT_ARCHIVE_CONFLICT = 5

PINNED_TIMESTAMP = "1970-01-01T00:00:00Z"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class RateCardArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def timestamp_token() -> str:
    override = os.environ.get("RATECARD_RECON_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload) + "\n")


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def pin_timestamps(value: Any) -> Any:
    """Replace wall-clock fields when the output stamp is pinned, so runs diff cleanly."""
    if not os.environ.get("RATECARD_RECON_OUTPUT_STAMP"):
        return value
    if isinstance(value, dict):
        return {
            key: PINNED_TIMESTAMP if key in {"generated_at", "uploaded_at"} else pin_timestamps(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [pin_timestamps(item) for item in value]
    return value


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.WARNING
    if getattr(args, "verbose", False):
        level = logging.INFO
    if getattr(args, "quiet", False):
        level = logging.ERROR
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def resolve_settings(args: argparse.Namespace) -> Settings:
    try:
        return load_settings(getattr(args, "config", None))
    except (OSError, ValueError) as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc


def open_importer(args: argparse.Namespace) -> RateCardImporter:
    settings = resolve_settings(args)
    store_path = Path(getattr(args, "store", None) or settings.store_path)
    return RateCardImporter(JsonFileRateCardStore(store_path), settings=settings)


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ArchiveConflictError):
        return EXIT_ARCHIVE_CONFLICT
    if isinstance(exc, (UploadFormatError, UnicodeDecodeError, ImportError)):
        return EXIT_UNREADABLE_UPLOAD
    return EXIT_COMMAND_ERROR


# ══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_preview_text(preview: ParseResult) -> str:
    summary = preview.summary
    lines = [
        "ratecard-recon analyze",
        f"File: {preview.file_name or '[unknown]'}",
        f"Analysis: {preview.analysis_id}",
        (
            f"Rows: {summary['total']} (valid {summary['valid']}, similar {summary['similar']}, "
            f"duplicate {summary['duplicate']}, error {summary['error']})"
        ),
    ]
    lines.extend(f"Warning: {warning}" for warning in preview.warnings)
    for row in preview.rows:
        lines.append(f"Row {row.row_number} [{row.status}] {row.message}")
        if row.tooltip:
            lines.append(f"    {row.tooltip}")
        for suggestion in row.suggestions:
            lines.append(f"    Suggestion: {suggestion.reason}")
    return "\n".join(lines) + "\n"


def render_commit_text(result: CommitResult, *, dry_run: bool) -> str:
    summary = result.summary
    heading = "ratecard-recon import (dry run)" if dry_run else "ratecard-recon import"
    lines = [heading, f"Inserted: {summary['inserted']}", f"Skipped: {summary['skipped']}"]
    for outcome in result.results:
        row = outcome.row_number if outcome.row_number is not None else outcome.row_id
        detail = outcome.id if outcome.status == "imported" else outcome.message
        lines.append(f"Row {row} [{outcome.status}] {detail or ''}".rstrip())
    return "\n".join(lines) + "\n"


def render_listing_text(listing: dict[str, Any]) -> str:
    metrics = listing["metrics"]
    lines = [
        "ratecard-recon list",
        (
            f"Cards: {metrics['total']} (active {metrics['active']}, upcoming {metrics['upcoming']}, "
            f"expired {metrics['expired']}, archived {metrics['archived']})"
        ),
        f"Average flat commission: {metrics['avg_flat_commission']}% over {metrics['flat_count']} card(s)",
    ]
    for item in listing["rate_cards"]:
        lines.append(f"{item['id']}  {item['label']}  {item['date_range']}  [{item['status']}]  {item['summary']}")
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════════
# PARSER
# ══════════════════════════════════════════════════════════════════════════════

EXPLAIN_RULES = {
    "valid": {
        "description": "The row is structurally sound and does not overlap any active rate card.",
        "evidence": "No validation issue and no same platform/category card whose dates intersect.",
        "importable": True,
        "resolution": "Nothing to do; the row is imported by default.",
    },
    "similar": {
        "description": "The row overlaps an existing card for the same platform and category.",
        "evidence": "Date ranges intersect but the window, commission or fees differ.",
        "importable": True,
        "resolution": "Shift the start date past the existing card, or import with --include-similar.",
    },
    "duplicate": {
        "description": "The row repeats an existing card exactly.",
        "evidence": "Same platform, category, date range, commission terms and fee list.",
        "importable": False,
        "resolution": "Remove the row or change its dates, commission or fees.",
    },
    "error": {
        "description": "The row cannot be turned into a valid rate card.",
        "evidence": "A required field is missing, a value does not parse, or a rule such as slab ordering fails.",
        "importable": False,
        "resolution": "Fix the cells named in the message and upload again.",
    },
    "archived_match": {
        "description": "The row overlaps an archived card only.",
        "evidence": "The conflicting card is archived, so it does not take part in reconciliation.",
        "importable": True,
        "resolution": "Nothing to do; restoring the archived card later will be refused while this row is active.",
    },
    "restore_blocked": {
        "description": "An archived card cannot be restored.",
        "evidence": "Another card, archived or not, duplicates or overlaps the card being restored.",
        "importable": False,
        "resolution": "Adjust the dates of one of the cards, or delete the other card first.",
    },
}


def add_common_flags(parser: argparse.ArgumentParser, *, store: bool = True) -> None:
    if store:
        parser.add_argument("--store", help="Rate card store path (JSON)")
    parser.add_argument("--config", help=f"Config file path (default: ./{DEFAULT_CONFIG_NAME} when present)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="More human logs")


def build_parser() -> argparse.ArgumentParser:
    parser = RateCardArgumentParser(prog="ratecard-recon", description="Rate card ingestion and overlap reconciliation.")
    subparsers = parser.add_subparsers(dest="command", parser_class=RateCardArgumentParser, required=True)

    analyze = subparsers.add_parser("analyze", help="Preview an upload without importing it.")
    analyze.add_argument("input", help="Upload file path")
    analyze.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    analyze.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    analyze.add_argument("--output", help="Write the preview JSON to this path")
    add_common_flags(analyze)

    import_ = subparsers.add_parser("import", help="Analyze an upload and import the eligible rows.")
    import_.add_argument("input", help="Upload file path")
    import_.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    import_.add_argument("--include-similar", action="store_true", help="Also import rows that overlap existing cards")
    import_.add_argument(
        "--rows", nargs="+", type=int, metavar="ROW",
        help="Only import the rows starting on these file line numbers",
    )
    import_.add_argument("--dry-run", action="store_true", help="Report what would be imported without writing")
    import_.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    import_.add_argument("--output", help="Write the commit JSON to this path")
    add_common_flags(import_)

    template = subparsers.add_parser("template", help="Write a CSV upload template.")
    template.add_argument("type", choices=list(TEMPLATE_TYPES), help="Template type")
    template.add_argument("--output", help="Output path (default: stdout)")

    for name, help_text in (("archive", "Archive a rate card."), ("restore", "Restore an archived rate card."),
                            ("delete", "Delete a rate card.")):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("card_id", help="Rate card id")
        command.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
        add_common_flags(command)

    listing = subparsers.add_parser("list", help="List stored rate cards with their status.")
    listing.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    listing.add_argument("--today", help="Reference date for statuses (YYYY-MM-DD)")
    add_common_flags(listing)

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", parser_class=RateCardArgumentParser, required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_NAME, help="Config output path")

    explain = subparsers.add_parser("explain", help="Explain a row status or rule.")
    explain.add_argument("rule_id", help="Status or rule identifier")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def analyze_input(importer: RateCardImporter, args: argparse.Namespace) -> ParseResult:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    return importer.analyze_file(
        input_path,
        sheet_name=args.sheet_name,
        analysis_id=f"{input_path.stem}-{timestamp_token()}",
    )


def run_analyze(args: argparse.Namespace) -> int:
    try:
        importer = open_importer(args)
        preview = analyze_input(importer, args)
        payload = pin_timestamps(with_contract(PREVIEW, preview.to_dict()))
        if args.output:
            write_json(Path(args.output), payload)
            emit_human(f"Preview written: {args.output}", quiet=args.quiet)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_preview_text(preview).rstrip(), quiet=args.quiet)
        summary = preview.summary
        return EXIT_ANALYSIS_ISSUES if summary["error"] or summary["duplicate"] else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def selected_row_ids(preview: ParseResult, row_numbers: list[int] | None) -> list[str] | None:
    if not row_numbers:
        return None
    by_number = {row.row_number: row.row_id for row in preview.rows}
    missing = [number for number in row_numbers if number not in by_number]
    if missing:
        raise CliError(f"Unknown row number(s): {', '.join(str(number) for number in missing)}", EXIT_COMMAND_ERROR)
    return [by_number[number] for number in row_numbers]


def run_import(args: argparse.Namespace) -> int:
    try:
        importer = open_importer(args)
        preview = analyze_input(importer, args)
        row_ids = selected_row_ids(preview, args.rows)
        mode = CommitMode.VALID_AND_SIMILAR if args.include_similar else CommitMode.VALID_ONLY

        if args.dry_run:
            # Commit against a throwaway copy of the current cards.
            sandbox = RateCardImporter(InMemoryRateCardStore(importer.store.load_all()), settings=importer.settings)
            result = sandbox.commit(preview, mode=mode, row_ids=row_ids)
        else:
            result = importer.commit(preview, mode=mode, row_ids=row_ids)

        run = import_run_summary(
            preview,
            result,
            input_path=Path(args.input),
            output_path=Path(args.output) if args.output else None,
            dry_run=args.dry_run,
        )
        payload = pin_timestamps(with_contract(COMMIT, {**result.to_dict(), "run": run}))
        if args.output:
            write_json(Path(args.output), payload)
            emit_human(f"Import summary written: {args.output}", quiet=args.quiet)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_commit_text(result, dry_run=args.dry_run).rstrip(), quiet=args.quiet)
        return EXIT_IMPORT_SKIPPED if result.summary["skipped"] else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_template(args: argparse.Namespace) -> int:
    filename, csv_text = build_template(args.type)
    if args.output:
        output_path = Path(args.output)
        if output_path.is_dir():
            output_path = output_path / filename
        ensure_parent(output_path)
        with output_path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(csv_text)
        emit_human(f"Template written: {output_path}")
    else:
        sys.stdout.write(csv_text)
    return EXIT_SUCCESS


def run_archive(args: argparse.Namespace, *, archived: bool) -> int:
    try:
        importer = open_importer(args)
        card = importer.set_archived(args.card_id, archived)
        if args.json:
            maybe_emit_json_stdout(card.to_dict(), True)
        else:
            verb = "Archived" if archived else "Restored"
            emit_human(f"{verb} {card.id}: {format_label(card.platform_id, card.category_id)}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_delete(args: argparse.Namespace) -> int:
    try:
        importer = open_importer(args)
        importer.delete(args.card_id)
        if args.json:
            maybe_emit_json_stdout({"id": args.card_id, "deleted": True}, True)
        else:
            emit_human(f"Deleted {args.card_id}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_list(args: argparse.Namespace) -> int:
    try:
        today = date.fromisoformat(args.today) if args.today else date.today()
    except ValueError as exc:
        raise CliError(f"Invalid --today date: {args.today}", EXIT_COMMAND_ERROR) from exc
    try:
        importer = open_importer(args)
        cards = sorted(
            importer.store.load_all(),
            key=lambda card: (card.platform_id, card.category_id, card.effective_from or date.min),
        )
        listing = {
            "as_of": today.isoformat(),
            "metrics": summarize_store(cards, today),
            "rate_cards": [
                {
                    "id": card.id,
                    "label": format_label(card.platform_id, card.category_id),
                    "date_range": format_date_range(card.effective_from, card.effective_to),
                    "status": "archived" if card.archived else rate_card_status(card, today),
                    "summary": describe_commission(card),
                    "card": card.to_dict(),
                }
                for card in cards
            ],
        }
        if args.json:
            maybe_emit_json_stdout(with_contract(LISTING, listing), True)
        else:
            emit_human(render_listing_text(listing).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_text(config_path, starter_config())
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    rule = EXPLAIN_RULES.get(args.rule_id)
    if rule is None:
        eprint(f"Unknown rule id: {args.rule_id}. Known: {', '.join(EXPLAIN_RULES)}")
        return EXIT_COMMAND_ERROR
    payload = {"rule_id": args.rule_id, **rule}
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Rule: {args.rule_id}",
                    f"What it means: {rule['description']}",
                    f"What triggers it: {rule['evidence']}",
                    f"Importable: {'yes' if rule['importable'] else 'no'}",
                    f"How to resolve it: {rule['resolution']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "analyze":
            return run_analyze(args)
        if args.command == "import":
            return run_import(args)
        if args.command == "template":
            return run_template(args)
        if args.command == "archive":
            return run_archive(args, archived=True)
        if args.command == "restore":
            return run_archive(args, archived=False)
        if args.command == "delete":
            return run_delete(args)
        if args.command == "list":
            return run_list(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
