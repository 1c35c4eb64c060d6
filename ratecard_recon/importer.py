"""
importer.py

Drives an upload through the pipeline and commits the rows a seller approves.

Analysis is a fold over the rows in file order. Each row is canonicalized,
normalized, validated and checked for overlap against the persisted cards
followed by the rows already staged from this upload; a row that resolves to
``valid`` or ``similar`` is then staged itself. Because of that, reordering
the rows of a file can change which row is reported as the duplicate.

Commit re-checks every selected row against a fresh read of the store before
inserting it, since the store may have changed since the preview.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from ratecard_recon.config import DEFAULT_SETTINGS, Settings
from ratecard_recon.contracts import utc_timestamp
from ratecard_recon.errors import ArchiveConflictError, StoreError
from ratecard_recon.headers import normalize_headers, unmapped_headers, unstored_headers
from ratecard_recon.loader import load_upload
from ratecard_recon.models import (
    CommitMode,
    CommitOutcome,
    CommitResult,
    ConflictRef,
    NormalizedCard,
    ParseResult,
    RowResult,
)
from ratecard_recon.normalizer import normalize_payload, normalize_row
from ratecard_recon.overlap import (
    Overlap,
    analyze_card,
    build_suggestions,
    conflict_ref,
    describe_commission,
    format_date_range,
    format_label,
    similar_summary,
)
from ratecard_recon.store import RateCardStore
from ratecard_recon.validator import humanize_message, join_messages, validate_card

logger = logging.getLogger(__name__)

READY_MESSAGE = "Ready to import."
COMMITTABLE = ("valid", "similar")


@dataclass(frozen=True)
class RevalidationResult:
    status: str
    message: str
    card: NormalizedCard
    overlap: Overlap | None = None
    archived_match: ConflictRef | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "message": self.message,
            "normalized": self.card.to_dict(),
        }
        if self.overlap is not None:
            payload["overlap"] = {"type": self.overlap.kind, "reason": self.overlap.reason}
        if self.archived_match is not None:
            payload["archived_match"] = self.archived_match.to_dict()
        return payload


def _archived_ref(overlap: Overlap) -> ConflictRef:
    return conflict_ref(overlap.existing, "exact" if overlap.kind == "exact" else "overlap")


def _archived_tooltip(ref: ConflictRef) -> str:
    return (
        f"Archived match ({ref.kind}): {ref.label} ({ref.date_range}). "
        "Archived cards don't affect reconciliation."
    )


def blocking_issues(errors: list[str], overlap: Overlap | None, *, include_similar: bool) -> list[str]:
    """Reasons a card may not be written: structural errors, exact duplicates, unapproved overlaps."""
    issues = list(errors)
    if overlap is not None and (overlap.kind == "exact" or not include_similar):
        issues.append(overlap.reason)
    return issues


class RateCardImporter:
    """
    Analysis and commit over one RateCardStore.

    The importer holds no state between calls; the staged pool of an analysis
    lives only inside ``analyze``.
    """

    def __init__(self, store: RateCardStore, *, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or DEFAULT_SETTINGS

    # ── analysis ──────────────────────────────────────────────────────────────

    def analyze(
        self,
        rows: Iterable[Mapping[str, Any]],
        *,
        file_name: str | None = None,
        analysis_id: str | None = None,
        row_numbers: Sequence[int] | None = None,
        warnings: Iterable[str] = (),
    ) -> ParseResult:
        rows = list(rows)
        analysis_id = analysis_id or uuid.uuid4().hex
        persisted = self.store.load_all()
        staged: list[NormalizedCard] = []
        results: list[RowResult] = []

        for index, raw in enumerate(rows):
            row_number = row_numbers[index] if row_numbers is not None else index + 2
            row_id = f"{analysis_id}:{index + 1}"
            try:
                result = self._analyze_row(raw, row_number, row_id, persisted + staged)
            except Exception as exc:
                logger.exception("Row %s could not be analyzed", row_number)
                result = RowResult(
                    row_number=row_number,
                    row_id=row_id,
                    status="error",
                    message=humanize_message(str(exc)) or "Unknown error",
                )
            results.append(result)
            if result.status in COMMITTABLE and result.payload is not None:
                staged.append(result.payload.with_id(row_id))

        headers: list[str] = []
        for raw in rows:
            for key in raw:
                if str(key) not in headers:
                    headers.append(str(key))
        all_warnings = list(warnings) + [
            f"Unmapped column '{header}' was ignored" for header in unmapped_headers(headers)
        ] + [
            f"Column '{header}' is recognized but not stored" for header in unstored_headers(headers)
        ]

        parsed = ParseResult(
            analysis_id=analysis_id,
            file_name=file_name,
            uploaded_at=utc_timestamp(),
            rows=tuple(results),
            warnings=tuple(all_warnings),
        )
        summary = parsed.summary
        logger.info(
            "Analyzed %d row(s) from %s: %d valid, %d similar, %d duplicate, %d error",
            summary["total"], file_name or "upload", summary["valid"],
            summary["similar"], summary["duplicate"], summary["error"],
        )
        return parsed

    def analyze_file(self, path: "str | Path", *, sheet_name: str | None = None,
                     analysis_id: str | None = None) -> ParseResult:
        upload = load_upload(path, sheet_name=sheet_name)
        return self.analyze(
            upload.rows,
            file_name=Path(path).name,
            analysis_id=analysis_id,
            row_numbers=upload.row_numbers,
            warnings=upload.warnings,
        )

    def _analyze_row(self, raw: Mapping[str, Any], row_number: int, row_id: str,
                     pool: list[NormalizedCard]) -> RowResult:
        normalization = normalize_row(normalize_headers(raw), settings=self.settings)
        card = normalization.card

        if normalization.issues:
            messages = [issue.message for issue in normalization.issues] + validate_card(card)
            messages = list(dict.fromkeys(messages))
            tooltips = [issue.tooltip for issue in normalization.issues if issue.tooltip]
            return RowResult(
                row_number=row_number,
                row_id=row_id,
                status="error",
                message=join_messages(messages),
                tooltip=" | ".join(tooltips) or None,
                payload=card,
            )

        analysis = analyze_card(card, pool)
        if analysis.errors:
            return RowResult(
                row_number=row_number,
                row_id=row_id,
                status="error",
                message=join_messages(analysis.errors),
                payload=card,
            )

        if analysis.archived_match is not None:
            ref = _archived_ref(analysis.archived_match)
            return RowResult(
                row_number=row_number,
                row_id=row_id,
                status="valid",
                message=READY_MESSAGE,
                tooltip=_archived_tooltip(ref),
                archived_match=ref,
                payload=card,
            )

        overlap = analysis.overlap
        if overlap is None:
            return RowResult(row_number=row_number, row_id=row_id, status="valid",
                             message=READY_MESSAGE, payload=card)

        existing = overlap.existing
        ref = conflict_ref(existing, overlap.kind)
        if overlap.kind == "exact":
            return RowResult(
                row_number=row_number,
                row_id=row_id,
                status="duplicate",
                message=f"Exact duplicate of {ref.label} ({ref.date_range}). Remove or edit this row.",
                tooltip="Same date range, commission and fees.",
                conflicting_card=ref,
                payload=card,
            )
        return RowResult(
            row_number=row_number,
            row_id=row_id,
            status="similar",
            message=f"Overlaps existing {ref.label} ({ref.date_range}). Adjust dates or confirm import.",
            tooltip=(
                f"{similar_summary(card, existing)}. Your row: {describe_commission(card)}. "
                f"Existing: {describe_commission(existing)}."
            ),
            conflicting_card=ref,
            suggestions=build_suggestions(card, existing),
            payload=card,
        )

    def revalidate(self, card: "NormalizedCard | Mapping[str, Any]", *,
                   include_similar: bool = True) -> RevalidationResult:
        """
        Re-check one edited card against a fresh read of the store.

        Exact duplicates are always errors; a similar overlap is an error only
        when ``include_similar`` is off.
        """
        issues: list[str] = []
        if not isinstance(card, NormalizedCard):
            normalization = normalize_payload(card, settings=self.settings)
            card = normalization.card
            issues.extend(issue.message for issue in normalization.issues)

        analysis = analyze_card(card, self.store.load_all())
        issues.extend(blocking_issues(analysis.errors, analysis.overlap, include_similar=include_similar))
        if issues:
            return RevalidationResult(status="error", message=join_messages(issues), card=card)

        archived = _archived_ref(analysis.archived_match) if analysis.archived_match else None
        if analysis.overlap is not None:
            return RevalidationResult(
                status="similar",
                message="Overlaps existing rate card. Confirm before importing.",
                card=card,
                overlap=analysis.overlap,
                archived_match=archived,
            )
        return RevalidationResult(status="valid", message=READY_MESSAGE, card=card, archived_match=archived)

    # ── commit ────────────────────────────────────────────────────────────────

    def commit(
        self,
        parse_result: ParseResult,
        *,
        mode: CommitMode = CommitMode.VALID_ONLY,
        row_ids: Iterable[str] | None = None,
    ) -> CommitResult:
        """
        Persist the selected rows of a preview, one card at a time.

        Without ``row_ids`` every valid and similar row is selected. Rows are
        processed in file order in chunks of ``settings.commit_chunk_size``;
        each chunk re-reads the store. A failed read or insert skips the
        affected rows and the batch carries on.
        """
        include_similar = CommitMode(mode) is CommitMode.VALID_AND_SIMILAR
        outcomes: list[CommitOutcome] = []

        if row_ids is None:
            selected = [row for row in parse_result.rows if row.status in COMMITTABLE]
            unknown: list[str] = []
        else:
            wanted = list(dict.fromkeys(row_ids))
            selected = [row for row in parse_result.rows if row.row_id in wanted]
            known = {row.row_id for row in selected}
            unknown = [row_id for row_id in wanted if row_id not in known]

        imported: list[NormalizedCard] = []
        chunk_size = self.settings.commit_chunk_size
        for start in range(0, len(selected), chunk_size):
            chunk = selected[start:start + chunk_size]
            try:
                snapshot = self.store.load_all()
            except Exception as exc:
                logger.warning("Skipping %d row(s): could not read rate cards: %s", len(chunk), exc)
                outcomes.extend(
                    CommitOutcome(row.row_id, row.row_number, "skipped",
                                  message=f"Could not read existing rate cards: {exc}")
                    for row in chunk
                )
                continue

            stored_ids = {card.id for card in snapshot}
            pool = snapshot + [card for card in imported if card.id not in stored_ids]
            for row in chunk:
                outcome = self._commit_row(row, pool, include_similar=include_similar)
                outcomes.append(outcome)
                if outcome.status == "imported" and row.payload is not None:
                    stored = row.payload.with_id(outcome.id)
                    pool.append(stored)
                    imported.append(stored)

        outcomes.extend(
            CommitOutcome(row_id, None, "skipped", message="Unknown row id") for row_id in unknown
        )
        result = CommitResult(analysis_id=parse_result.analysis_id, results=tuple(outcomes))
        logger.info(
            "Committed analysis %s: %d inserted, %d skipped",
            parse_result.analysis_id, result.summary["inserted"], result.summary["skipped"],
        )
        return result

    def _commit_row(self, row: RowResult, pool: list[NormalizedCard], *,
                    include_similar: bool) -> CommitOutcome:
        def skipped(message: str) -> CommitOutcome:
            return CommitOutcome(row.row_id, row.row_number, "skipped", message=message)

        if row.payload is None:
            return skipped("Missing payload for row")
        if row.status not in COMMITTABLE:
            return skipped("Row is not eligible for import")
        if row.status == "similar" and not include_similar:
            return skipped("Similar rows require confirmation")

        card = row.payload.with_id(None)
        analysis = analyze_card(card, pool)
        issues = blocking_issues(analysis.errors, analysis.overlap, include_similar=include_similar)
        if issues:
            return skipped("; ".join(issues))

        try:
            new_id = self.store.insert(card)
        except Exception as exc:
            logger.warning("Insert failed for row %s: %s", row.row_id, exc)
            return skipped(str(exc) or "Failed to import row")
        return CommitOutcome(row.row_id, row.row_number, "imported", id=new_id)

    # ── archive / delete ──────────────────────────────────────────────────────

    def set_archived(self, card_id: str, archived: bool) -> NormalizedCard:
        """
        Archive or restore a card.

        Archiving is always allowed. Restoring re-checks the card against every
        other card, archived ones included, and refuses when it would clash.
        """
        if not archived:
            card = self.store.get(card_id)
            if card is None:
                raise StoreError(f"Rate card not found: {card_id}")
            others = [other for other in self.store.load_all() if other.id != card_id]
            analysis = analyze_card(replace(card, archived=False), others,
                                    include_archived_for_blocking=True)
            if analysis.overlap is not None:
                existing = analysis.overlap.existing
                label = format_label(existing.platform_id, existing.category_id)
                date_range = format_date_range(existing.effective_from, existing.effective_to)
                if analysis.overlap.kind == "exact":
                    message = f"Cannot restore: exact duplicate exists for {label} ({date_range})."
                else:
                    message = (
                        f"Cannot restore: date range overlaps existing {label} ({date_range}). "
                        "Adjust dates first."
                    )
                raise ArchiveConflictError(message, card_id=card_id)
            if analysis.errors:
                raise ArchiveConflictError(join_messages(analysis.errors), card_id=card_id)

        updated = self.store.set_archived(card_id, archived)
        logger.info("Rate card %s %s", card_id, "archived" if archived else "restored")
        return updated

    def delete(self, card_id: str) -> None:
        self.store.delete(card_id)
        logger.info("Rate card %s deleted", card_id)


# ══════════════════════════════════════════════════════════════════════════════
# LISTING
# ══════════════════════════════════════════════════════════════════════════════

def rate_card_status(card: NormalizedCard, today: date | None = None) -> str:
    today = today or date.today()
    start = card.effective_from or today
    if start > today:
        return "upcoming"
    if card.effective_to is not None and card.effective_to < today:
        return "expired"
    return "active"


def summarize_store(cards: Iterable[NormalizedCard], today: date | None = None) -> dict[str, Any]:
    """Listing metrics: status counts over live cards plus the average flat commission."""
    cards = list(cards)
    live = [card for card in cards if not card.archived]
    statuses = [rate_card_status(card, today) for card in live]
    flat_rates = [
        card.commission_percent
        for card in live
        if card.commission_type == "flat" and card.commission_percent is not None
    ]
    return {
        "total": len(cards),
        "active": statuses.count("active"),
        "expired": statuses.count("expired"),
        "upcoming": statuses.count("upcoming"),
        "archived": len(cards) - len(live),
        "avg_flat_commission": round(sum(flat_rates) / len(flat_rates), 2) if flat_rates else 0.0,
        "flat_count": len(flat_rates),
    }
