"""
overlap.py

Temporal overlap detection between rate cards of the same platform and
category, plus the text used to describe a conflict to the seller.

Two validity windows overlap when neither ends before the other starts; an
open end counts as +infinity. The first overlapping reference wins, so the
order of the reference pool matters: persisted cards first, then cards staged
earlier in the same upload.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable

from ratecard_recon.models import (
    ConflictRef,
    NormalizedCard,
    NormalizedFee,
    NormalizedSlab,
    Suggestion,
    canonical_id,
)
from ratecard_recon.validator import validate_card

TOLERANCE = 1e-6

PLATFORM_LABELS = {
    "amazon": "Amazon",
    "flipkart": "Flipkart",
    "myntra": "Myntra",
    "ajio": "AJIO",
    "quick": "Quick Commerce",
}

CATEGORY_LABELS = {
    "apparel": "Apparel",
    "electronics": "Electronics",
    "beauty": "Beauty",
    "home": "Home",
}


@dataclass(frozen=True)
class Overlap:
    kind: str  # "exact" | "similar"
    existing: NormalizedCard
    reason: str


@dataclass(frozen=True)
class CardAnalysis:
    errors: list[str] = field(default_factory=list)
    overlap: Overlap | None = None
    archived_match: Overlap | None = None
    card: NormalizedCard | None = None


# ══════════════════════════════════════════════════════════════════════════════
# COMPARISON
# ══════════════════════════════════════════════════════════════════════════════

def windows_overlap(a_from: date | None, a_to: date | None,
                    b_from: date | None, b_to: date | None) -> bool:
    if a_from is None or b_from is None:
        return False
    return (b_to is None or a_from <= b_to) and (a_to is None or b_from <= a_to)


def _close(a: float | None, b: float | None) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return abs(a - b) < TOLERANCE


def slabs_equal(a: tuple[NormalizedSlab, ...], b: tuple[NormalizedSlab, ...]) -> bool:
    if len(a) != len(b):
        return False
    return all(
        _close(x.min_price, y.min_price)
        and _close(x.max_price, y.max_price)
        and _close(x.commission_percent, y.commission_percent)
        for x, y in zip(a, b)
    )


def fees_equal(a: tuple[NormalizedFee, ...], b: tuple[NormalizedFee, ...]) -> bool:
    if len(a) != len(b):
        return False
    return all(
        x.code == y.code and x.kind == y.kind and _close(x.value, y.value)
        for x, y in zip(a, b)
    )


def same_window(a: NormalizedCard, b: NormalizedCard) -> bool:
    return a.effective_from == b.effective_from and a.effective_to == b.effective_to


def same_commission(a: NormalizedCard, b: NormalizedCard) -> bool:
    if a.commission_type != b.commission_type:
        return False
    if a.commission_type == "flat":
        return _close(a.commission_percent or 0.0, b.commission_percent or 0.0)
    return slabs_equal(a.slabs, b.slabs)


def overlap_reason(existing: NormalizedCard, kind: str) -> str:
    start = existing.effective_from.isoformat() if existing.effective_from else "-"
    end = existing.effective_to.isoformat() if existing.effective_to else "open"
    label = "exact duplicate" if kind == "exact" else "overlap"
    return (
        f"{label} with {existing.platform_id}/{existing.category_id} "
        f"({start} → {end}) [id={existing.id or 'existing'}]"
    )


def detect_overlap(candidate: NormalizedCard, reference_pool: Iterable[NormalizedCard]) -> Overlap | None:
    """First reference for the same platform/category whose window intersects the candidate's."""
    platform = canonical_id(candidate.platform_id)
    category = canonical_id(candidate.category_id)

    for other in reference_pool:
        if candidate.id and other.id and candidate.id == other.id:
            continue
        if canonical_id(other.platform_id) != platform or canonical_id(other.category_id) != category:
            continue
        if not windows_overlap(candidate.effective_from, candidate.effective_to,
                               other.effective_from, other.effective_to):
            continue

        exact = (
            same_window(candidate, other)
            and same_commission(candidate, other)
            and fees_equal(candidate.fees, other.fees)
        )
        kind = "exact" if exact else "similar"
        return Overlap(kind=kind, existing=other, reason=overlap_reason(other, kind))
    return None


def analyze_card(
    candidate: NormalizedCard,
    reference_pool: Iterable[NormalizedCard],
    *,
    include_archived_for_blocking: bool = False,
) -> CardAnalysis:
    """
    Validate ``candidate`` and, when it is structurally sound, look for a conflict.

    A conflict with an archived reference is returned as ``archived_match``
    instead of ``overlap`` unless ``include_archived_for_blocking`` is set.
    """
    errors = validate_card(candidate)
    if errors:
        return CardAnalysis(errors=errors, card=candidate)

    overlap = detect_overlap(candidate, reference_pool)
    if overlap is not None and overlap.existing.archived and not include_archived_for_blocking:
        return CardAnalysis(archived_match=overlap, card=candidate)
    return CardAnalysis(overlap=overlap, card=candidate)


# ══════════════════════════════════════════════════════════════════════════════
# DESCRIPTIONS
# ══════════════════════════════════════════════════════════════════════════════

def format_label(platform_id: str | None, category_id: str | None) -> str:
    platform = PLATFORM_LABELS.get(platform_id, platform_id) if platform_id else "Unknown"
    category = CATEGORY_LABELS.get(category_id, category_id) if category_id else "Unknown"
    return f"{platform} • {category}"


def format_display_date(value: date | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%d %b %Y")


def format_date_range(start: date | None, end: date | None) -> str:
    return f"{format_display_date(start) or '-'} → {format_display_date(end) or 'open'}"


def format_number(value: float | None) -> str:
    if value is None:
        return "0"
    rounded = round(float(value), 6)
    if rounded.is_integer():
        return str(int(rounded))
    return f"{rounded:f}".rstrip("0").rstrip(".")


def describe_fees(fees: tuple[NormalizedFee, ...]) -> str:
    return ", ".join(
        f"{fee.code} {format_number(fee.value)}{'%' if fee.kind == 'percent' else ''}"
        for fee in fees
    )


def describe_commission(card: NormalizedCard) -> str:
    """One-line summary such as "Flat 12% commission; Fees: shipping 2%"."""
    fees_text = describe_fees(card.fees)
    fee_summary = f"; Fees: {fees_text}" if fees_text else ""

    if card.commission_type == "tiered":
        count = len(card.slabs)
        snippets = [
            f"{format_number(slab.min_price)}-"
            f"{'open' if slab.max_price is None else format_number(slab.max_price)}: "
            f"{format_number(slab.commission_percent)}%"
            for slab in card.slabs[:3]
        ]
        extra = ", …" if count > 3 else ""
        summary = f"; {', '.join(snippets)}{extra}" if snippets else ""
        return f"Tiered commission ({count} slab{'' if count == 1 else 's'}){summary}{fee_summary}"

    return f"Flat {format_number(card.commission_percent)}% commission{fee_summary}"


def similar_summary(candidate: NormalizedCard, existing: NormalizedCard) -> str:
    differences = []
    if not same_commission(candidate, existing):
        differences.append("different commission")
    if not fees_equal(candidate.fees, existing.fees):
        differences.append("different fees")
    if not differences:
        return "Date overlap"
    return f"Date overlap with {' and '.join(differences)}"


def build_suggestions(candidate: NormalizedCard, existing: NormalizedCard) -> tuple[Suggestion, ...]:
    """Suggest starting the day after a closed conflicting window ends."""
    if existing.effective_to is None or candidate.effective_from is None:
        return ()
    if candidate.effective_from > existing.effective_to:
        return ()
    new_from = existing.effective_to + timedelta(days=1)
    return (
        Suggestion(
            kind="shift_from",
            new_from=new_from,
            reason=f"Shift start date to {format_display_date(new_from)} to avoid overlap.",
        ),
    )


def conflict_ref(existing: NormalizedCard, kind: str) -> ConflictRef:
    return ConflictRef(
        id=existing.id or "",
        label=format_label(existing.platform_id, existing.category_id),
        date_range=format_date_range(existing.effective_from, existing.effective_to),
        kind=kind,
    )
