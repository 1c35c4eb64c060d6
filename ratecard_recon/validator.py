"""
validator.py

Record-level checks for a single NormalizedCard. Nothing here looks at other
cards; overlap with the reference pool is handled in overlap.py.

The issue strings are shown to sellers as-is (after ``humanize_message``), so
their wording is part of the preview output.
"""

from __future__ import annotations

from ratecard_recon.models import (
    BI_WEEKLY_WHICH,
    COMMISSION_TYPES,
    SETTLEMENT_BASES,
    NormalizedCard,
)


def humanize_message(raw: str) -> str:
    text = raw.replace("_", " ").strip()
    if not text:
        return text
    return text[0].upper() + text[1:]


def join_messages(messages: list[str]) -> str:
    return "; ".join(humanize_message(message) for message in messages)


def _within(value: float | None, low: float, high: float) -> bool:
    return value is None or low <= value <= high


def _commission_issues(card: NormalizedCard) -> list[str]:
    issues: list[str] = []
    if not card.commission_type:
        return ["commission_type is required"]
    if card.commission_type not in COMMISSION_TYPES:
        return [f"Unknown type: '{card.commission_type}' (use flat or tiered)."]

    if card.commission_type == "flat":
        if card.commission_percent is None:
            issues.append("Commission % required for flat commission")
        elif not _within(card.commission_percent, 0, 100):
            issues.append("commission_percent must be between 0 and 100")
        if card.slabs:
            issues.append("Flat commission cannot have slabs.")
        return issues

    if card.commission_percent is not None:
        issues.append("Tiered commission cannot have a flat commission %.")
    if not card.slabs:
        issues.append("Tiered commission requires at least one slab.")
        return issues

    slabs = card.slabs
    if any(slabs[i].min_price > slabs[i + 1].min_price for i in range(len(slabs) - 1)):
        issues.append("Slabs must be sorted by min_price.")
    for i, slab in enumerate(slabs):
        if slab.min_price < 0:
            issues.append(f"Slab {i + 1}: min_price must not be negative.")
        if slab.max_price is not None and slab.max_price <= slab.min_price:
            issues.append(f"Slab {i + 1}: max_price must be greater than min_price or null for open-ended.")
        if not _within(slab.commission_percent, 0, 100):
            issues.append(f"Slab {i + 1}: commission_percent must be between 0 and 100.")
        if i < len(slabs) - 1 and slab.upper_bound > slabs[i + 1].min_price:
            issues.append(f"Slabs overlap between rows {i + 1} and {i + 2}.")
            break
    return issues


def _fee_issues(card: NormalizedCard) -> list[str]:
    issues: list[str] = []
    seen: set[str] = set()
    for fee in card.fees:
        if fee.code in seen:
            issues.append(f'Duplicate fee code "{fee.code}" not allowed.')
            break
        seen.add(fee.code)
    for fee in card.fees:
        if fee.value < 0:
            issues.append(f'Fee "{fee.code}": fee_value must not be negative.')
        elif fee.kind == "percent" and fee.value > 100:
            issues.append(f'Fee "{fee.code}": percent fee must not exceed 100.')
    return issues


def _settlement_issues(card: NormalizedCard) -> list[str]:
    terms = card.settlement
    issues: list[str] = []

    if terms.basis and terms.basis not in SETTLEMENT_BASES:
        issues.append(
            f"Unknown settlement basis: '{terms.basis}' (use t_plus, weekly, bi_weekly or monthly)."
        )
    elif terms.basis == "t_plus":
        if terms.t_plus_days is None:
            issues.append("t_plus_days is required for t_plus settlement")
        elif terms.t_plus_days < 1:
            issues.append("t_plus_days must be at least 1")
    elif terms.basis == "weekly":
        if terms.weekly_weekday is None:
            issues.append("weekly_weekday is required for weekly settlement")
        elif not 1 <= terms.weekly_weekday <= 7:
            issues.append("weekly_weekday must be between 1 and 7")
    elif terms.basis == "bi_weekly":
        if terms.bi_weekly_weekday is None:
            issues.append("bi_weekly_weekday is required for bi_weekly settlement")
        elif not 1 <= terms.bi_weekly_weekday <= 7:
            issues.append("bi_weekly_weekday must be between 1 and 7")
        if terms.bi_weekly_which is None:
            issues.append("bi_weekly_which is required for bi_weekly settlement (first or second)")
        elif terms.bi_weekly_which not in BI_WEEKLY_WHICH:
            issues.append("bi_weekly_which must be 'first' or 'second'")
    elif terms.basis == "monthly":
        if terms.monthly_day is None:
            issues.append("monthly_day is required for monthly settlement (1-31 or 'end of month')")
        elif str(terms.monthly_day) != "eom" and not (
            str(terms.monthly_day).isdigit() and 1 <= int(terms.monthly_day) <= 31
        ):
            issues.append("monthly_day must be 1-31 or 'end of month'")

    if terms.grace_days < 0:
        issues.append("grace_days must not be negative")
    if terms.settlement_cycle_days is not None and terms.settlement_cycle_days < 0:
        issues.append("settlement_cycle_days must not be negative")
    return issues


def validate_card(card: NormalizedCard) -> list[str]:
    """
    Return every structural problem with ``card``; an empty list means valid.

    Checks required identity fields, commission structure (flat percent or
    ordered, non-overlapping slabs), fee code uniqueness, the validity window
    and the companion fields each settlement basis needs.
    """
    issues: list[str] = []

    if not card.platform_id:
        issues.append("platform_id is required")
    if not card.category_id:
        issues.append("category_id is required")
    if not card.settlement.basis:
        issues.append("settlement_basis is required")
    if card.effective_from is None:
        issues.append("effective_from is required")

    issues.extend(_commission_issues(card))
    issues.extend(_fee_issues(card))

    if (
        card.effective_from is not None
        and card.effective_to is not None
        and card.effective_to <= card.effective_from
    ):
        issues.append("effective_to must be after effective_from")

    issues.extend(_settlement_issues(card))

    if not _within(card.gst_percent, 0, 100):
        issues.append("gst_percent must be between 0 and 100")
    if not _within(card.tcs_percent, 0, 100):
        issues.append("tcs_percent must be between 0 and 100")
    if card.global_min_price is not None and card.global_min_price < 0:
        issues.append("global_min_price must not be negative")
    if (
        card.global_min_price is not None
        and card.global_max_price is not None
        and card.global_min_price > card.global_max_price
    ):
        issues.append("global_min_price must not exceed global_max_price")

    return issues
