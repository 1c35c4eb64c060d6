"""
headers.py: column-name canonicalization for rate-card uploads

Sellers export rate cards from many tools, so the same field arrives as
"Marketplace", "Platform Id" or "platform_id". Every header is reduced to a
canonical string (lower-case, "+" spelled out, symbols and punctuation
dropped) and looked up in a static alias table. A second layer adds the
snake_case field names that older payloads used.

Public API:
    canonical_column_name("T+ Days")      -> "tplusdays"
    normalize_headers({"Marketplace": "Amazon"})
        -> {"Marketplace": "Amazon", "platform": "Amazon",
            "platform_id": "Amazon", "marketplace": "Amazon"}
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

_STRIP_SYMBOLS_RE = re.compile(r"[₹%()$€£]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

_INLINE_SLAB_RE = re.compile(
    r"^slab(?P<n>\d+)(?P<field>minprice|maxprice|commissionpercent|commission)$"
)
_INLINE_FEE_RE = re.compile(r"^fee(?P<n>\d+)(?P<field>code|type|kind|value)$")

_SLAB_FIELDS = {
    "minprice": "min_price",
    "maxprice": "max_price",
    "commissionpercent": "commission_percent",
    "commission": "commission_percent",
}
_FEE_FIELDS = {"code": "code", "type": "type", "kind": "type", "value": "value"}


def canonical_column_name(name: Any) -> str:
    text = str(name).replace("\ufeff", "").lower()
    text = text.replace("+", " plus ")
    text = _STRIP_SYMBOLS_RE.sub("", text)
    return _NON_ALNUM_RE.sub("", text)


# ── Alias tables ──────────────────────────────────────────────────────────────

_HEADER_VARIANTS: list[tuple[str, str]] = [
    # identity
    ("marketplace", "platform"),
    ("platform", "platform"),
    ("platform id", "platform"),
    ("category", "category"),
    ("category id", "category"),
    ("type", "type"),
    ("commission type", "type"),
    ("commission", "commission"),
    ("commission %", "commission"),
    ("commission (tier)", "commission"),
    ("commission % (tier)", "commission"),
    ("commission percent", "commission"),
    ("tier commission", "commission"),
    ("min price", "minPrice"),
    ("min price ₹", "minPrice"),
    ("slab min price", "minPrice"),
    ("minimum price", "minPrice"),
    ("max price", "maxPrice"),
    ("max price ₹", "maxPrice"),
    ("slab max price", "maxPrice"),
    ("maximum price", "maxPrice"),
    ("valid from", "validFrom"),
    ("date from", "validFrom"),
    ("effective from", "validFrom"),
    ("start date", "validFrom"),
    ("valid to", "validTo"),
    ("date to", "validTo"),
    ("effective to", "validTo"),
    ("end date", "validTo"),
    # financials
    ("fixed fee", "fixedFee"),
    ("fixed fee ₹", "fixedFee"),
    ("logistics fee", "logisticsFee"),
    ("logistics fee ₹", "logisticsFee"),
    ("return logistics fee", "returnLogisticsFee"),
    ("return fee", "returnLogisticsFee"),
    ("reverse logistics fee", "returnLogisticsFee"),
    ("storage fee", "storageFee"),
    ("storage fee ₹", "storageFee"),
    ("collection fee %", "collectionFeePercent"),
    ("tech fee", "techFee"),
    ("tech fee ₹", "techFee"),
    ("technology fee", "techFee"),
    ("cancellation fee ₹", "cancellationFee"),
    ("damage/dispute deduction %", "disputeDeductionPercent"),
    ("dispute term (days)", "disputeTermDays"),
    ("tcs %", "tcsPercent"),
    ("tcs", "tcsPercent"),
    ("gst %", "gstPercent"),
    ("gst", "gstPercent"),
    ("penalty type", "penaltyType"),
    ("penalty value", "penaltyValue"),
    ("penalty value ₹", "penaltyValue"),
    ("discount / promo contribution %", "promoContributionPercent"),
    ("return window (days)", "returnWindowDays"),
    ("settlement cycle (days)", "settlementCycleDays"),
    ("settlement cycle", "settlementCycleDays"),
    ("settlement cycle days", "settlementCycleDays"),
    ("utr prefix", "utrPrefix"),
    # settlement terms
    ("settlement basis", "settlementBasis"),
    ("t+ days", "tPlusDays"),
    ("t plus days", "tPlusDays"),
    ("t days", "tPlusDays"),
    ("weekly weekday", "weeklyWeekday"),
    ("bi weekly weekday", "biWeeklyWeekday"),
    ("bi-weekly weekday", "biWeeklyWeekday"),
    ("bi weekly which", "biWeeklyWhich"),
    ("bi-weekly which", "biWeeklyWhich"),
    ("monthly day", "monthlyDay"),
    ("grace days", "graceDays"),
    ("global min price", "globalMinPrice"),
    ("global max price", "globalMaxPrice"),
    ("notes", "notes"),
    # record fields carried by stored or edited payloads
    ("id", "id"),
    ("archived", "archived"),
    ("payload", "payload"),
    # structured lists
    ("slabs", "slabs"),
    ("slabs json", "slabsJson"),
    ("fees", "fees"),
    ("fees json", "feesJson"),
]

HEADER_ALIASES: dict[str, str] = {
    canonical_column_name(variant): key for variant, key in _HEADER_VARIANTS
}

FRIENDLY_ALIASES: dict[str, tuple[str, ...]] = {
    "platform": ("platform_id",),
    "category": ("category_id",),
    "commission": ("commission_percent",),
    "type": ("commission_type",),
    "validFrom": ("effective_from",),
    "validTo": ("effective_to",),
    "minPrice": ("min_price",),
    "maxPrice": ("max_price",),
    "fixedFee": ("fixed_fee",),
    "logisticsFee": ("logistics_fee",),
    "returnLogisticsFee": ("return_logistics_fee",),
    "storageFee": ("storage_fee",),
    "collectionFeePercent": ("collection_fee_percent",),
    "techFee": ("tech_fee",),
    "cancellationFee": ("cancellation_fee",),
    "disputeDeductionPercent": ("dispute_deduction_percent",),
    "disputeTermDays": ("dispute_term_days",),
    "tcsPercent": ("tcs_percent",),
    "gstPercent": ("gst_percent",),
    "penaltyType": ("penalty_type",),
    "penaltyValue": ("penalty_value",),
    "promoContributionPercent": ("promo_contribution_percent",),
    "returnWindowDays": ("return_window_days",),
    "settlementCycleDays": ("settlement_cycle_days",),
    "utrPrefix": ("utr_prefix",),
    "settlementBasis": ("settlement_basis",),
    "tPlusDays": ("t_plus_days",),
    "weeklyWeekday": ("weekly_weekday",),
    "biWeeklyWeekday": ("bi_weekly_weekday",),
    "biWeeklyWhich": ("bi_weekly_which",),
    "monthlyDay": ("monthly_day",),
    "graceDays": ("grace_days",),
    "globalMinPrice": ("global_min_price",),
    "globalMaxPrice": ("global_max_price",),
    "slabs": ("slabs_json",),
    "slabsJson": ("slabs_json",),
    "fees": ("fees_json",),
    "feesJson": ("fees_json",),
}

# Known columns with no rate card field to hold them.
UNSTORED_KEYS = frozenset({
    "cancellationFee",
    "disputeDeductionPercent",
    "disputeTermDays",
    "penaltyType",
    "penaltyValue",
    "promoContributionPercent",
    "returnWindowDays",
    "utrPrefix",
})

# A header already spelled as a payload field ("gst_percent") maps to its key.
_PAYLOAD_FIELDS = {
    alias: key for key, aliases in FRIENDLY_ALIASES.items() for alias in aliases
}
for _alias, _key in _PAYLOAD_FIELDS.items():
    HEADER_ALIASES.setdefault(canonical_column_name(_alias), _key)


def inline_column_key(canonical: str) -> str | None:
    """Map a canonical header such as ``slab2maxprice`` to ``slab2_max_price``."""
    match = _INLINE_SLAB_RE.match(canonical)
    if match:
        return f"slab{int(match.group('n'))}_{_SLAB_FIELDS[match.group('field')]}"
    match = _INLINE_FEE_RE.match(canonical)
    if match:
        return f"fee{int(match.group('n'))}_{_FEE_FIELDS[match.group('field')]}"
    return None


def mapped_key(header: Any) -> str | None:
    canonical = canonical_column_name(header)
    if not canonical:
        return None
    return HEADER_ALIASES.get(canonical) or inline_column_key(canonical)


# ══════════════════════════════════════════════════════════════════════════════
# UNMAPPED HEADER TRACKING
# ══════════════════════════════════════════════════════════════════════════════

_seen_unmapped: set[str] = set()


def reset_unmapped_warnings() -> None:
    _seen_unmapped.clear()


def _warn_unmapped(header: str) -> None:
    if header in _seen_unmapped:
        return
    _seen_unmapped.add(header)
    logger.warning("Unmapped rate card column: %s", header)


def unmapped_headers(headers: Iterable[Any]) -> list[str]:
    """Headers that carry no known field, in upload order."""
    result: list[str] = []
    for header in headers:
        text = str(header)
        if canonical_column_name(text) and mapped_key(text) is None and text not in result:
            result.append(text)
    return result


def unstored_headers(headers: Iterable[Any]) -> list[str]:
    """Headers that map to a known field the rate card does not keep."""
    result: list[str] = []
    for header in headers:
        text = str(header)
        if mapped_key(text) in UNSTORED_KEYS and text not in result:
            result.append(text)
    return result


# ══════════════════════════════════════════════════════════════════════════════
# ROW NORMALIZATION
# ══════════════════════════════════════════════════════════════════════════════

def normalize_headers(row: Mapping[str, Any]) -> dict[str, Any]:
    """
    Return a copy of ``row`` with canonical keys added.

    The original keys are kept. For each header the mapped key, its friendly
    snake_case aliases and the bare canonical form are set to the cell value.
    Unknown headers are passed through and logged once per process.
    """
    normalized: dict[str, Any] = dict(row)
    for header, value in row.items():
        text = str(header)
        canonical = canonical_column_name(text)
        if not canonical:
            continue
        key = mapped_key(text)
        if key:
            normalized[key] = value
            for alias in FRIENDLY_ALIASES.get(key, ()):
                normalized[alias] = value
        else:
            _warn_unmapped(text)
        normalized[canonical] = value
    return normalized
