"""
normalizer.py

Builds a NormalizedCard from one header-normalized upload row.

Slabs and fees arrive in several shapes: a structured list (Python list, dict
or JSON text under ``slabs``/``fees``, or nested in ``payload``), numbered
inline columns (``slab1_min_price``, ``fee2_code`` ...), and for fees the named
fee columns of the upload template. Each list has one extraction function that
reads the structured form first and then merges the inline columns.

Parse failures never raise; they are returned as RowIssue entries so the row
can be reported with every problem at once.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from ratecard_recon.config import DEFAULT_SETTINGS, Settings
from ratecard_recon.headers import normalize_headers
from ratecard_recon.models import (
    NormalizedCard,
    NormalizedFee,
    NormalizedSlab,
    SettlementTerms,
    canonical_id,
)
from ratecard_recon.parsers import (
    is_blank,
    parse_amount,
    parse_bi_weekly_which,
    parse_commission_type,
    parse_date,
    parse_fee_kind,
    parse_int_field,
    parse_monthly_day,
    parse_percent,
    parse_settlement_basis,
    parse_weekday,
)

COLUMN_LABELS = {
    "commission_percent": "Commission %",
    "effective_from": "Effective From",
    "effective_to": "Effective To",
    "gst_percent": "GST %",
    "tcs_percent": "TCS %",
    "t_plus_days": "T+ Days",
    "weekly_weekday": "Weekly Weekday",
    "bi_weekly_weekday": "Bi-Weekly Weekday",
    "grace_days": "Grace Days",
    "settlement_cycle_days": "Settlement Cycle (Days)",
    "global_min_price": "Global Min Price",
    "global_max_price": "Global Max Price",
}

# Named fee columns of the upload template and the fee codes they stand for.
NAMED_FEE_COLUMNS = (
    ("fixed_fee", "fixed", "amount"),
    ("logistics_fee", "shipping", "percent"),
    ("return_logistics_fee", "rto", "percent"),
    ("storage_fee", "storage", "percent"),
    ("collection_fee_percent", "collection", "percent"),
    ("tech_fee", "tech", "percent"),
)

_SLAB_MIN_KEYS = ("min_price", "minPrice", "min price")
_SLAB_MAX_KEYS = ("max_price", "maxPrice", "max price")
_SLAB_PCT_KEYS = ("commission_percent", "commissionPercent", "commission %", "commission")
_FEE_CODE_KEYS = ("fee_code", "code")
_FEE_KIND_KEYS = ("fee_type", "type", "kind")
_FEE_VALUE_KEYS = ("fee_value", "value")


@dataclass(frozen=True)
class RowIssue:
    message: str
    tooltip: str | None = None


@dataclass
class NormalizationResult:
    card: NormalizedCard
    issues: list[RowIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


def _first(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if not is_blank(value):
            return value
    return None


def _text(value: Any) -> str:
    return "" if is_blank(value) else str(value).strip()


def _invalid_number(label: str, raw: Any) -> RowIssue:
    return RowIssue("invalid number", f"Column: {label} (value: '{_text(raw)}'). Use numbers only.")


def _invalid_date(label: str, raw: Any) -> RowIssue:
    return RowIssue("invalid date", f"Column: {label} (value: '{_text(raw)}'). Use YYYY-MM-DD.")


def _read_float(raw: Any, label: str, issues: list[RowIssue], *, percent: bool = False) -> float | None:
    if is_blank(raw):
        return None
    value = parse_percent(raw) if percent else parse_amount(raw)
    if math.isnan(value):
        issues.append(_invalid_number(label, raw))
        return None
    return value


def _read_int(raw: Any, label: str, issues: list[RowIssue]) -> int | None:
    if is_blank(raw):
        return None
    value = parse_int_field(raw)
    if value is None:
        issues.append(_invalid_number(label, raw))
    return value


def _structured_list(row: Mapping[str, Any], keys: tuple[str, ...], label: str,
                     issues: list[RowIssue]) -> list[Any]:
    """First non-blank structured value among ``keys``, plus ``payload.<label>``."""
    items: list[Any] = []
    value = _first(row, *keys)
    if isinstance(value, list):
        items.extend(value)
    elif isinstance(value, dict):
        items.append(value)
    elif value is not None:
        try:
            parsed = json.loads(str(value))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items.extend(parsed)
        elif isinstance(parsed, dict):
            items.append(parsed)
        else:
            issues.append(RowIssue(f"{label}: expected JSON array"))

    payload = row.get("payload")
    if isinstance(payload, Mapping) and isinstance(payload.get(label), list):
        items.extend(payload[label])
    return items


def _slab(min_raw: Any, max_raw: Any, pct_raw: Any, position: int,
          issues: list[RowIssue]) -> NormalizedSlab | None:
    prefix = f"Slab {position}"
    count = len(issues)
    min_price = _read_float(min_raw, f"{prefix} Min Price", issues)
    max_price = _read_float(max_raw, f"{prefix} Max Price", issues)
    commission = _read_float(pct_raw, f"{prefix} Commission %", issues, percent=True)
    if is_blank(pct_raw):
        issues.append(RowIssue(f"{prefix}: commission_percent is required"))
    if len(issues) > count:
        return None
    return NormalizedSlab(
        min_price=min_price if min_price is not None else 0.0,
        max_price=max_price,
        commission_percent=commission,
    )


def extract_slabs(row: Mapping[str, Any], issues: list[RowIssue], *,
                  max_inline: int = DEFAULT_SETTINGS.max_inline_slabs) -> list[NormalizedSlab]:
    slabs: list[NormalizedSlab] = []
    position = 0

    for item in _structured_list(row, ("slabs", "slabs_json", "slabsJson"), "slabs", issues):
        position += 1
        if not isinstance(item, Mapping):
            issues.append(RowIssue(f"Slab {position}: expected an object with min_price, max_price and commission_percent"))
            continue
        slab = _slab(_first(item, *_SLAB_MIN_KEYS), _first(item, *_SLAB_MAX_KEYS),
                     _first(item, *_SLAB_PCT_KEYS), position, issues)
        if slab is not None:
            slabs.append(slab)

    for n in range(1, max_inline + 1):
        min_raw = row.get(f"slab{n}_min_price")
        max_raw = row.get(f"slab{n}_max_price")
        pct_raw = row.get(f"slab{n}_commission_percent")
        if all(is_blank(value) for value in (min_raw, max_raw, pct_raw)):
            continue
        position += 1
        slab = _slab(min_raw, max_raw, pct_raw, position, issues)
        if slab is not None:
            slabs.append(slab)

    # One slab per row: the bare Min/Max Price columns with the tier commission.
    if position == 0 and not all(is_blank(row.get(key)) for key in ("min_price", "max_price")):
        slab = _slab(row.get("min_price"), row.get("max_price"),
                     _first(row, "commission_percent", "commission"), 1, issues)
        if slab is not None:
            slabs.append(slab)

    return sorted(slabs, key=lambda slab: slab.min_price)


def _fee(code_raw: Any, kind_raw: Any, value_raw: Any, position: int,
         issues: list[RowIssue], *, default_kind: str = "percent") -> NormalizedFee | None:
    code = _text(code_raw)
    if not code:
        if not is_blank(value_raw):
            issues.append(RowIssue(f"Fee {position}: fee_code is required"))
        return None
    kind = default_kind
    if not is_blank(kind_raw):
        kind = parse_fee_kind(kind_raw) or ""
        if not kind:
            issues.append(RowIssue(f"Fee {position}: unknown fee type '{_text(kind_raw)}' (use percent or amount)."))
            return None
    count = len(issues)
    value = _read_float(value_raw, f"Fee {position} Value", issues, percent=kind == "percent")
    if len(issues) > count:
        return None
    return NormalizedFee(code=code, kind=kind, value=value if value is not None else 0.0)


def extract_fees(row: Mapping[str, Any], issues: list[RowIssue], *,
                 max_inline: int = DEFAULT_SETTINGS.max_inline_fees) -> list[NormalizedFee]:
    fees: list[NormalizedFee] = []
    position = 0

    for item in _structured_list(row, ("fees", "fees_json", "feesJson"), "fees", issues):
        position += 1
        if not isinstance(item, Mapping):
            issues.append(RowIssue(f"Fee {position}: expected an object with fee_code, fee_type and fee_value"))
            continue
        fee = _fee(_first(item, *_FEE_CODE_KEYS), _first(item, *_FEE_KIND_KEYS),
                   _first(item, *_FEE_VALUE_KEYS), position, issues)
        if fee is not None:
            fees.append(fee)

    for n in range(1, max_inline + 1):
        code_raw = row.get(f"fee{n}_code")
        kind_raw = row.get(f"fee{n}_type")
        value_raw = row.get(f"fee{n}_value")
        if all(is_blank(value) for value in (code_raw, kind_raw, value_raw)):
            continue
        position += 1
        fee = _fee(code_raw, kind_raw, value_raw, position, issues)
        if fee is not None:
            fees.append(fee)

    for column, code, kind in NAMED_FEE_COLUMNS:
        raw = row.get(column)
        if is_blank(raw):
            continue
        position += 1
        fee = _fee(code, None, raw, position, issues, default_kind=kind)
        # A zero template fee means "not charged".
        if fee is not None and fee.value != 0:
            fees.append(fee)

    return sorted(fees, key=lambda fee: (fee.code, fee.kind))


def _read_settlement(row: Mapping[str, Any], issues: list[RowIssue], settings: Settings) -> SettlementTerms:
    basis_raw = _first(row, "settlement_basis")
    which_raw = _first(row, "bi_weekly_which")
    monthly_raw = _first(row, "monthly_day")

    weekdays: dict[str, int | None] = {}
    for key in ("weekly_weekday", "bi_weekly_weekday"):
        raw = _first(row, key)
        weekdays[key] = parse_weekday(raw)
        if raw is not None and weekdays[key] is None:
            issues.append(RowIssue(
                "invalid weekday",
                f"Column: {COLUMN_LABELS[key]} (value: '{_text(raw)}'). Use 1-7 (1 = Monday) or a weekday name.",
            ))

    grace = _read_int(_first(row, "grace_days"), COLUMN_LABELS["grace_days"], issues)

    return SettlementTerms(
        # Unrecognised enumeration text is kept so the validator can name it.
        basis=parse_settlement_basis(basis_raw) or (_text(basis_raw).lower() or None),
        t_plus_days=_read_int(_first(row, "t_plus_days"), COLUMN_LABELS["t_plus_days"], issues),
        weekly_weekday=weekdays["weekly_weekday"],
        bi_weekly_weekday=weekdays["bi_weekly_weekday"],
        bi_weekly_which=parse_bi_weekly_which(which_raw) or (_text(which_raw).lower() or None),
        monthly_day=parse_monthly_day(monthly_raw) or (_text(monthly_raw).lower() or None),
        grace_days=grace if grace is not None else settings.default_grace_days,
        settlement_cycle_days=_read_int(
            _first(row, "settlement_cycle_days"), COLUMN_LABELS["settlement_cycle_days"], issues
        ),
    )


def normalize_row(row: Mapping[str, Any], *, settings: Settings | None = None) -> NormalizationResult:
    """
    Assemble a card from a row already passed through ``normalize_headers``.

    Absent fields stay unset except GST, TCS and grace days, which fall back to
    the configured defaults.
    """
    settings = settings or DEFAULT_SETTINGS
    issues: list[RowIssue] = []

    type_raw = _first(row, "commission_type", "type")
    commission_type = parse_commission_type(type_raw) or _text(type_raw).lower()

    commission_percent = None
    slabs: list[NormalizedSlab] = []
    if commission_type == "flat":
        commission_percent = _read_float(
            _first(row, "commission_percent", "commission"),
            COLUMN_LABELS["commission_percent"], issues, percent=True,
        )
    elif commission_type == "tiered":
        slabs = extract_slabs(row, issues, max_inline=settings.max_inline_slabs)

    fees = extract_fees(row, issues, max_inline=settings.max_inline_fees)

    dates = {}
    for key, fallbacks in (("effective_from", ("valid_from", "date_from")),
                           ("effective_to", ("valid_to", "date_to"))):
        raw = _first(row, key, *fallbacks)
        dates[key] = parse_date(raw)
        if raw is not None and dates[key] is None:
            issues.append(_invalid_date(COLUMN_LABELS[key], raw))

    gst = _read_float(_first(row, "gst_percent"), COLUMN_LABELS["gst_percent"], issues, percent=True)
    tcs = _read_float(_first(row, "tcs_percent"), COLUMN_LABELS["tcs_percent"], issues, percent=True)

    price_keys = ("global_min_price", "global_max_price")
    if commission_type != "tiered":
        price_fallbacks = {"global_min_price": ("min_price",), "global_max_price": ("max_price",)}
    else:
        price_fallbacks = {"global_min_price": (), "global_max_price": ()}
    prices = {
        key: _read_float(_first(row, key, *price_fallbacks[key]), COLUMN_LABELS[key], issues)
        for key in price_keys
    }

    card = NormalizedCard(
        id=_text(row.get("id")) or None,
        platform_id=canonical_id(_first(row, "platform_id", "platform", "marketplace")),
        category_id=canonical_id(_first(row, "category_id", "category")),
        commission_type=commission_type,
        commission_percent=commission_percent,
        slabs=tuple(slabs),
        fees=tuple(fees),
        effective_from=dates["effective_from"],
        effective_to=dates["effective_to"],
        archived=False,
        gst_percent=gst if gst is not None else settings.default_gst_percent,
        tcs_percent=tcs if tcs is not None else settings.default_tcs_percent,
        settlement=_read_settlement(row, issues, settings),
        global_min_price=prices["global_min_price"],
        global_max_price=prices["global_max_price"],
        notes=_text(row.get("notes")) or None,
    )
    return NormalizationResult(card=card, issues=issues)


def normalize_payload(payload: Mapping[str, Any], *, settings: Settings | None = None) -> NormalizationResult:
    """Header-normalize and then normalize a raw row or form payload."""
    return normalize_row(normalize_headers(payload), settings=settings)
