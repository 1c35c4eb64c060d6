from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any

from ratecard_recon.parsers import parse_bi_weekly_which, parse_monthly_day

COMMISSION_TYPES = ("flat", "tiered")
FEE_KINDS = ("percent", "amount")
SETTLEMENT_BASES = ("t_plus", "weekly", "bi_weekly", "monthly")
BI_WEEKLY_WHICH = ("first", "second")
ROW_STATUSES = ("valid", "similar", "duplicate", "error")


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _optional_text(value: Any) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    return str(value).strip().lower()


@dataclass(frozen=True)
class NormalizedFee:
    code: str
    kind: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"fee_code": self.code, "fee_type": self.kind, "fee_value": self.value}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "NormalizedFee":
        return cls(
            code=str(payload.get("fee_code", payload.get("code", ""))).strip(),
            kind="amount" if payload.get("fee_type", payload.get("kind")) == "amount" else "percent",
            value=float(payload.get("fee_value", payload.get("value")) or 0),
        )


@dataclass(frozen=True)
class NormalizedSlab:
    min_price: float
    max_price: float | None
    commission_percent: float

    @property
    def upper_bound(self) -> float:
        return float("inf") if self.max_price is None else self.max_price

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_price": self.min_price,
            "max_price": self.max_price,
            "commission_percent": self.commission_percent,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "NormalizedSlab":
        return cls(
            min_price=float(payload.get("min_price") or 0),
            max_price=_optional_float(payload.get("max_price")),
            commission_percent=float(payload.get("commission_percent") or 0),
        )


@dataclass(frozen=True)
class SettlementTerms:
    basis: str | None = None
    t_plus_days: int | None = None
    weekly_weekday: int | None = None
    bi_weekly_weekday: int | None = None
    bi_weekly_which: str | None = None
    monthly_day: str | None = None
    grace_days: int = 0
    settlement_cycle_days: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "settlement_basis": self.basis,
            "t_plus_days": self.t_plus_days,
            "weekly_weekday": self.weekly_weekday,
            "bi_weekly_weekday": self.bi_weekly_weekday,
            "bi_weekly_which": self.bi_weekly_which,
            "monthly_day": self.monthly_day,
            "grace_days": self.grace_days,
            "settlement_cycle_days": self.settlement_cycle_days,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SettlementTerms":
        return cls(
            basis=payload.get("settlement_basis") or None,
            t_plus_days=_optional_int(payload.get("t_plus_days")),
            weekly_weekday=_optional_int(payload.get("weekly_weekday")),
            bi_weekly_weekday=_optional_int(payload.get("bi_weekly_weekday")),
            bi_weekly_which=(
                parse_bi_weekly_which(payload.get("bi_weekly_which"))
                or _optional_text(payload.get("bi_weekly_which"))
            ),
            monthly_day=parse_monthly_day(payload.get("monthly_day")) or _optional_text(payload.get("monthly_day")),
            grace_days=_optional_int(payload.get("grace_days")) or 0,
            settlement_cycle_days=_optional_int(payload.get("settlement_cycle_days")),
        )


@dataclass(frozen=True)
class NormalizedCard:
    """
    One rate card in comparable form.

    Only identity, commission terms, fees and the validity window take part in
    overlap comparison. Tax, settlement and price-guard fields ride along so the
    card can be persisted as uploaded.
    """

    id: str | None
    platform_id: str
    category_id: str
    commission_type: str
    commission_percent: float | None
    slabs: tuple[NormalizedSlab, ...]
    fees: tuple[NormalizedFee, ...]
    effective_from: date | None
    effective_to: date | None
    archived: bool = False
    gst_percent: float | None = 18.0
    tcs_percent: float | None = 1.0
    settlement: SettlementTerms = field(default_factory=SettlementTerms)
    global_min_price: float | None = None
    global_max_price: float | None = None
    notes: str | None = None

    def with_id(self, card_id: str | None) -> "NormalizedCard":
        return replace(self, id=card_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platform_id": self.platform_id,
            "category_id": self.category_id,
            "commission_type": self.commission_type,
            "commission_percent": self.commission_percent,
            "slabs": [slab.to_dict() for slab in self.slabs],
            "fees": [fee.to_dict() for fee in self.fees],
            "effective_from": _iso(self.effective_from),
            "effective_to": _iso(self.effective_to),
            "archived": self.archived,
            "gst_percent": self.gst_percent,
            "tcs_percent": self.tcs_percent,
            **self.settlement.to_dict(),
            "global_min_price": self.global_min_price,
            "global_max_price": self.global_max_price,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "NormalizedCard":
        commission_type = "tiered" if payload.get("commission_type") == "tiered" else "flat"
        slabs = sorted(
            (NormalizedSlab.from_dict(item) for item in payload.get("slabs") or []),
            key=lambda slab: slab.min_price,
        )
        fees = sorted(
            (NormalizedFee.from_dict(item) for item in payload.get("fees") or []),
            key=lambda fee: (fee.code, fee.kind),
        )
        return cls(
            id=payload.get("id"),
            platform_id=canonical_id(payload.get("platform_id")),
            category_id=canonical_id(payload.get("category_id")),
            commission_type=commission_type,
            commission_percent=(
                _optional_float(payload.get("commission_percent")) if commission_type == "flat" else None
            ),
            slabs=tuple(slabs) if commission_type == "tiered" else (),
            fees=tuple(fees),
            effective_from=_from_iso(payload.get("effective_from")),
            effective_to=_from_iso(payload.get("effective_to")),
            archived=bool(payload.get("archived")),
            gst_percent=_optional_float(payload.get("gst_percent")),
            tcs_percent=_optional_float(payload.get("tcs_percent")),
            settlement=SettlementTerms.from_dict(payload),
            global_min_price=_optional_float(payload.get("global_min_price")),
            global_max_price=_optional_float(payload.get("global_max_price")),
            notes=payload.get("notes") or None,
        )


def canonical_id(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


@dataclass(frozen=True)
class ConflictRef:
    id: str
    label: str
    date_range: str
    kind: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "date_range": self.date_range, "type": self.kind}


@dataclass(frozen=True)
class Suggestion:
    kind: str
    new_from: date
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, "new_from": self.new_from.isoformat(), "reason": self.reason}


@dataclass(frozen=True)
class RowResult:
    row_number: int
    row_id: str
    status: str
    message: str
    tooltip: str | None = None
    conflicting_card: ConflictRef | None = None
    archived_match: ConflictRef | None = None
    suggestions: tuple[Suggestion, ...] = ()
    payload: NormalizedCard | None = None

    @property
    def committable(self) -> bool:
        return self.status in {"valid", "similar"} and self.payload is not None

    def to_dict(self) -> dict[str, Any]:
        payload = self.payload
        return {
            "row": self.row_number,
            "row_id": self.row_id,
            "status": self.status,
            "message": self.message,
            "tooltip": self.tooltip,
            "existing": self.conflicting_card.to_dict() if self.conflicting_card else None,
            "archived_match": self.archived_match.to_dict() if self.archived_match else None,
            "suggestions": [item.to_dict() for item in self.suggestions],
            "platform_id": payload.platform_id if payload else None,
            "category_id": payload.category_id if payload else None,
            "payload": payload.to_dict() if payload else None,
        }


class CommitMode(str, Enum):
    VALID_ONLY = "valid_only"
    VALID_AND_SIMILAR = "valid_and_similar"


@dataclass(frozen=True)
class ParseResult:
    analysis_id: str
    file_name: str | None
    uploaded_at: str
    rows: tuple[RowResult, ...]
    warnings: tuple[str, ...] = ()

    @property
    def summary(self) -> dict[str, int]:
        counts = Counter(row.status for row in self.rows)
        return {"total": len(self.rows), **{status: counts.get(status, 0) for status in ROW_STATUSES}}

    def row(self, row_id: str) -> RowResult | None:
        for result in self.rows:
            if result.row_id == row_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "file_name": self.file_name,
            "uploaded_at": self.uploaded_at,
            "summary": self.summary,
            "warnings": list(self.warnings),
            "rows": [row.to_dict() for row in self.rows],
        }


@dataclass(frozen=True)
class CommitOutcome:
    row_id: str
    row_number: int | None
    status: str  # "imported" | "skipped"
    id: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"row_id": self.row_id, "row": self.row_number, "status": self.status}
        if self.id is not None:
            payload["id"] = self.id
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass(frozen=True)
class CommitResult:
    analysis_id: str
    results: tuple[CommitOutcome, ...]

    @property
    def summary(self) -> dict[str, int]:
        inserted = sum(1 for item in self.results if item.status == "imported")
        return {"inserted": inserted, "skipped": len(self.results) - inserted}

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "summary": self.summary,
            "results": [item.to_dict() for item in self.results],
        }
