"""
parsers.py

Typed readers for rate-card cells. None of these raise on bad input: numbers
come back as NaN (or None from the ``maybe_`` helpers), dates and enumerations
as None, so the normalizer can collect every problem on a row before
reporting it.
"""

from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime, timedelta
from typing import Any

import pandas as pd

NUMBER_RE = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)$")
NUMBER_NOISE_RE = re.compile(r"[%₹$€£,\s]")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SLASH_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

SERIAL_EPOCH = date(1899, 12, 30)
SERIAL_MIN = 1
SERIAL_MAX = 2958465  # 9999-12-31

WEEKDAY_NAMES = {
    "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6, "sun": 7,
}

COMMISSION_TYPE_ALIASES = {
    "flat": "flat",
    "flatrate": "flat",
    "fixed": "flat",
    "tiered": "tiered",
    "tier": "tiered",
    "slab": "tiered",
    "slabs": "tiered",
    "slabbased": "tiered",
}

SETTLEMENT_BASIS_ALIASES = {
    "tplus": "t_plus",
    "tplusdays": "t_plus",
    "tdays": "t_plus",
    "t": "t_plus",
    "weekly": "weekly",
    "week": "weekly",
    "biweekly": "bi_weekly",
    "fortnightly": "bi_weekly",
    "monthly": "monthly",
    "month": "monthly",
}

FEE_KIND_ALIASES = {
    "percent": "percent",
    "percentage": "percent",
    "pct": "percent",
    "amount": "amount",
    "flat": "amount",
    "fixed": "amount",
    "inr": "amount",
    "rs": "amount",
}

BI_WEEKLY_WHICH_ALIASES = {
    "first": "first",
    "1": "first",
    "1st": "first",
    "second": "second",
    "2": "second",
    "2nd": "second",
}

END_OF_MONTH_ALIASES = {"eom", "endofmonth", "lastday", "lastdayofmonth", "monthend"}


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def enum_key(value: Any) -> str:
    text = str(value).lower().replace("+", " plus ")
    return re.sub(r"[^a-z0-9]+", "", text)


# ══════════════════════════════════════════════════════════════════════════════
# NUMBERS
# ══════════════════════════════════════════════════════════════════════════════

def clean_number(value: Any) -> float:
    """
    Parse a numeric cell, tolerating currency symbols, "%", commas and spaces.

    Anything else in the text makes the whole value NaN; there is no partial
    parse of inputs like "12abc".
    """
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else math.nan
    cleaned = NUMBER_NOISE_RE.sub("", str(value))
    if not cleaned or not NUMBER_RE.fullmatch(cleaned):
        return math.nan
    number = float(cleaned)
    return number if math.isfinite(number) else math.nan


def maybe_parse_number(value: Any) -> float | None:
    if is_blank(value):
        return None
    number = clean_number(value)
    return None if math.isnan(number) else number


def parse_percent(value: Any) -> float:
    if is_blank(value):
        return math.nan
    return clean_number(value)


def parse_amount(value: Any) -> float:
    if is_blank(value):
        return math.nan
    return clean_number(value)


def parse_int_field(value: Any) -> int | None:
    """Integral counts such as T+ days; "7" and "7.0" parse, "7.5" does not."""
    number = maybe_parse_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


# ══════════════════════════════════════════════════════════════════════════════
# DATES
# ══════════════════════════════════════════════════════════════════════════════

def serial_to_date(number: float) -> date | None:
    """Spreadsheet serial day count to a date; the fractional time part is dropped."""
    if not math.isfinite(number) or not SERIAL_MIN <= number <= SERIAL_MAX:
        return None
    return SERIAL_EPOCH + timedelta(days=int(number))


def _slash_date(first: int, second: int, year: int) -> date | None:
    for month, day in ((first, second), (second, first)):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    return None


def parse_date(value: Any) -> date | None:
    """
    Read a validity date from whatever the spreadsheet produced.

    Order: native date objects, ``YYYY-MM-DD``, ``M/D/YYYY`` then ``D/M/YYYY``,
    spreadsheet serial numbers, then a general pandas parse.
    """
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return serial_to_date(float(value))

    text = str(value).strip()

    if ISO_DATE_RE.fullmatch(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    match = SLASH_DATE_RE.fullmatch(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        return _slash_date(first, second, year)

    if NUMBER_RE.fullmatch(text):
        serial = serial_to_date(float(text))
        if serial is not None:
            return serial

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(text, errors="coerce")
        except (TypeError, ValueError, OverflowError):
            return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


# ══════════════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ══════════════════════════════════════════════════════════════════════════════

def parse_commission_type(value: Any) -> str | None:
    if is_blank(value):
        return None
    return COMMISSION_TYPE_ALIASES.get(enum_key(value))


def parse_settlement_basis(value: Any) -> str | None:
    if is_blank(value):
        return None
    return SETTLEMENT_BASIS_ALIASES.get(enum_key(value))


def parse_fee_kind(value: Any) -> str | None:
    if is_blank(value):
        return None
    text = str(value).strip()
    if text == "%":
        return "percent"
    if text == "₹":
        return "amount"
    return FEE_KIND_ALIASES.get(enum_key(text))


def parse_bi_weekly_which(value: Any) -> str | None:
    if is_blank(value):
        return None
    number = parse_int_field(value)
    key = str(number) if number is not None else enum_key(value)
    return BI_WEEKLY_WHICH_ALIASES.get(key)


def parse_monthly_day(value: Any) -> str | None:
    """Day of month as text, "1".."31", or "eom" for the last day."""
    if is_blank(value):
        return None
    if enum_key(value) in END_OF_MONTH_ALIASES:
        return "eom"
    day = parse_int_field(value)
    if day is None or not 1 <= day <= 31:
        return None
    return str(day)


def parse_weekday(value: Any) -> int | None:
    """ISO weekday, 1 = Monday; accepts numbers or names."""
    if is_blank(value):
        return None
    number = parse_int_field(value)
    if number is not None:
        return number if 1 <= number <= 7 else None
    key = enum_key(value)[:3]
    return WEEKDAY_NAMES.get(key)
