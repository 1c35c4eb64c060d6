"""
template.py

Downloadable CSV templates for sellers filling in rate cards by hand.

The flat template carries the commission percent and the named fee columns.
The tiered template keeps one row per card and spreads the slabs over
numbered ``Slab N`` columns, so a tiered card never spans several rows.
"""

from __future__ import annotations

import csv
import io
from typing import Iterable

TEMPLATE_TYPES = ("flat", "tiered")

FLAT_HEADERS = [
    "Marketplace",
    "Category",
    "Commission Type",
    "Effective From",
    "Effective To",
    "GST %",
    "TCS %",
    "Settlement Basis",
    "T+ Days",
    "Settlement Cycle (Days)",
    "Grace Days",
    "Notes",
    "Commission %",
    "Storage Fee",
    "Logistics Fee",
    "Tech Fee",
    "Return Fee",
]

FLAT_ROWS = [
    [
        "Amazon", "Apparel", "Flat", "2025-01-01", "2025-03-31", "18", "1", "T+Days",
        "7", "7", "2", "Seasonal offer", "10", "0", "0", "2", "3",
    ],
]

TIERED_HEADERS = [
    "Marketplace",
    "Category",
    "Commission Type",
    "Slab 1 Min Price",
    "Slab 1 Max Price",
    "Slab 1 Commission %",
    "Slab 2 Min Price",
    "Slab 2 Max Price",
    "Slab 2 Commission %",
    "Effective From",
    "Effective To",
    "GST %",
    "TCS %",
    "Settlement Basis",
    "T+ Days",
    "Settlement Cycle (Days)",
    "Grace Days",
    "Storage Fee",
    "Logistics Fee",
    "Tech Fee",
    "Return Fee",
    "Notes",
]

TIERED_ROWS = [
    [
        "Flipkart", "Electronics", "Tiered", "0", "1000", "10", "1000", "", "8",
        "2025-01-01", "2025-03-31", "18", "1", "T+Days", "7", "7", "2",
        "0", "25", "2", "3", "Sample tiered card",
    ],
]


def render_csv(rows: Iterable[Iterable[object]]) -> str:
    """CRLF-terminated CSV, quoting only the cells that need it."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\r\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerows(rows)
    return buffer.getvalue()


def build_template(kind: str = "flat") -> tuple[str, str]:
    """Return ``(filename, csv_text)`` for a ``flat`` or ``tiered`` template."""
    kind = (kind or "flat").strip().lower()
    if kind not in TEMPLATE_TYPES:
        raise ValueError(f"Unknown template type '{kind}' (use flat or tiered)")
    if kind == "tiered":
        return "rate-card-template-tiered.csv", render_csv([TIERED_HEADERS, *TIERED_ROWS])
    return "rate-card-template-flat.csv", render_csv([FLAT_HEADERS, *FLAT_ROWS])
