"""
contracts.py

Names and versions stamped on every JSON document ratecard-recon writes, so a
consumer can tell a preview from a commit report or a store file and refuse a
version it does not understand.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ratecard_recon.models import CommitResult, ParseResult

PREVIEW = "ratecard_recon.preview"
COMMIT = "ratecard_recon.commit"
STORE = "ratecard_recon.store"
LISTING = "ratecard_recon.listing"

CONTRACT_VERSIONS = {
    PREVIEW: "1.0.0",
    COMMIT: "1.0.0",
    STORE: "1.0.0",
    LISTING: "1.0.0",
}

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Second-precision UTC time with a ``Z`` suffix; defaults to now."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def contract_header(name: str) -> dict[str, str]:
    try:
        version = CONTRACT_VERSIONS[name]
    except KeyError:
        raise ValueError(f"Unknown contract '{name}'") from None
    return {"name": name, "version": version}


def with_contract(name: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"contract": contract_header(name), **payload}


def import_run_summary(
    preview: ParseResult,
    result: CommitResult,
    *,
    input_path: Path,
    output_path: Optional[Path] = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    The ``run`` block of a commit report.

    Ties the commit back to the analysis it came from and repeats the preview
    warnings, so a report read on its own still says which columns were dropped.
    """
    return {
        "tool": "ratecard-recon",
        "command": "import",
        "status": "dry_run" if dry_run else "ok",
        "generated_at": utc_timestamp(),
        "analysis_id": preview.analysis_id,
        "input_file": str(input_path),
        "output_file": str(output_path) if output_path else None,
        "metrics": {"rows": preview.summary["total"], **result.summary},
        "warnings_count": len(preview.warnings),
        "warnings": list(preview.warnings),
    }
