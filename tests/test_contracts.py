from __future__ import annotations

import json
import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from ratecard_recon.contracts import (
    COMMIT,
    CONTRACT_VERSIONS,
    PREVIEW,
    contract_header,
    import_run_summary,
    utc_timestamp,
    with_contract,
)
from ratecard_recon.headers import reset_unmapped_warnings
from ratecard_recon.importer import RateCardImporter
from ratecard_recon.store import InMemoryRateCardStore

SAMPLE_CSV = ROOT / "sample-data" / "rate_cards_sample.csv"


class ContractTests(unittest.TestCase):
    def setUp(self):
        reset_unmapped_warnings()

    def test_every_contract_has_a_version(self):
        for name in CONTRACT_VERSIONS:
            with self.subTest(contract=name):
                self.assertEqual(contract_header(name), {"name": name, "version": "1.0.0"})
        with self.assertRaisesRegex(ValueError, "Unknown contract"):
            contract_header("ratecard_recon.unknown")

    def test_with_contract_puts_the_contract_first(self):
        payload = with_contract("ratecard_recon.preview", {"rows": []})
        self.assertEqual(list(payload), ["contract", "rows"])

    def test_timestamps_are_utc_to_the_second(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        moment = datetime(2025, 1, 1, 5, 30, 15, 999999, tzinfo=ist)
        self.assertEqual(utc_timestamp(moment), "2025-01-01T00:00:15Z")
        self.assertRegex(utc_timestamp(), r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

    def test_import_run_summary_ties_the_commit_to_its_preview(self):
        importer = RateCardImporter(InMemoryRateCardStore())
        rows = [
            {"Marketplace": "Amazon", "Category": "Apparel", "Commission Type": "Flat", "Commission %": "12",
             "Effective From": "2025-01-01", "Settlement Basis": "T+Days", "T+ Days": "7", "Owner": "ops"},
        ]
        preview = importer.analyze(rows, analysis_id="cards-1")
        result = importer.commit(preview)

        run = import_run_summary(preview, result, input_path=Path("cards.csv"), dry_run=True)

        self.assertEqual(run["status"], "dry_run")
        self.assertEqual(run["analysis_id"], "cards-1")
        self.assertEqual(run["input_file"], "cards.csv")
        self.assertIsNone(run["output_file"])
        self.assertEqual(run["metrics"], {"rows": 1, "inserted": 1, "skipped": 0})
        self.assertEqual(run["warnings"], ["Unmapped column 'Owner' was ignored"])
        self.assertEqual(run["warnings_count"], 1)

    def test_preview_and_commit_payloads_are_json_serializable(self):
        importer = RateCardImporter(InMemoryRateCardStore())
        preview = importer.analyze_file(SAMPLE_CSV, analysis_id="sample")
        commit = importer.commit(preview)

        preview_payload = json.loads(json.dumps(with_contract(PREVIEW, preview.to_dict())))
        commit_payload = json.loads(json.dumps(with_contract(COMMIT, commit.to_dict())))

        self.assertEqual(preview_payload["contract"]["name"], "ratecard_recon.preview")
        self.assertEqual(preview_payload["file_name"], "rate_cards_sample.csv")
        self.assertEqual(
            preview_payload["summary"],
            {"total": 6, "valid": 2, "similar": 1, "duplicate": 1, "error": 2},
        )
        first = preview_payload["rows"][0]
        self.assertEqual(first["row"], 2)
        self.assertEqual(first["row_id"], "sample:1")
        self.assertEqual(first["payload"]["effective_from"], "2025-01-01")

        similar = preview_payload["rows"][1]
        self.assertEqual(similar["existing"]["id"], "sample:1")
        self.assertEqual(similar["existing"]["type"], "similar")
        self.assertEqual(similar["suggestions"][0]["new_from"], "2025-04-01")

        self.assertEqual(commit_payload["summary"], {"inserted": 2, "skipped": 1})
        skipped = [item for item in commit_payload["results"] if item["status"] == "skipped"]
        self.assertEqual(skipped, [
            {"row_id": "sample:2", "row": 3, "status": "skipped", "message": "Similar rows require confirmation"},
        ])


if __name__ == "__main__":
    unittest.main()
