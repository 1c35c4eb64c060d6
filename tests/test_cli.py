from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "ratecard_recon.cli"]
FIXED_STAMP = "20260301T010203Z"
SAMPLE_CSV = "sample-data/rate_cards_sample.csv"


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["RATECARD_RECON_OUTPUT_STAMP"] = FIXED_STAMP
    merged_env["PYTHONIOENCODING"] = "utf-8"
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        encoding="utf-8",
        env=merged_env,
    )


class RateCardCliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.store = str(self.tmpdir / "store.json")

    def tearDown(self):
        self._tmp.cleanup()

    def import_sample(self) -> dict:
        proc = run_cli("import", SAMPLE_CSV, "--store", self.store, "--json")
        self.assertEqual(proc.returncode, 4, proc.stderr)
        return json.loads(proc.stdout)

    def test_analyze_sample_returns_exit_3_with_machine_json(self):
        proc = run_cli("analyze", SAMPLE_CSV, "--store", self.store, "--json")
        self.assertEqual(proc.returncode, 3, proc.stderr)
        self.assertEqual(proc.stderr.strip(), "")

        preview = json.loads(proc.stdout)
        self.assertEqual(preview["contract"]["name"], "ratecard_recon.preview")
        self.assertEqual(preview["analysis_id"], f"rate_cards_sample-{FIXED_STAMP}")
        self.assertEqual(preview["uploaded_at"], "1970-01-01T00:00:00Z")
        self.assertEqual(preview["summary"], {"total": 6, "valid": 2, "similar": 1, "duplicate": 1, "error": 2})
        self.assertEqual([row["row"] for row in preview["rows"]], [2, 3, 4, 5, 6, 7])
        self.assertFalse(Path(self.store).exists())

    def test_analyze_human_output_and_written_preview(self):
        output = self.tmpdir / "preview.json"
        proc = run_cli("analyze", SAMPLE_CSV, "--store", self.store, "--output", str(output))
        self.assertEqual(proc.returncode, 3, proc.stderr)
        self.assertIn("Preview written:", proc.stderr)
        self.assertIn("Row 5 [duplicate] Exact duplicate of Flipkart • Electronics", proc.stderr)
        self.assertEqual(json.loads(output.read_text(encoding="utf-8"))["summary"]["error"], 2)

    def test_import_inserts_valid_rows_and_reports_skips(self):
        payload = self.import_sample()
        self.assertEqual(payload["contract"]["name"], "ratecard_recon.commit")
        self.assertEqual(payload["summary"], {"inserted": 2, "skipped": 1})
        self.assertEqual(payload["run"]["status"], "ok")
        self.assertEqual(payload["run"]["generated_at"], "1970-01-01T00:00:00Z")
        self.assertEqual(payload["run"]["metrics"]["rows"], 6)

        again = run_cli("import", SAMPLE_CSV, "--store", self.store, "--rows", "2", "--json")
        self.assertEqual(again.returncode, 4, again.stderr)
        (outcome,) = json.loads(again.stdout)["results"]
        self.assertEqual(outcome["row"], 2)
        self.assertEqual(outcome["status"], "skipped")
        self.assertIn("Row is not eligible for import", outcome["message"])

    def test_import_with_similar_rows_included(self):
        proc = run_cli("import", SAMPLE_CSV, "--store", self.store, "--include-similar", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(json.loads(proc.stdout)["summary"], {"inserted": 3, "skipped": 0})

    def test_import_dry_run_does_not_write_the_store(self):
        proc = run_cli("import", SAMPLE_CSV, "--store", self.store, "--dry-run")
        self.assertEqual(proc.returncode, 4, proc.stderr)
        self.assertIn("ratecard-recon import (dry run)", proc.stderr)
        self.assertIn("Inserted: 2", proc.stderr)
        self.assertFalse(Path(self.store).exists())

    def test_import_unknown_row_number_returns_exit_1(self):
        proc = run_cli("import", SAMPLE_CSV, "--store", self.store, "--rows", "99")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unknown row number(s): 99", proc.stderr)

    def test_list_reports_statuses_and_metrics(self):
        self.import_sample()
        proc = run_cli("list", "--store", self.store, "--today", "2025-02-15", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        listing = json.loads(proc.stdout)
        self.assertEqual(listing["contract"]["name"], "ratecard_recon.listing")
        self.assertEqual(listing["as_of"], "2025-02-15")
        self.assertEqual(listing["metrics"]["total"], 2)
        self.assertEqual(listing["metrics"]["active"], 2)
        self.assertEqual(listing["metrics"]["avg_flat_commission"], 12.0)
        self.assertEqual(listing["metrics"]["flat_count"], 1)
        self.assertEqual([item["label"] for item in listing["rate_cards"]], ["Amazon • Apparel", "Flipkart • Electronics"])

    def test_restore_refuses_to_resurrect_a_duplicate(self):
        payload = self.import_sample()
        amazon_id = next(item["id"] for item in payload["results"] if item["row"] == 2)

        archived = run_cli("archive", amazon_id, "--store", self.store, "--json")
        self.assertEqual(archived.returncode, 0, archived.stderr)
        self.assertTrue(json.loads(archived.stdout)["archived"])

        upload = self.tmpdir / "again.csv"
        upload.write_text(
            "Marketplace,Category,Commission Type,Commission %,Effective From,Effective To,"
            "Settlement Basis,T+ Days,Tech Fee\n"
            "Amazon,Apparel,Flat,12,2025-01-01,2025-03-31,T+Days,7,2\n",
            encoding="utf-8",
        )
        reimport = run_cli("import", str(upload), "--store", self.store, "--json")
        self.assertEqual(reimport.returncode, 0, reimport.stderr)

        restore = run_cli("restore", amazon_id, "--store", self.store)
        self.assertEqual(restore.returncode, 5)
        self.assertIn("Cannot restore: exact duplicate exists for Amazon • Apparel", restore.stderr)

    def test_delete_then_delete_again(self):
        payload = self.import_sample()
        card_id = payload["results"][0]["id"]
        first = run_cli("delete", card_id, "--store", self.store)
        self.assertEqual(first.returncode, 0, first.stderr)
        second = run_cli("delete", card_id, "--store", self.store)
        self.assertEqual(second.returncode, 1)
        self.assertIn("Rate card not found", second.stderr)

    def test_missing_and_unreadable_inputs(self):
        missing = run_cli("analyze", "sample-data/missing.csv", "--store", self.store)
        self.assertEqual(missing.returncode, 1)
        self.assertIn("File not found", missing.stderr)

        empty = self.tmpdir / "empty.csv"
        empty.write_text("", encoding="utf-8")
        unreadable = run_cli("analyze", str(empty), "--store", self.store)
        self.assertEqual(unreadable.returncode, 2)
        self.assertIn("Upload is empty", unreadable.stderr)

    def test_template_to_stdout_and_directory(self):
        stdout = run_cli("template", "tiered")
        self.assertEqual(stdout.returncode, 0, stdout.stderr)
        self.assertTrue(stdout.stdout.startswith("Marketplace,Category,Commission Type,Slab 1 Min Price"))

        written = run_cli("template", "flat", "--output", str(self.tmpdir))
        self.assertEqual(written.returncode, 0, written.stderr)
        template_path = self.tmpdir / "rate-card-template-flat.csv"
        self.assertIn(b"\r\n", template_path.read_bytes())

    def test_config_init_writes_file_once(self):
        config_path = self.tmpdir / "ratecard-recon.json"
        first = run_cli("config", "init", "--path", str(config_path))
        self.assertEqual(first.returncode, 0, first.stderr)
        self.assertEqual(json.loads(config_path.read_text(encoding="utf-8"))["commit_chunk_size"], 50)

        second = run_cli("config", "init", "--path", str(config_path))
        self.assertEqual(second.returncode, 1)
        self.assertIn("Refusing to overwrite", second.stderr)

    def test_explain_outputs_stable_rule_text(self):
        proc = run_cli("explain", "similar", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["rule_id"], "similar")
        self.assertTrue(payload["importable"])

        unknown = run_cli("explain", "banana")
        self.assertEqual(unknown.returncode, 1)
        self.assertIn("Unknown rule id", unknown.stderr)

    def test_version_prints_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), "0.1.0")


if __name__ == "__main__":
    unittest.main()
