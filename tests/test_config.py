import json
import sys
import tempfile
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from ratecard_recon.config import DEFAULT_SETTINGS, Settings, load_settings, settings_from_mapping, starter_config


class LoadSettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = load_settings(env={})
        self.assertEqual(settings.commit_chunk_size, 50)
        self.assertEqual(settings.default_gst_percent, 18.0)

    def test_file_then_environment(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "ratecard-recon.json"
            path.write_text(json.dumps({"commit_chunk_size": 5, "default_tcs_percent": 0.5}), encoding="utf-8")
            settings = load_settings(path, env={"RATECARD_RECON_CHUNK_SIZE": "2", "RATECARD_RECON_STORE": "cards.json"})

        self.assertEqual(settings.commit_chunk_size, 2)
        self.assertEqual(settings.default_tcs_percent, 0.5)
        self.assertEqual(settings.store_path, "cards.json")

    def test_explicit_path_must_exist(self):
        with self.assertRaises(FileNotFoundError):
            load_settings("missing-config.json", env={})

    def test_invalid_values_are_rejected(self):
        with self.assertRaisesRegex(ValueError, "Invalid value for setting 'commit_chunk_size'"):
            settings_from_mapping({"commit_chunk_size": "many"})
        with self.assertRaisesRegex(ValueError, "must be at least 1"):
            settings_from_mapping({"commit_chunk_size": 0})
        with self.assertRaisesRegex(ValueError, "Unknown setting"):
            settings_from_mapping({"chunk": 10})

    def test_starter_config_round_trips(self):
        values = json.loads(starter_config())
        self.assertEqual(settings_from_mapping(values), DEFAULT_SETTINGS)
        self.assertEqual(settings_from_mapping({}, Settings(max_inline_fees=3)).max_inline_fees, 3)


if __name__ == "__main__":
    unittest.main()
