import sys
import unittest
from dataclasses import replace
from datetime import date
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from ratecard_recon.models import NormalizedCard, NormalizedFee, NormalizedSlab, SettlementTerms
from ratecard_recon.overlap import (
    analyze_card,
    build_suggestions,
    describe_commission,
    detect_overlap,
    format_date_range,
    format_label,
    similar_summary,
    windows_overlap,
)


def card(card_id=None, **overrides) -> NormalizedCard:
    base = NormalizedCard(
        id=card_id,
        platform_id="amazon",
        category_id="apparel",
        commission_type="flat",
        commission_percent=12.0,
        slabs=(),
        fees=(),
        effective_from=date(2025, 1, 1),
        effective_to=date(2025, 3, 31),
        settlement=SettlementTerms(basis="t_plus", t_plus_days=7),
    )
    return replace(base, **overrides)


class WindowOverlapTests(unittest.TestCase):
    def test_overlap_is_symmetric_and_inclusive(self):
        jan_to_mar = (date(2025, 1, 1), date(2025, 3, 31))
        mar_to_may = (date(2025, 3, 31), date(2025, 5, 31))
        apr_open = (date(2025, 4, 1), None)

        self.assertTrue(windows_overlap(*jan_to_mar, *mar_to_may))
        self.assertTrue(windows_overlap(*mar_to_may, *jan_to_mar))
        self.assertFalse(windows_overlap(*jan_to_mar, *apr_open))
        self.assertFalse(windows_overlap(*apr_open, *jan_to_mar))

    def test_open_ended_windows_run_forever(self):
        self.assertTrue(windows_overlap(date(2025, 1, 1), None, date(2030, 1, 1), None))
        self.assertTrue(windows_overlap(date(2025, 1, 1), None, date(2020, 1, 1), date(2025, 1, 1)))


class DetectOverlapTests(unittest.TestCase):
    def test_identical_terms_and_window_are_exact(self):
        overlap = detect_overlap(card(), [card("existing")])
        self.assertEqual(overlap.kind, "exact")
        self.assertEqual(overlap.existing.id, "existing")
        self.assertTrue(overlap.reason.startswith("exact duplicate with amazon/apparel"))

    def test_different_window_or_terms_are_similar(self):
        shifted = card("a", effective_from=date(2025, 2, 1), effective_to=date(2025, 4, 30))
        self.assertEqual(detect_overlap(card(), [shifted]).kind, "similar")

        other_rate = card("b", commission_percent=14.0)
        self.assertEqual(detect_overlap(card(), [other_rate]).kind, "similar")

        with_fee = card("c", fees=(NormalizedFee("shipping", "percent", 2.0),))
        self.assertEqual(detect_overlap(card(), [with_fee]).kind, "similar")

    def test_commission_tolerance(self):
        nearly = card("a", commission_percent=12.0 + 1e-9)
        self.assertEqual(detect_overlap(card(), [nearly]).kind, "exact")

    def test_tiered_cards_compare_slabs(self):
        slabs = (NormalizedSlab(0, 1000, 10), NormalizedSlab(1000, None, 8))
        tiered = card(commission_type="tiered", commission_percent=None, slabs=slabs)
        self.assertEqual(detect_overlap(tiered, [replace(tiered, id="t")]).kind, "exact")
        changed = replace(tiered, id="t", slabs=(NormalizedSlab(0, 1000, 10), NormalizedSlab(1000, None, 7)))
        self.assertEqual(detect_overlap(tiered, [changed]).kind, "similar")

    def test_other_platform_category_and_own_id_are_ignored(self):
        pool = [card("x", platform_id="flipkart"), card("y", category_id="beauty"), card("self")]
        self.assertIsNone(detect_overlap(card("self"), pool))

    def test_identity_comparison_ignores_case_and_padding(self):
        self.assertIsNotNone(detect_overlap(card(platform_id=" Amazon "), [card("a")]))

    def test_first_overlapping_reference_wins(self):
        pool = [card("first", commission_percent=10.0), card("second")]
        overlap = detect_overlap(card(), pool)
        self.assertEqual(overlap.existing.id, "first")
        self.assertEqual(overlap.kind, "similar")


class AnalyzeCardTests(unittest.TestCase):
    def test_invalid_card_skips_overlap_detection(self):
        analysis = analyze_card(card(effective_from=None), [card("a")])
        self.assertEqual(analysis.errors, ["effective_from is required"])
        self.assertIsNone(analysis.overlap)

    def test_archived_match_is_informational(self):
        archived = card("old", archived=True)
        analysis = analyze_card(card(), [archived])
        self.assertIsNone(analysis.overlap)
        self.assertEqual(analysis.archived_match.existing.id, "old")

        blocking = analyze_card(card(), [archived], include_archived_for_blocking=True)
        self.assertEqual(blocking.overlap.kind, "exact")
        self.assertIsNone(blocking.archived_match)


class DescriptionTests(unittest.TestCase):
    def test_labels_and_ranges(self):
        self.assertEqual(format_label("amazon", "apparel"), "Amazon • Apparel")
        self.assertEqual(format_label("meesho", "toys"), "meesho • toys")
        self.assertEqual(format_date_range(date(2025, 1, 1), None), "01 Jan 2025 → open")

    def test_describe_commission(self):
        flat = card(fees=(NormalizedFee("shipping", "percent", 2.0), NormalizedFee("fixed", "amount", 15.0)))
        self.assertEqual(describe_commission(flat), "Flat 12% commission; Fees: shipping 2%, fixed 15")

        tiered = card(
            commission_type="tiered",
            commission_percent=None,
            slabs=(NormalizedSlab(0, 1000, 10), NormalizedSlab(1000, None, 7.5)),
        )
        self.assertEqual(describe_commission(tiered), "Tiered commission (2 slabs); 0-1000: 10%, 1000-open: 7.5%")

    def test_similar_summary(self):
        other = card("x", commission_percent=10.0, fees=(NormalizedFee("tech", "percent", 1.0),))
        self.assertEqual(similar_summary(card(), other), "Date overlap with different commission and different fees")
        self.assertEqual(similar_summary(card(), card("y", effective_to=None)), "Date overlap")

    def test_suggestion_starts_the_day_after_the_conflict(self):
        existing = card("x", effective_from=date(2025, 2, 1), effective_to=date(2025, 4, 30))
        (suggestion,) = build_suggestions(card(), existing)
        self.assertEqual(suggestion.kind, "shift_from")
        self.assertEqual(suggestion.new_from, date(2025, 5, 1))
        self.assertEqual(suggestion.reason, "Shift start date to 01 May 2025 to avoid overlap.")

    def test_no_suggestion_against_open_ended_conflicts(self):
        self.assertEqual(build_suggestions(card(), card("x", effective_to=None)), ())


if __name__ == "__main__":
    unittest.main()
