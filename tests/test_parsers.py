import math
import sys
import unittest
from datetime import date, datetime
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from ratecard_recon.parsers import (
    clean_number,
    is_blank,
    maybe_parse_number,
    parse_bi_weekly_which,
    parse_commission_type,
    parse_date,
    parse_fee_kind,
    parse_int_field,
    parse_monthly_day,
    parse_percent,
    parse_settlement_basis,
    parse_weekday,
    serial_to_date,
)


class NumberParsingTests(unittest.TestCase):
    def test_currency_symbols_commas_and_percent_are_tolerated(self):
        self.assertEqual(clean_number("₹1,250.50"), 1250.5)
        self.assertEqual(clean_number(" 12 % "), 12.0)
        self.assertEqual(clean_number("-3"), -3.0)
        self.assertEqual(clean_number(".5"), 0.5)
        self.assertEqual(clean_number(7), 7.0)

    def test_trailing_garbage_is_rejected_not_partially_parsed(self):
        self.assertTrue(math.isnan(clean_number("12abc")))
        self.assertTrue(math.isnan(clean_number("1.2.3")))
        self.assertTrue(math.isnan(clean_number("")))

    def test_booleans_are_not_numbers(self):
        self.assertTrue(math.isnan(clean_number(True)))

    def test_blank_values(self):
        self.assertIsNone(maybe_parse_number("   "))
        self.assertIsNone(maybe_parse_number("n/a"))
        self.assertTrue(math.isnan(parse_percent("")))
        self.assertTrue(is_blank(float("nan")))
        self.assertTrue(is_blank(None))
        self.assertFalse(is_blank(0))

    def test_integer_fields_require_whole_numbers(self):
        self.assertEqual(parse_int_field("7"), 7)
        self.assertEqual(parse_int_field("7.0"), 7)
        self.assertIsNone(parse_int_field("7.5"))
        self.assertIsNone(parse_int_field("seven"))


class DateParsingTests(unittest.TestCase):
    def test_iso_dates(self):
        self.assertEqual(parse_date("2025-01-01"), date(2025, 1, 1))
        self.assertIsNone(parse_date("2025-02-30"))

    def test_native_objects(self):
        self.assertEqual(parse_date(datetime(2025, 1, 1, 10, 30)), date(2025, 1, 1))
        self.assertEqual(parse_date(date(2025, 3, 31)), date(2025, 3, 31))

    def test_spreadsheet_serial_numbers(self):
        self.assertEqual(parse_date(45658), date(2025, 1, 1))
        self.assertEqual(parse_date("45658"), date(2025, 1, 1))
        self.assertEqual(parse_date(45658.75), date(2025, 1, 1))
        self.assertIsNone(serial_to_date(0))
        self.assertIsNone(serial_to_date(2958466))

    def test_slash_dates_try_month_first_then_day_first(self):
        self.assertEqual(parse_date("01/02/2025"), date(2025, 1, 2))
        self.assertEqual(parse_date("03/31/2025"), date(2025, 3, 31))
        self.assertEqual(parse_date("31/03/2025"), date(2025, 3, 31))
        self.assertIsNone(parse_date("31/31/2025"))

    def test_unparseable_text_returns_none(self):
        self.assertIsNone(parse_date("not a date"))
        self.assertIsNone(parse_date(""))
        self.assertIsNone(parse_date(True))


class EnumerationParsingTests(unittest.TestCase):
    def test_commission_type(self):
        self.assertEqual(parse_commission_type("Flat"), "flat")
        self.assertEqual(parse_commission_type("Slab based"), "tiered")
        self.assertIsNone(parse_commission_type("percentage"))

    def test_settlement_basis_aliases(self):
        self.assertEqual(parse_settlement_basis("T+Days"), "t_plus")
        self.assertEqual(parse_settlement_basis("T plus"), "t_plus")
        self.assertEqual(parse_settlement_basis("bi-weekly"), "bi_weekly")
        self.assertEqual(parse_settlement_basis("Fortnightly"), "bi_weekly")
        self.assertEqual(parse_settlement_basis("MONTHLY"), "monthly")
        self.assertIsNone(parse_settlement_basis("daily"))

    def test_fee_kind(self):
        self.assertEqual(parse_fee_kind("%"), "percent")
        self.assertEqual(parse_fee_kind("₹"), "amount")
        self.assertEqual(parse_fee_kind("Percentage"), "percent")
        self.assertIsNone(parse_fee_kind("bogus"))

    def test_bi_weekly_which(self):
        self.assertEqual(parse_bi_weekly_which("1"), "first")
        self.assertEqual(parse_bi_weekly_which("2nd"), "second")
        self.assertEqual(parse_bi_weekly_which("Second"), "second")
        self.assertIsNone(parse_bi_weekly_which("third"))

    def test_monthly_day(self):
        self.assertEqual(parse_monthly_day("End of Month"), "eom")
        self.assertEqual(parse_monthly_day("15"), "15")
        self.assertIsNone(parse_monthly_day("32"))

    def test_weekday(self):
        self.assertEqual(parse_weekday("Friday"), 5)
        self.assertEqual(parse_weekday("7"), 7)
        self.assertIsNone(parse_weekday("8"))
        self.assertIsNone(parse_weekday("Funday"))


if __name__ == "__main__":
    unittest.main()
