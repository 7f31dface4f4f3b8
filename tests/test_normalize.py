#!/usr/bin/env python3
"""
test_normalize.py

Unit tests for normalize.py, roster.py and daily.py

Tests:
- Minimal ledger with the header at row index 2
- Money/date coercion and the soft-error tally
- Blank and footer rows dropped
- Column validation (critical / optional / extra)
- Deterministic row ids
- Roster and daily-ledger parsing
"""

import unittest
import sys
from datetime import date, datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "code"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from bancassurance.daily import normalize_daily
from bancassurance.normalize import (
    TransactionRow,
    assign_row_ids,
    new_row_id,
    normalize_rows,
    parse_amount_cents,
    parse_sign_date,
    validate_columns,
)
from bancassurance.roster import OrgEntity, build_roster, normalize_roster

import report_fixtures as fx


class TestMinimalLedger(unittest.TestCase):

    def test_header_at_index_two(self):
        grid = [
            ["银保清单"],
            ["导出时间", "2024-06-01"],
            ["保单号", "险种", "新约保费", "银行总行"],
            ["001", "险种A", 1000, "银行A"],
        ]
        sheet = normalize_rows(grid)

        self.assertEqual(sheet.header_row, 2)
        self.assertEqual(len(sheet.rows), 1)
        row = sheet.rows[0]
        self.assertEqual(row.policy_no, "001")
        self.assertEqual(row.product_raw, "险种A")
        self.assertEqual(row.premium_cents, 100000)
        self.assertEqual(row.bank_raw, "银行A")
        self.assertIsNone(row.month)
        self.assertEqual(sheet.soft_errors, 0)


class TestCoercion(unittest.TestCase):

    def test_amounts(self):
        self.assertEqual(parse_amount_cents(1000), (100000, True))
        self.assertEqual(parse_amount_cents(1234.565), (123457, True))
        self.assertEqual(parse_amount_cents("20,000"), (2000000, True))
        self.assertEqual(parse_amount_cents(" ￥1,200.50元 "), (120050, True))
        self.assertEqual(parse_amount_cents(None), (0, True))
        self.assertEqual(parse_amount_cents(""), (0, True))
        self.assertEqual(parse_amount_cents("abc"), (0, False))
        self.assertEqual(parse_amount_cents(-5), (0, False))
        self.assertEqual(parse_amount_cents("(300)"), (0, False))

    def test_amounts_with_leftover_text_are_soft_errors(self):
        for text in ("10万", "1e3", "12 34", "约5000", "5000元整", "1.2.3", "(300", "-"):
            with self.subTest(text=text):
                self.assertEqual(parse_amount_cents(text), (0, False))
        self.assertEqual(parse_amount_cents("RMB 800"), (80000, True))
        self.assertEqual(parse_amount_cents("，1，000.5"), (100050, True))

    def test_dates(self):
        self.assertEqual(parse_sign_date("2024-01-15"), (date(2024, 1, 15), True))
        self.assertEqual(parse_sign_date("2024/02/03"), (date(2024, 2, 3), True))
        self.assertEqual(parse_sign_date("2024年4月2日"), (date(2024, 4, 2), True))
        self.assertEqual(parse_sign_date(datetime(2024, 3, 8, 10, 30)), (date(2024, 3, 8), True))
        self.assertEqual(parse_sign_date(45366), (date(2024, 3, 15), True))
        self.assertEqual(parse_sign_date("45292"), (date(2024, 1, 1), True))
        self.assertEqual(parse_sign_date(None), (None, True))
        self.assertEqual(parse_sign_date("not a date"), (None, False))
        self.assertEqual(parse_sign_date("2024-13-40"), (None, False))


class TestFixtureLedger(unittest.TestCase):

    def setUp(self):
        self.sheet = fx.source_sheet()
        self.by_policy = {r.policy_no: r for r in self.sheet.rows}

    def test_counts(self):
        self.assertEqual(self.sheet.header_row, 3)
        self.assertEqual(len(self.sheet.rows), 7)
        self.assertEqual(self.sheet.dropped_blank, 1)
        self.assertEqual(self.sheet.dropped_footer, 1)
        self.assertEqual(self.sheet.soft_errors, 2)

    def test_soft_error_row_kept_with_defaults(self):
        row = self.by_policy["P006"]
        self.assertEqual(row.premium_cents, 0)
        self.assertIsNone(row.month)
        self.assertIsNone(row.sign_date)

    def test_fields(self):
        p3 = self.by_policy["P003"]
        self.assertEqual(p3.premium_cents, 2000000)
        self.assertEqual(p3.month, 3)
        self.assertEqual(p3.sign_date, "2024-03-08")
        self.assertTrue(p3.presale)
        self.assertEqual(p3.pay_years, "5")

        p4 = self.by_policy["P004"]
        self.assertEqual(p4.month, 3)
        self.assertIsNone(p4.dept_manager_raw)

        self.assertEqual(self.by_policy["P005"].branch_raw, "城东")
        self.assertEqual(self.by_policy["P005"].month, 4)

    def test_columns(self):
        cols = self.sheet.columns
        self.assertIn("保单号", cols.found_columns)
        self.assertIn("缴费间隔", cols.found_columns)
        self.assertEqual(cols.missing_critical, ())
        self.assertIn("投保人姓名", cols.found_columns)
        self.assertIn("是否蓄客", cols.missing_optional)

    def test_validate_columns_reports_missing_and_extra(self):
        v = validate_columns(["保单号", "交费间隔", "备注"])
        self.assertIn("缴费间隔", v.found_columns)
        self.assertIn("新约保费", v.missing_critical)
        self.assertEqual(v.extra_columns, ("备注",))

    def test_row_ids_are_deterministic_and_unique(self):
        again = fx.source_sheet()
        self.assertEqual([r.row_id for r in self.sheet.rows], [r.row_id for r in again.rows])
        self.assertEqual(len({r.row_id for r in self.sheet.rows}), 7)

    def test_identical_rows_get_distinct_ids(self):
        row = TransactionRow(policy_no="X", premium_cents=100)
        ids = [r.row_id for r in assign_row_ids([row, row, row])]
        self.assertEqual(len(set(ids)), 3)
        self.assertEqual(new_row_id(row, ids[:2]), ids[2])


class TestRoster(unittest.TestCase):

    def test_parse(self):
        roster = fx.roster()
        self.assertEqual(len(roster), 3)
        east = roster.by_branch()["工行城东支行"]
        self.assertEqual(east.department, "李经理")
        self.assertEqual(east.channel, "工行渠道")
        self.assertTrue(east.is_physical)
        self.assertTrue(east.is_ironclad)
        self.assertEqual(roster.by_code()["N003"].branch, "工行南门支行")

    def test_first_occurrence_wins(self):
        roster = build_roster([
            OrgEntity(branch="A", department="d1"),
            OrgEntity(branch="A", department="d2"),
            OrgEntity(branch="B", department="d1"),
        ])
        self.assertEqual(len(roster), 2)
        self.assertEqual(roster.duplicates, 1)
        self.assertEqual(roster.by_branch()["A"].department, "d1")

    def test_header_below_title(self):
        grid = [["人网清单"]] + fx.roster_grid()
        self.assertEqual(len(normalize_roster(grid)), 3)


class TestDaily(unittest.TestCase):

    def test_parse(self):
        sheet = normalize_daily(fx.daily_grid())
        self.assertEqual(sheet.header_row, 2)
        self.assertEqual(len(sheet.rows), 3)
        d1 = sheet.rows[0]
        self.assertEqual(d1.premium_cents, 600000)
        self.assertEqual(d1.pay_interval, "年交")
        self.assertEqual(d1.dept_manager_raw, "李经理")
        self.assertEqual(d1.month, 5)
        self.assertIsNone(sheet.rows[2].dept_manager_raw)


if __name__ == "__main__":
    unittest.main()
