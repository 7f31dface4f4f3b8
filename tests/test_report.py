#!/usr/bin/env python3
"""
test_report.py

Tests for aggregates.py, integrity.py and report.py on the shared fixture.

Tests:
- Every view reconciles with the raw rows for every month range
- Department targets, attainment (undefined for zero targets), daily columns
- Channel, HR, tracking and core-network figures
- Attribution report and summary counters
- Same inputs + same timestamp -> identical serialized report
- Invalid month ranges fail fast
"""

import json
import unittest
import sys
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "code"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from bancassurance.aggregates import ReportView, attainment, paginate
from bancassurance.daily import normalize_daily
from bancassurance.errors import ReportInputError
from bancassurance.integrity import (
    ReconcileResult,
    ReconciliationError,
    RECONCILED_VIEWS,
    assert_reconciled,
    reconcile_views,
)
from bancassurance.pipeline import ReportSession, generate_report
from bancassurance.reference import UNASSIGNED

import report_fixtures as fx

STAMP = "2024-06-01T09:00:00"


def make_session(**overrides):
    return ReportSession.from_rows(
        fx.source_sheet(),
        fx.roster(),
        fx.reference_tables(**overrides),
        normalize_daily(fx.daily_grid()),
    )


class TestReconciliation(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.session = make_session()

    def test_every_range_reconciles(self):
        for start in range(1, 13):
            for end in range(start, 13):
                report = self.session.report(start, end, generated_at=STAMP)
                with self.subTest(start=start, end=end):
                    self.assertTrue(report.summary.reconciled)
                    self.assertEqual(len(report.summary.reconciliation), 36)

    def test_totals_full_year(self):
        report = self.session.report(1, 12, generated_at=STAMP)
        for name in RECONCILED_VIEWS:
            totals = report.views()[name].totals()
            with self.subTest(view=name):
                self.assertEqual(totals["rows"], 6)
                self.assertEqual(totals["premium"], 130000.0)
                self.assertEqual(totals["qj"], 50000.0)
                self.assertEqual(totals["dc"], 80000.0)
                self.assertEqual(totals["bb"], 54500.0)
                self.assertEqual(totals["policies"], 6)

    def test_row_without_qj_or_dc_is_still_reconciled(self):
        session = make_session().add_row(
            policy_no="P010", product_raw="稳盈两全保险", pay_interval="月交", pay_years="十年",
            premium=70000, sign_date="2024-03-01", branch_raw="工行城东支行", manager_raw="张三",
        )
        report = session.report(1, 12, generated_at=STAMP)
        self.assertTrue(report.summary.reconciled)
        for name in RECONCILED_VIEWS:
            totals = report.views()[name].totals()
            with self.subTest(view=name):
                self.assertEqual(totals["rows"], 7)
                self.assertEqual(totals["premium"], 200000.0)
                self.assertEqual(totals["qj"] + totals["dc"], 130000.0)
                self.assertEqual(totals["policies"], 6)

        dropped = dict(report.hr.totals_cents)
        dropped["rows"] -= 1
        dropped["premium"] -= 7000000
        results = reconcile_views([ReportView("hr", report.hr.table, dropped)], session.resolved.rows, 1, 12)
        self.assertEqual({r.metric for r in results if not r.ok}, {"rows", "premium"})

    def test_single_month(self):
        report = self.session.report(3, 3, generated_at=STAMP)
        self.assertEqual(report.department.totals()["qj"], 28000.0)
        self.assertEqual(report.summary.in_range_rows, 2)

    def test_assert_reconciled(self):
        assert_reconciled([ReconcileResult("hr", "qj", 100, 100)])
        with self.assertRaises(ReconciliationError):
            assert_reconciled([ReconcileResult("hr", "qj", 100, 101)])
        self.assertTrue(ReconcileResult("hr", "qj", 100, 101, tolerance=1).ok)


class TestDepartmentView(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.session = make_session()

    def _table(self, start, end):
        return self.session.report(start, end, generated_at=STAMP).department.table.set_index("department")

    def test_order_puts_unassigned_last(self):
        t = self._table(1, 12)
        self.assertEqual(list(t.index), ["李经理", "钱经理", "赵经理", UNASSIGNED])

    def test_yearly_target(self):
        t = self._table(1, 2)
        self.assertEqual(t.loc["李经理", "qj"], 10000.0)
        self.assertEqual(t.loc["李经理", "qj_target"], 100000.0)
        self.assertAlmostEqual(t.loc["李经理", "qj_attainment"], 0.1)
        self.assertAlmostEqual(t.loc["李经理", "dc_attainment"], 1.0)
        self.assertEqual(t.loc["李经理", "qj_gap"], 90000.0)

    def test_month_target_overrides_yearly(self):
        t = self._table(3, 3)
        self.assertEqual(t.loc["李经理", "qj_target"], 30000.0)
        self.assertEqual(t.loc["李经理", "qj_attainment"], 0.0)
        self.assertEqual(t.loc["钱经理", "qj_target"], 40000.0)

    def test_zero_target_attainment_is_undefined(self):
        t = self._table(1, 12)
        self.assertEqual(t.loc["钱经理", "qj"], 20000.0)
        self.assertAlmostEqual(t.loc["钱经理", "qj_attainment"], 0.5)
        self.assertTrue(pd.isna(t.loc["赵经理", "qj_attainment"]))
        self.assertEqual(t.loc["赵经理", "qj"], 8000.0)
        self.assertIsNone(attainment(800000, 0))

    def test_daily_columns(self):
        t = self._table(1, 12)
        self.assertEqual(t.loc["李经理", "daily_qj"], 10000.0)
        self.assertEqual(t.loc["李经理", "daily_feiyou_qj"], 6000.0)
        self.assertEqual(t.loc["钱经理", "daily_dc"], 9000.0)

    def test_team_columns(self):
        t = self._table(1, 12)
        self.assertEqual(t.loc["李经理", "managers"], 2)
        self.assertEqual(t.loc["李经理", "managers_active"], 1)
        self.assertAlmostEqual(t.loc["李经理", "open_rate"], 0.5)
        self.assertEqual(t.loc["李经理", "guibao_20k"], 1)
        self.assertEqual(t.loc["李经理", "ironclad_total"], 1)
        self.assertEqual(t.loc["李经理", "ironclad_active"], 1)
        self.assertEqual(t.loc["钱经理", "rank"], 1)
        self.assertEqual(t.loc["赵经理", "rank"], 4)

    def test_daily_view(self):
        daily = self.session.report(1, 12, generated_at=STAMP).daily.table.set_index("department")
        self.assertEqual(daily.loc["李经理", "qj"], 10000.0)
        self.assertAlmostEqual(daily.loc["李经理", "floor_rate"], 0.1)
        self.assertIn(UNASSIGNED, daily.index)


class TestOtherViews(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.report = make_session().report(1, 12, generated_at=STAMP)

    def test_channel(self):
        t = self.report.channel.table.set_index("channel")
        self.assertEqual(list(t.index), ["工行渠道", "邮储渠道", "建行渠道"])
        self.assertEqual(t.loc["工行渠道", "qj"], 42000.0)
        self.assertAlmostEqual(t.loc["工行渠道", "share"], 0.84)
        self.assertEqual(t.loc["工行渠道", "net_total"], 2)
        self.assertEqual(t.loc["工行渠道", "net_active"], 2)
        self.assertEqual(t.loc["工行渠道", "avg_output"], 21000.0)
        self.assertEqual(t.loc["邮储渠道", "dc"], 50000.0)
        self.assertEqual(t.loc["建行渠道", "net_total"], 0)
        self.assertTrue(pd.isna(t.loc["建行渠道", "avg_output"]))

    def test_channel_monthly_trend_ignores_range(self):
        march = make_session().report(3, 3, generated_at=STAMP)
        trend = march.channel.extras["monthly_trend"].set_index("channel")
        self.assertEqual(trend.loc["工行渠道", "m1"], 10000.0)
        self.assertEqual(trend.loc["工行渠道", "m3"], 20000.0)
        self.assertEqual(trend.loc["工行渠道", "m5"], 12000.0)
        self.assertEqual(list(trend.columns), [f"m{m}" for m in range(1, 13)])

    def test_hr(self):
        t = self.report.hr.table.set_index("manager")
        self.assertEqual(t.loc["张三", "department"], "李经理")
        self.assertEqual(t.loc["张三", "code"], "001")
        self.assertEqual(t.loc["张三", "bb"], 13000.0)
        self.assertEqual(t.loc["张三", "rank"], "高级")
        self.assertEqual(t.loc["张三", "maintain_bb"], 5000.0)
        self.assertEqual(t.loc["张三", "maintain_gap"], 0.0)
        self.assertEqual(t.loc["张三", "net_total"], 1)
        self.assertEqual(t.loc["孙七", "department"], "赵经理")
        self.assertEqual(t.loc["周八", "department"], UNASSIGNED)
        self.assertEqual(t.loc["王五", "realtime_qj"], 0.0)
        self.assertEqual(t.loc["王五", "broke_zero"], 1)
        self.assertEqual(t.loc["王五", "realtime_broke_zero"], 0)

    def test_tracking(self):
        t = self.report.tracking.table.set_index(["department", "manager"])
        self.assertEqual(t.loc[("李经理", "张三"), "qj"], 10000.0)
        self.assertEqual(t.loc[("赵经理", "孙七"), "qj"], 8000.0)
        self.assertEqual(list(self.report.tracking.table["department"].unique()),
                         ["李经理", "钱经理", "赵经理", UNASSIGNED])
        subtotals = self.report.tracking.extras["departments"].set_index("department")
        self.assertEqual(subtotals.loc["李经理", "dc"], 80000.0)

    def test_core_network(self):
        t = self.report.core_network.table.set_index("branch")
        self.assertEqual(list(t.index), ["工行城东支行"])
        self.assertEqual(t.loc["工行城东支行", "m1"], 10000.0)
        self.assertEqual(t.loc["工行城东支行", "qj"], 10000.0)
        self.assertEqual(t.loc["工行城东支行", "policies"], 2)
        self.assertEqual(t.loc["工行城东支行", "months_active"], 1)

        later = make_session().report(2, 12, generated_at=STAMP).core_network.table.set_index("branch")
        self.assertEqual(later.loc["工行城东支行", "m1"], 10000.0)
        self.assertEqual(later.loc["工行城东支行", "qj"], 0.0)

    def test_network(self):
        t = self.report.network.table.set_index("branch")
        self.assertEqual(list(t.index), ["工行城东支行", "邮储西街网点", "工行南门支行", UNASSIGNED])
        self.assertEqual(t.loc["工行城东支行", "short_name"], "城东")
        self.assertEqual(t.loc["工行城东支行", "manager"], "张三")
        self.assertEqual((t.loc["工行城东支行", "qj"], t.loc["工行城东支行", "dc"]), (10000.0, 30000.0))
        self.assertEqual(t.loc["工行城东支行", "policies"], 2)
        self.assertEqual(t.loc["工行城东支行", "realtime_qj"], 10000.0)
        self.assertEqual(t.loc["邮储西街网点", "dc"], 50000.0)
        self.assertEqual(t.loc["工行南门支行", "qj"], 20000.0)
        self.assertEqual(t.loc["工行南门支行", "realtime_qj"], 0.0)
        self.assertTrue(t.loc["工行南门支行", "is_physical"])
        self.assertEqual(t.loc[UNASSIGNED, "qj"], 20000.0)
        self.assertEqual(t.loc[UNASSIGNED, "rows"], 2)
        self.assertEqual(self.report.summary.view_entries["network"], 4)

        march = make_session().report(3, 3, generated_at=STAMP).network.table.set_index("branch")
        self.assertEqual(list(march.index), ["工行城东支行", "邮储西街网点", "工行南门支行"])
        self.assertEqual(march.loc["工行城东支行", "qj"], 0.0)

    def test_data_source_keeps_every_row(self):
        t = self.report.data_source.table.set_index("policy_no")
        self.assertEqual(len(t), 7)
        self.assertFalse(t.loc["P006", "in_range"])
        self.assertEqual(t.loc["P006", "premium"], 0.0)
        self.assertEqual(t.loc["P004", "product"], "未知险种X")

    def test_paginate(self):
        page, pages = paginate(self.report.data_source.table, page=3, page_size=3)
        self.assertEqual((len(page), pages), (1, 3))
        page, _ = paginate(self.report.data_source.table, page=99, page_size=3)
        self.assertEqual(len(page), 1)
        with self.assertRaises(ValueError):
            paginate(self.report.data_source.table, page_size=0)


class TestSummaryAndIntegrity(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.report = make_session().report(1, 12, generated_at=STAMP)

    def test_counters(self):
        s = self.report.summary
        self.assertEqual((s.month_start, s.month_end), (1, 12))
        self.assertEqual(s.source_rows, 7)
        self.assertEqual(s.in_range_rows, 6)
        self.assertEqual(s.roster_entities, 3)
        self.assertEqual(s.daily_rows, 3)
        self.assertEqual((s.dropped_blank, s.dropped_footer, s.soft_errors), (1, 1, 2))
        self.assertEqual(s.unresolved, {"channel": 1, "bank": 1, "product": 1, "branch": 2})
        self.assertEqual(s.unassigned, 1)
        self.assertEqual(s.generated_at, STAMP)
        self.assertEqual(s.reference_version, fx.reference_tables().version)

    def test_view_entries_match_views(self):
        entries = self.report.summary.view_entries
        for name, view in self.report.views().items():
            self.assertEqual(entries[name], len(view.table))

    def test_counters_and_totals_are_read_only(self):
        with self.assertRaises(TypeError):
            self.report.summary.unresolved["bank"] = 9
        with self.assertRaises(TypeError):
            self.report.summary.view_entries["network"] = 0
        with self.assertRaises(TypeError):
            self.report.department.totals_cents["qj"] = 0
        with self.assertRaises(TypeError):
            self.report.channel.extras["monthly_trend"] = pd.DataFrame()

    def test_attribution(self):
        integrity = self.report.integrity
        self.assertEqual(integrity.missing_both, 1)
        self.assertEqual(integrity.total_missing, 1)
        self.assertFalse(integrity.ok)
        row = integrity.by_manager.iloc[0]
        self.assertEqual((row["manager"], row["rows"], row["premium"], row["months"]), ("周八", 1, 12000.0, "5"))
        self.assertEqual(integrity.details.iloc[0]["policy_no"], "P007")

    def test_deterministic(self):
        again = make_session().report(1, 12, generated_at=STAMP)
        a = json.dumps(self.report.to_dict(), ensure_ascii=False, sort_keys=True)
        b = json.dumps(again.to_dict(), ensure_ascii=False, sort_keys=True)
        self.assertEqual(a, b)

    def test_undefined_attainment_serializes_as_null(self):
        rows = {r["department"]: r for r in self.report.to_dict()["department"]["rows"]}
        self.assertIsNone(rows["赵经理"]["qj_attainment"])

    def test_tables_cover_views_and_extras(self):
        tables = self.report.tables()
        for name in ("department", "network", "channel_monthly_trend", "department_big_policies",
                     "tracking_departments", "integrity_details"):
            self.assertIn(name, tables)


class TestMonthRange(unittest.TestCase):

    def test_invalid_ranges(self):
        session = make_session()
        for start, end in ((0, 1), (3, 2), (1, 13), ("1", 2), (True, 2), (1, None)):
            with self.subTest(start=start, end=end):
                with self.assertRaises(ReportInputError):
                    session.report(start, end)

    def test_generate_report_validates_before_work(self):
        with self.assertRaises(ReportInputError):
            generate_report(fx.source_sheet(), fx.roster(), fx.reference_tables(), month_start=5, month_end=4)

    def test_generate_report_accepts_plain_rows(self):
        report = generate_report(list(fx.source_sheet().rows), fx.roster(), fx.reference_tables(),
                                 month_start=1, month_end=12, generated_at=STAMP)
        self.assertTrue(report.summary.reconciled)
        self.assertEqual(report.summary.soft_errors, 0)
        self.assertEqual(report.summary.daily_rows, 0)
        self.assertEqual(report.department.totals()["qj"], 50000.0)


if __name__ == "__main__":
    unittest.main()
