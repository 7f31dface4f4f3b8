#!/usr/bin/env python3
"""
run_report.py

Builds the bancassurance report from the ledger, roster and (optional)
daily-ledger workbooks and writes every view as CSV plus one Excel workbook,
a JSON dump and the monthly trend chart.

Paths and the month range come from code/.env (REPORT_*), overridable by
the flags below.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict, fields
from pathlib import Path

import pandas as pd

from bancassurance.charts import plot_monthly_trend
from bancassurance.errors import ReportInputError
from bancassurance.integrity import assert_reconciled
from bancassurance.io import ensure_dirs, load_settings, read_file_bytes
from bancassurance.pipeline import ReportSession
from bancassurance.reference import StaffMember, load_reference_tables
from bancassurance.report import save_csv, save_excel


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Generate the bancassurance sales report")
    ap.add_argument("--source", type=str, help="Ledger workbook (数据源); env REPORT_SOURCE_XLSX")
    ap.add_argument("--roster", type=str, help="Roster workbook (人网); env REPORT_ROSTER_XLSX")
    ap.add_argument("--daily", type=str, help="Daily ledger workbook (日清单); env REPORT_DAILY_XLSX")
    ap.add_argument("--settings", type=str, help="Reference tables JSON; env REPORT_SETTINGS_JSON")
    ap.add_argument("--output_dir", type=str, help="Output directory; env REPORT_OUTPUT_DIR")
    ap.add_argument("--month_start", type=int, help="First month (1-12); env REPORT_MONTH_START")
    ap.add_argument("--month_end", type=int, help="Last month (1-12); env REPORT_MONTH_END")
    ap.add_argument("--strict", action="store_true", help="Fail if any view does not reconcile")
    ap.add_argument("--scan_staff", action="store_true",
                    help="Write staff records the ledger implies but the settings lack to staff_changes.csv")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        s = load_settings(
            source_xlsx=args.source,
            roster_xlsx=args.roster,
            settings_json=args.settings,
            output_dir=args.output_dir,
            daily_xlsx=args.daily,
            month_start=args.month_start,
            month_end=args.month_end,
        )
        ensure_dirs(s)

        tables = load_reference_tables(s.settings_json)
        session = ReportSession.from_workbooks(
            read_file_bytes(s.source_xlsx, "Source workbook"),
            read_file_bytes(s.roster_xlsx, "Roster workbook"),
            tables,
            daily=read_file_bytes(s.daily_xlsx, "Daily ledger"),
            filename=s.source_xlsx.name,
        )
        report = session.report(s.month_start, s.month_end)
    except ReportInputError as e:
        print(f"[ERROR] {e}")
        return 2

    tables_out = report.tables()
    for name, t in tables_out.items():
        save_csv(t, s.tables_dir / f"{name}.csv")
    save_excel(tables_out, s.output_dir / "bancassurance_report.xlsx")

    (s.output_dir / "report.json").write_text(
        json.dumps(report.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8"
    )

    if args.scan_staff:
        scan = session.staff_changes()
        records = pd.DataFrame([asdict(r) for r in scan.new_records()],
                               columns=[f.name for f in fields(StaffMember)])
        save_csv(records, s.tables_dir / "staff_changes.csv")
        print(f"[INFO] Staff scan: {len(scan.added)} added, {len(scan.transferred)} transferred "
              f"-> {s.tables_dir / 'staff_changes.csv'}")

    trend = report.channel.extras["monthly_trend"]
    if not trend.empty:
        plot_monthly_trend(trend, "channel", s.charts_dir / "channel_monthly_trend.png", "渠道年交月度走势")

    summary = report.summary
    print(f"[INFO] Months {summary.month_start}-{summary.month_end}: "
          f"{summary.in_range_rows}/{summary.source_rows} rows in range")
    for dim, n in summary.unresolved.items():
        if n:
            print(f"[WARNING] {n} rows with unresolved {dim}: {', '.join(summary.unresolved_values[dim][:5])}")
    if report.integrity.total_missing:
        print(f"[WARNING] {report.integrity.total_missing} rows missing department/director attribution")

    if args.strict:
        assert_reconciled(summary.reconciliation)
    elif not summary.reconciled:
        print("[ERROR] Reconciliation failed; see report.json summary.reconciliation")
        return 1

    print(f"[OK] Report written to: {s.output_dir.resolve()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
