"""
Bancassurance (银保) sales report pipeline: ledger, roster and daily-ledger
workbooks in, one reconciled multi-view report out.
"""

from .encoding import repair_filename, repair_mojibake
from .errors import ReportInputError
from .headers import detect_header_row
from .integrity import ReconciliationError, ReconcileResult, assert_reconciled
from .normalize import TransactionRow, normalize_rows, validate_columns
from .orgchart import OrgChart, StaffScanResult, scan_staff_changes
from .pipeline import (
    ReportSession,
    generate_report,
    ingest_daily,
    ingest_roster,
    ingest_source,
)
from .reference import ReferenceTables, load_reference_tables
from .report import AggregatedReport
from .roster import OrgEntity, Roster

__all__ = [
    "repair_filename",
    "repair_mojibake",
    "ReportInputError",
    "detect_header_row",
    "ReconciliationError",
    "ReconcileResult",
    "assert_reconciled",
    "TransactionRow",
    "normalize_rows",
    "validate_columns",
    "OrgChart",
    "StaffScanResult",
    "scan_staff_changes",
    "ReportSession",
    "generate_report",
    "ingest_daily",
    "ingest_roster",
    "ingest_source",
    "ReferenceTables",
    "load_reference_tables",
    "AggregatedReport",
    "OrgEntity",
    "Roster",
]
