#!/usr/bin/env python3
"""
pipeline.py

Orchestration: workbook bytes -> normalized rows -> resolved rows -> views ->
AggregatedReport.

Fatal input problems (missing/empty workbook, unrecognizable source columns,
invalid month range, malformed settings) raise ReportInputError before any
aggregation; everything else degrades to counters in the summary.

ReportSession keeps the normalized and resolved rows of one upload so a
month-range change only re-aggregates, and row edits re-resolve from the
normalized rows without touching the original bytes or header detection.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from .aggregates import (
    build_channel_view,
    build_core_network_view,
    build_daily_view,
    build_data_source_view,
    build_department_view,
    build_hr_view,
    build_network_view,
    build_tracking_view,
    department_order,
    rows_frame,
)
from .daily import DailyRow, DailySheet, normalize_daily
from .encoding import repair_filename
from .errors import ReportInputError
from .headers import MIN_MATCHES_DEFAULT, SOURCE_KEY_COLUMNS, present_labels
from .integrity import check_attribution, reconcile_views
from .io import ROSTER_SHEET_HINTS, SOURCE_SHEET_HINTS, read_sheet_rows
from .normalize import (
    NormalizedSheet,
    TransactionRow,
    month_of,
    new_row_id,
    normalize_rows,
    parse_amount_cents,
    parse_sign_date,
)
from .orgchart import StaffScanResult, scan_staff_changes
from .reference import ReferenceTables
from .report import AggregatedReport, assemble_report
from .resolve import ResolvedDaily, ResolveResult, Resolver
from .roster import Roster, normalize_roster
from .transforms import validate_month_range

SourceInput = Union[NormalizedSheet, Sequence[TransactionRow]]
DailyInput = Union[DailySheet, Sequence[DailyRow], None]


# ======================================================
# INGESTION
# ======================================================

def ingest_source(data: Optional[bytes], filename: Optional[str] = None) -> NormalizedSheet:
    name = repair_filename(filename)
    label = f"source workbook {name}".strip() if name else "source workbook"
    rows = read_sheet_rows(data, label, SOURCE_SHEET_HINTS)
    sheet = normalize_rows(rows, filename=name)

    header = rows[sheet.header_row] if sheet.header_row < len(rows) else None
    keys = [k for k in SOURCE_KEY_COLUMNS if k in present_labels(header)]
    if len(keys) < MIN_MATCHES_DEFAULT:
        raise ReportInputError(
            f"{label}: no recognizable header row (need at least {MIN_MATCHES_DEFAULT} of "
            f"{', '.join(SOURCE_KEY_COLUMNS)}; row {sheet.header_row + 1} has {keys or 'none'})"
        )

    if sheet.columns.missing_critical:
        print(f"[WARNING] {label}: missing columns {', '.join(sheet.columns.missing_critical)}")
    print(f"[INFO] {label}: header at row {sheet.header_row + 1}, {len(sheet.rows)} records "
          f"({sheet.dropped_blank} blank, {sheet.dropped_footer} footer rows dropped)")
    return sheet


def ingest_roster(data: Optional[bytes]) -> Roster:
    rows = read_sheet_rows(data, "roster workbook", ROSTER_SHEET_HINTS)
    roster = normalize_roster(rows)
    if not roster.entities:
        raise ReportInputError("roster workbook has no branch rows (代理机构名称)")
    print(f"[INFO] Roster: {len(roster)} branches")
    return roster


def ingest_daily(data: Optional[bytes]) -> DailySheet:
    rows = read_sheet_rows(data, "daily ledger")
    sheet = normalize_daily(rows)
    print(f"[INFO] Daily ledger: {len(sheet.rows)} records")
    return sheet


# ======================================================
# AGGREGATION
# ======================================================

def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _sheet_stats(source: SourceInput) -> Dict[str, object]:
    if isinstance(source, NormalizedSheet):
        return {
            "dropped_blank": source.dropped_blank,
            "dropped_footer": source.dropped_footer,
            "soft_errors": source.soft_errors,
            "missing_columns": source.columns.missing_critical,
        }
    return {}


def _rows_of(source: SourceInput) -> Tuple[TransactionRow, ...]:
    return tuple(source.rows) if isinstance(source, NormalizedSheet) else tuple(source)


def _daily_of(daily: DailyInput) -> Tuple[DailyRow, ...]:
    if daily is None:
        return ()
    return tuple(daily.rows) if isinstance(daily, DailySheet) else tuple(daily)


def aggregate(
    resolved: ResolveResult,
    resolved_daily: Sequence[ResolvedDaily],
    roster: Roster,
    tables: ReferenceTables,
    month_start: int,
    month_end: int,
    generated_at: Optional[str] = None,
    stats: Optional[Mapping[str, object]] = None,
) -> AggregatedReport:
    """Pure fold of already-resolved rows into a report for one month range."""
    validate_month_range(month_start, month_end)
    start, end = month_start, month_end

    frame = rows_frame(resolved.rows, start, end)
    department = build_department_view(frame, roster, tables, start, end, resolved_daily)
    views = {
        "department": department,
        "channel": build_channel_view(frame, roster, tables, start, end),
        "hr": build_hr_view(frame, roster, tables, start, end),
        "tracking": build_tracking_view(frame, roster, tables, start, end),
        "core_network": build_core_network_view(frame, roster, tables, start, end),
        "network": build_network_view(frame, roster, tables, start, end),
        "data_source": build_data_source_view(frame, start, end),
        "daily": build_daily_view(resolved_daily, department_order(frame[frame["in_range"]], roster, tables)),
    }
    reconciliation = reconcile_views(views.values(), resolved.rows, start, end)

    all_stats: Dict[str, object] = dict(stats or {})
    all_stats.update({
        "roster_entities": len(roster),
        "roster_duplicates": roster.duplicates,
        "daily_rows": len(resolved_daily),
        "unresolved": resolved.unresolved,
        "unresolved_values": resolved.unresolved_values,
        "unassigned": resolved.unassigned,
    })
    return assemble_report(
        views,
        check_attribution(resolved.rows, start, end),
        reconciliation,
        all_stats,
        month_start=start,
        month_end=end,
        generated_at=generated_at or _now(),
        reference_version=tables.version,
    )


def generate_report(
    source_rows: SourceInput,
    roster: Roster,
    reference_tables: ReferenceTables,
    daily_rows: DailyInput = None,
    month_start: int = 1,
    month_end: int = 1,
    generated_at: Optional[str] = None,
) -> AggregatedReport:
    validate_month_range(month_start, month_end)
    resolver = Resolver(roster, reference_tables)
    rows = _rows_of(source_rows)
    resolved = resolver.result([resolver.resolve_row(r) for r in rows])
    resolved_daily = tuple(resolver.resolve_daily(d) for d in _daily_of(daily_rows))
    report = aggregate(resolved, resolved_daily, roster, reference_tables,
                       month_start, month_end, generated_at, _sheet_stats(source_rows))
    if not report.summary.reconciled:
        print("[ERROR] View totals do not reconcile with the raw rows; see summary.reconciliation")
    return report


# ======================================================
# SESSION (re-aggregation and row edits)
# ======================================================

# premium_cents and month only change through premium / sign_date coercion
_DERIVED = {"row_id", "source_row", "premium_cents", "month"}
_EDITABLE = ({f.name for f in fields(TransactionRow)} - _DERIVED) | {"premium"}


def _check_row(row: TransactionRow) -> TransactionRow:
    if row.premium_cents < 0:
        raise ReportInputError(f"premium must be a non-negative number (row {row.row_id or 'new'})")
    if row.month is not None and not 1 <= row.month <= 12:
        raise ReportInputError(f"month must be 1-12, got {row.month!r} (row {row.row_id or 'new'})")
    return row


def _apply_changes(row: TransactionRow, changes: Mapping[str, object]) -> TransactionRow:
    changes = dict(changes)
    unknown = set(changes) - _EDITABLE
    if unknown:
        raise ReportInputError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if "premium" in changes:
        cents, ok = parse_amount_cents(changes.pop("premium"))
        if not ok:
            raise ReportInputError("premium must be a non-negative number")
        changes["premium_cents"] = cents
    if "sign_date" in changes:
        d, ok = parse_sign_date(changes["sign_date"])
        if not ok:
            raise ReportInputError(f"sign_date not understood: {changes['sign_date']!r}")
        changes["sign_date"] = d.isoformat() if d else None
        changes["month"] = month_of(d)
    return _check_row(replace(row, **changes))


@dataclass(frozen=True, eq=False)
class ReportSession:
    rows: Tuple[TransactionRow, ...]
    roster: Roster
    tables: ReferenceTables
    daily: Tuple[DailyRow, ...] = ()
    stats: Mapping[str, object] = field(default_factory=dict)
    resolved: Optional[ResolveResult] = None
    resolved_daily: Tuple[ResolvedDaily, ...] = ()

    @classmethod
    def from_rows(
        cls,
        source_rows: SourceInput,
        roster: Roster,
        tables: ReferenceTables,
        daily_rows: DailyInput = None,
        stats: Optional[Mapping[str, object]] = None,
    ) -> "ReportSession":
        rows = _rows_of(source_rows)
        daily = _daily_of(daily_rows)
        resolver = Resolver(roster, tables)
        resolved = resolver.result([resolver.resolve_row(r) for r in rows])
        resolved_daily = tuple(resolver.resolve_daily(d) for d in daily)
        return cls(
            rows=rows,
            roster=roster,
            tables=tables,
            daily=daily,
            stats=dict(stats if stats is not None else _sheet_stats(source_rows)),
            resolved=resolved,
            resolved_daily=resolved_daily,
        )

    @classmethod
    def from_workbooks(
        cls,
        source: bytes,
        roster: bytes,
        tables: ReferenceTables,
        daily: Optional[bytes] = None,
        filename: Optional[str] = None,
    ) -> "ReportSession":
        sheet = ingest_source(source, filename)
        org = ingest_roster(roster)
        daily_sheet = ingest_daily(daily) if daily else None
        return cls.from_rows(sheet, org, tables, daily_sheet)

    def report(self, month_start: int = 1, month_end: int = 1,
               generated_at: Optional[str] = None) -> AggregatedReport:
        return aggregate(self.resolved, self.resolved_daily, self.roster, self.tables,
                         month_start, month_end, generated_at, self.stats)

    # --------------------------------------------------
    # Edits: each returns a new session
    # --------------------------------------------------

    def _with_rows(self, rows: Iterable[TransactionRow]) -> "ReportSession":
        return ReportSession.from_rows(tuple(rows), self.roster, self.tables, self.daily, self.stats)

    def with_reference_tables(self, tables: ReferenceTables) -> "ReportSession":
        return ReportSession.from_rows(self.rows, self.roster, tables, self.daily, self.stats)

    def find_row(self, row_id: str) -> TransactionRow:
        for r in self.rows:
            if r.row_id == row_id:
                return r
        raise KeyError(row_id)

    def add_row(self, row: Optional[TransactionRow] = None, **values) -> "ReportSession":
        new = _apply_changes(row or TransactionRow(), values)
        taken = {r.row_id for r in self.rows}
        if not new.row_id:
            new = replace(new, row_id=new_row_id(new, taken))
        elif new.row_id in taken:
            raise ReportInputError(f"Duplicate row_id: {new.row_id}")
        return self._with_rows(self.rows + (new,))

    def update_row(self, row_id: str, /, **changes) -> "ReportSession":
        target = self.find_row(row_id)
        updated = _apply_changes(target, changes)
        return self._with_rows(updated if r.row_id == row_id else r for r in self.rows)

    def delete_row(self, row_id: str) -> "ReportSession":
        self.find_row(row_id)
        return self._with_rows(r for r in self.rows if r.row_id != row_id)

    def staff_changes(self) -> StaffScanResult:
        """Staff records the ledger implies but the org chart lacks; nothing is saved."""
        return scan_staff_changes(self.rows, self.tables.staff)
