from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Tuple

import pandas as pd

from .aggregates import ReportView
from .integrity import AttributionReport, ReconcileResult

VIEW_NAMES = ("department", "channel", "hr", "tracking", "core_network", "network", "data_source", "daily")


@dataclass(frozen=True)
class ReportSummary:
    month_start: int
    month_end: int
    generated_at: str
    reference_version: str
    source_rows: int
    in_range_rows: int
    roster_entities: int
    daily_rows: int
    dropped_blank: int = 0
    dropped_footer: int = 0
    soft_errors: int = 0
    roster_duplicates: int = 0
    missing_columns: Tuple[str, ...] = ()
    unresolved: Mapping[str, int] = field(default_factory=dict)
    unresolved_values: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    unassigned: int = 0
    view_entries: Mapping[str, int] = field(default_factory=dict)
    reconciliation: Tuple[ReconcileResult, ...] = ()

    def __post_init__(self):
        for name in ("unresolved", "unresolved_values", "view_entries"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @property
    def reconciled(self) -> bool:
        return all(r.ok for r in self.reconciliation)


@dataclass(frozen=True, eq=False)
class AggregatedReport:
    """
    Every view of one month range plus the summary. Counters and totals are
    read-only mappings; view tables are shared DataFrames, so copy one before
    editing it.
    """
    department: ReportView
    channel: ReportView
    hr: ReportView
    tracking: ReportView
    core_network: ReportView
    network: ReportView
    data_source: ReportView
    daily: ReportView
    integrity: AttributionReport
    summary: ReportSummary

    def views(self) -> Dict[str, ReportView]:
        return {name: getattr(self, name) for name in VIEW_NAMES}

    def tables(self) -> Dict[str, pd.DataFrame]:
        """Every table keyed by a sheet-safe name, main tables first."""
        out: Dict[str, pd.DataFrame] = {}
        for name, view in self.views().items():
            out[name] = view.table
        for name, view in self.views().items():
            for extra, df in view.extras.items():
                out[f"{name}_{extra}"] = df
        out["integrity_by_manager"] = self.integrity.by_manager
        out["integrity_details"] = self.integrity.details
        return out

    def to_dict(self) -> Dict[str, object]:
        s = self.summary
        out: Dict[str, object] = {
            "summary": {
                "month_start": s.month_start,
                "month_end": s.month_end,
                "generated_at": s.generated_at,
                "reference_version": s.reference_version,
                "source_rows": s.source_rows,
                "in_range_rows": s.in_range_rows,
                "roster_entities": s.roster_entities,
                "daily_rows": s.daily_rows,
                "dropped_blank": s.dropped_blank,
                "dropped_footer": s.dropped_footer,
                "soft_errors": s.soft_errors,
                "roster_duplicates": s.roster_duplicates,
                "missing_columns": list(s.missing_columns),
                "unresolved": dict(s.unresolved),
                "unresolved_values": {k: list(v) for k, v in s.unresolved_values.items()},
                "unassigned": s.unassigned,
                "view_entries": dict(s.view_entries),
                "reconciled": s.reconciled,
                "reconciliation": [r.to_dict() for r in s.reconciliation],
            },
            "integrity": {
                "missing_department": self.integrity.missing_department,
                "missing_director": self.integrity.missing_director,
                "missing_both": self.integrity.missing_both,
                "by_manager": frame_records(self.integrity.by_manager),
                "details": frame_records(self.integrity.details),
            },
        }
        for name, view in self.views().items():
            out[name] = {
                "rows": frame_records(view.table),
                "totals": {k: _jsonable(v) for k, v in view.totals().items()},
                **{extra: frame_records(df) for extra, df in view.extras.items()},
            }
        return out


def _jsonable(v):
    if v is None or v is pd.NA or v is pd.NaT:
        return None
    if hasattr(v, "item"):
        v = v.item()
    if isinstance(v, float) and math.isnan(v):
        return None
    return v


def frame_records(df: pd.DataFrame):
    return [{str(k): _jsonable(v) for k, v in rec.items()} for rec in df.to_dict(orient="records")]


def assemble_report(
    views: Mapping[str, ReportView],
    integrity: AttributionReport,
    reconciliation: Tuple[ReconcileResult, ...],
    stats: Mapping[str, object],
    month_start: int,
    month_end: int,
    generated_at: str,
    reference_version: str = "",
) -> AggregatedReport:
    """
    Compose views and counters into the immutable report.

    Entry counts are read off the views themselves so the summary cannot
    drift from what the caller renders.
    """
    data_source = views["data_source"]
    summary = ReportSummary(
        month_start=month_start,
        month_end=month_end,
        generated_at=generated_at,
        reference_version=reference_version,
        source_rows=data_source.entries,
        in_range_rows=int(data_source.table["in_range"].sum()),
        roster_entities=int(stats.get("roster_entities", 0)),
        daily_rows=int(stats.get("daily_rows", 0)),
        dropped_blank=int(stats.get("dropped_blank", 0)),
        dropped_footer=int(stats.get("dropped_footer", 0)),
        soft_errors=int(stats.get("soft_errors", 0)),
        roster_duplicates=int(stats.get("roster_duplicates", 0)),
        missing_columns=tuple(stats.get("missing_columns", ())),
        unresolved=dict(stats.get("unresolved", {})),
        unresolved_values=dict(stats.get("unresolved_values", {})),
        unassigned=int(stats.get("unassigned", 0)),
        view_entries={name: views[name].entries for name in VIEW_NAMES},
        reconciliation=tuple(reconciliation),
    )
    return AggregatedReport(
        department=views["department"],
        channel=views["channel"],
        hr=views["hr"],
        tracking=views["tracking"],
        core_network=views["core_network"],
        network=views["network"],
        data_source=data_source,
        daily=views["daily"],
        integrity=integrity,
        summary=summary,
    )


def save_csv(df, path):
    df.to_csv(path, index=False, encoding="utf-8-sig")


def save_excel(tables, path):
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, df in tables.items():
            df.to_excel(writer, sheet_name=name[:31], index=False)
