#!/usr/bin/env python3
"""
integrity.py

Two checks that ride along with every report:

1. Attribution: which in-range rows could not be tied to a department
   and/or director (grouped by signing manager so the org chart can be fixed).
2. Reconciliation: every aggregated view's totals against the in-range raw
   rows, in cents. Row count and raw premium are checked alongside the
   derived metrics, so a row that adds nothing to qj/dc/bb still has to land
   in exactly one entry of each view. A mismatch is a defect in the aggregation code, so it is
   recorded in the summary rather than raised; strict callers can use
   assert_reconciled().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

import pandas as pd

from .aggregates import ReportView
from .reference import UNASSIGNED
from .resolve import ResolvedRow
from .transforms import in_range

RECONCILED_VIEWS = ("department", "channel", "hr", "tracking", "network", "data_source")
RECONCILED_METRICS = ("rows", "premium", "qj", "dc", "bb", "policies")
MAX_DETAILS = 100


class ReconciliationError(Exception):
    """Raised by assert_reconciled when a view total drifts from the raw rows."""
    pass


@dataclass(frozen=True)
class ReconcileResult:
    view: str
    metric: str
    expected: int
    actual: int
    tolerance: int = 0

    @property
    def delta(self) -> int:
        return self.actual - self.expected

    @property
    def ok(self) -> bool:
        return abs(self.delta) <= self.tolerance

    def to_dict(self) -> Dict[str, object]:
        return {
            "view": self.view,
            "metric": self.metric,
            "expected": self.expected,
            "actual": self.actual,
            "delta": self.delta,
            "ok": self.ok,
        }


@dataclass(frozen=True, eq=False)
class AttributionReport:
    missing_department: int = 0
    missing_director: int = 0
    missing_both: int = 0
    by_manager: pd.DataFrame = field(default_factory=pd.DataFrame)
    details: pd.DataFrame = field(default_factory=pd.DataFrame)

    @property
    def total_missing(self) -> int:
        return self.missing_department + self.missing_director - self.missing_both

    @property
    def ok(self) -> bool:
        return self.total_missing == 0


def raw_totals(rows: Iterable[ResolvedRow], start: int, end: int) -> Dict[str, int]:
    """In-range sums straight from the rows, independent of the view code."""
    totals = {m: 0 for m in RECONCILED_METRICS}
    for r in rows:
        if not in_range(r.month, start, end):
            continue
        totals["rows"] += 1
        totals["premium"] += r.premium_cents
        totals["qj"] += r.qj_cents
        totals["dc"] += r.dc_cents
        totals["bb"] += r.bb_cents
        totals["policies"] += int(r.counts_as_policy)
    return totals


def reconcile_views(
    views: Iterable[ReportView],
    rows: Sequence[ResolvedRow],
    start: int,
    end: int,
    tolerance: int = 0,
) -> Tuple[ReconcileResult, ...]:
    expected = raw_totals(rows, start, end)
    results: List[ReconcileResult] = []
    for view in views:
        if view.name not in RECONCILED_VIEWS:
            continue
        for metric in RECONCILED_METRICS:
            results.append(ReconcileResult(
                view=view.name,
                metric=metric,
                expected=expected[metric],
                actual=int(view.totals_cents.get(metric, 0)),
                tolerance=tolerance,
            ))
    return tuple(results)


def assert_reconciled(results: Iterable[ReconcileResult]) -> None:
    bad = [r for r in results if not r.ok]
    if bad:
        lines = [f"{r.view}.{r.metric}: expected {r.expected}, got {r.actual} (delta {r.delta})" for r in bad]
        raise ReconciliationError("View totals do not reconcile:\n" + "\n".join(lines))


def check_attribution(rows: Sequence[ResolvedRow], start: int, end: int) -> AttributionReport:
    no_dept = no_dir = both = 0
    groups: Dict[str, List] = {}
    details: List[Dict[str, object]] = []

    for r in rows:
        if not in_range(r.month, start, end):
            continue
        md = r.department == UNASSIGNED
        mr = r.director == UNASSIGNED
        if not (md or mr):
            continue
        no_dept += md
        no_dir += mr
        both += md and mr
        kind = "both" if md and mr else ("department" if md else "director")

        g = groups.setdefault(r.manager, [0, 0, set()])
        g[0] += 1
        g[1] += r.premium_cents
        g[2].add(r.month)

        if len(details) < MAX_DETAILS:
            details.append({
                "row_id": r.row_id,
                "policy_no": r.row.policy_no,
                "manager": r.manager,
                "branch": r.branch,
                "month": r.month,
                "premium": round(r.premium_cents / 100, 2),
                "missing": kind,
            })

    by_manager = pd.DataFrame(
        [
            {"manager": m, "rows": g[0], "premium": round(g[1] / 100, 2),
             "months": ",".join(str(x) for x in sorted(g[2]))}
            for m, g in sorted(groups.items(), key=lambda kv: (-kv[1][0], kv[0]))
        ],
        columns=["manager", "rows", "premium", "months"],
    )
    return AttributionReport(
        missing_department=no_dept,
        missing_director=no_dir,
        missing_both=both,
        by_manager=by_manager,
        details=pd.DataFrame(details, columns=["row_id", "policy_no", "manager", "branch",
                                               "month", "premium", "missing"]),
    )
