#!/usr/bin/env python3
"""
aggregates.py

Folds resolved rows into the report views. Every function here is a pure
function of (rows, roster, reference snapshot, daily rows, month range):
no I/O, no logging, no state carried between calls.

Money is summed as int64 cents in the group-bys and only converted to yuan
(2 dp) when a view's table is materialized. Each view keeps the cents totals
of its own rows so reconciliation compares exact integers.

Views
-----
- department:   by resolved department, targets and attainment, daily ledger
- channel:      by resolved channel, branch activity, trend/product detail
- hr:           by signing manager, roster branch counts
- tracking:     department -> member, in target order
- core_network: whitelist branches, 12-month series + in-range total
- network:      every roster branch, non-roster branches as 未分配
- data_source:  every resolved row with an in_range flag
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .reference import UNASSIGNED, ReferenceTables
from .resolve import ResolvedDaily, ResolvedRow
from .roster import Roster
from .transforms import MONTHS, in_range, validate_month_range

MONEY_METRICS = ("premium", "qj", "dc", "bb", "feiyou_qj", "guibao", "jzdc", "gmdc", "presale_qj")
COUNT_METRICS = ("rows", "policies", "feiyou_policies")
METRICS = MONEY_METRICS + COUNT_METRICS

BIG_POLICY_THRESHOLDS_CENTS = (
    ("ge_50k", 5_000_000),
    ("ge_100k", 10_000_000),
    ("ge_200k", 20_000_000),
    ("ge_500k", 50_000_000),
    ("ge_1m", 100_000_000),
)
BIG_POLICY_SUM_FLOOR_CENTS = 10_000_000
GUIBAO_MILESTONE_CENTS = 2_000_000
DAILY_FLOOR_TARGET_CENTS = 10_000_000

ROW_COLUMNS = [
    "row_id", "source_row", "policy_no", "holder_name", "product_raw", "product",
    "product_short", "product_category", "pay_interval", "pay_years", "value_class",
    "bank_raw", "bank", "bank_short", "channel_raw", "channel", "branch_raw", "branch",
    "branch_short", "manager", "department", "director", "status", "sign_date",
    "month", "in_range", "is_postal", "presale", "zhebiao_rate", "bb_weight",
    "plan_factor", *METRICS,
]


@dataclass(frozen=True, eq=False)
class ReportView:
    """
    One aggregated view. totals_cents and extras are read-only mappings;
    the DataFrames themselves are shared, so copy a table before editing it.
    """
    name: str
    table: pd.DataFrame
    totals_cents: Mapping[str, int] = field(default_factory=dict)
    extras: Mapping[str, pd.DataFrame] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "totals_cents", MappingProxyType(dict(self.totals_cents)))
        object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))

    @property
    def entries(self) -> int:
        return len(self.table)

    def totals(self) -> Dict[str, float]:
        return {k: _yuan(v) if k in MONEY_METRICS else v for k, v in self.totals_cents.items()}


# ======================================================
# HELPERS
# ======================================================

def _yuan(cents) -> float:
    return round(int(cents) / 100, 2)


def attainment(value_cents: int, target_cents: int) -> Optional[float]:
    """value / target; None (undefined) when there is no target."""
    if not target_cents:
        return None
    return round(value_cents / target_cents, 4)


def ratio(num: float, den: float) -> Optional[float]:
    if not den:
        return None
    return round(num / den, 4)


def to_yuan(df: pd.DataFrame, cols: Iterable[str] = MONEY_METRICS) -> pd.DataFrame:
    df = df.copy()
    for c in cols:
        if c in df.columns:
            df[c] = (df[c] / 100).round(2)
    return df


def _ordered(names: Iterable[Optional[str]], seen: Optional[set] = None) -> List[str]:
    seen = set() if seen is None else seen
    out = []
    for n in names:
        if n and n not in seen:
            seen.add(n)
            out.append(n)
    return out


def _with_unassigned_last(order: List[str], present: Iterable[str]) -> List[str]:
    present = set(present)
    tail = UNASSIGNED in present or UNASSIGNED in order
    rest = sorted(present - set(order) - {UNASSIGNED})
    order = [n for n in order if n != UNASSIGNED] + rest
    if tail:
        order.append(UNASSIGNED)
    return order


def _sum_by(frame: pd.DataFrame, keys, order=None) -> pd.DataFrame:
    g = frame.groupby(keys)[list(METRICS)].sum()
    if order is not None:
        g = g.reindex(order, fill_value=0)
    return g.astype("int64")


def _column_totals(g: pd.DataFrame) -> Dict[str, int]:
    return {m: int(g[m].sum()) for m in METRICS}


def rows_frame(rows: Sequence[ResolvedRow], start: int, end: int) -> pd.DataFrame:
    """Flat int64-cents frame of resolved rows; the base of every view."""
    records = []
    for r in rows:
        t = r.row
        records.append({
            "row_id": r.row_id,
            "source_row": t.source_row,
            "policy_no": t.policy_no,
            "holder_name": t.holder_name,
            "product_raw": t.product_raw,
            "product": r.product,
            "product_short": r.product_short,
            "product_category": r.product_category,
            "pay_interval": t.pay_interval,
            "pay_years": t.pay_years,
            "value_class": t.value_class,
            "bank_raw": t.bank_raw,
            "bank": r.bank,
            "bank_short": r.bank_short,
            "channel_raw": t.channel_raw,
            "channel": r.channel,
            "branch_raw": t.branch_raw,
            "branch": r.branch,
            "branch_short": r.branch_short,
            "manager": r.manager,
            "department": r.department,
            "director": r.director,
            "status": t.status,
            "sign_date": t.sign_date,
            "month": t.month,
            "in_range": in_range(t.month, start, end),
            "is_postal": r.is_postal,
            "presale": t.presale,
            "zhebiao_rate": r.zhebiao_rate,
            "bb_weight": r.bb_weight,
            "plan_factor": r.plan_factor,
            "premium": t.premium_cents,
            "rows": 1,
            "qj": r.qj_cents,
            "dc": r.dc_cents,
            "bb": r.bb_cents,
            "feiyou_qj": r.feiyou_qj_cents,
            "guibao": r.guibao_cents,
            "jzdc": r.jzdc_cents,
            "gmdc": r.gmdc_cents,
            "presale_qj": r.presale_qj_cents,
            "policies": int(r.counts_as_policy),
            "feiyou_policies": int(r.counts_as_policy and not r.is_postal),
        })
    frame = pd.DataFrame(records, columns=ROW_COLUMNS)
    frame = frame.astype({c: "int64" for c in (*METRICS, "source_row")})
    frame["month"] = frame["month"].astype("Int64")
    frame["in_range"] = frame["in_range"].astype(bool)
    return frame


# ======================================================
# ROSTER-DERIVED LOOKUPS
# ======================================================

@dataclass(frozen=True)
class _BranchStats:
    total: int = 0
    feiyou: int = 0
    active: int = 0
    physical: int = 0
    physical_active: int = 0


def _roster_channel_map(roster: Roster, tables: ReferenceTables) -> Dict[str, str]:
    index = tables.channel_index()
    return {e.branch: (index.lookup(e.channel) or e.channel or UNASSIGNED) for e in roster.entities}


def _branch_stats_by(
    roster: Roster,
    tables: ReferenceTables,
    key: str,
    branch_qj: Dict[str, int],
) -> Dict[str, _BranchStats]:
    """Roster branch counts per manager/department; active = qj > 0 in range."""
    channels = _roster_channel_map(roster, tables)
    postal = {c.name for c in tables.channels if c.is_postal}
    acc: Dict[str, List[int]] = {}
    for e in roster.entities:
        owner = getattr(e, key)
        if not owner:
            continue
        a = acc.setdefault(owner, [0, 0, 0, 0, 0])
        active = branch_qj.get(e.branch, 0) > 0
        a[0] += 1
        a[1] += channels[e.branch] not in postal
        a[2] += active
        a[3] += e.is_physical
        a[4] += e.is_physical and active
    return {k: _BranchStats(*v) for k, v in acc.items()}


def _branch_qj(frame: pd.DataFrame) -> Dict[str, int]:
    f = frame[frame["in_range"]]
    return {k: int(v) for k, v in f.groupby("branch")["qj"].sum().items()}


def department_order(frame: pd.DataFrame, roster: Roster, tables: ReferenceTables) -> List[str]:
    """Departments with a positive target first, then roster, then data."""
    seen: set = set()
    order = _ordered(
        (t.department for t in tables.targets if t.qj_target_cents > 0 or t.dc_target_cents > 0),
        seen,
    )
    order += _ordered((e.department for e in roster.entities), seen)
    return _with_unassigned_last(order, frame["department"].unique())


def target_for(tables: ReferenceTables, department: str, start: int, end: int) -> Tuple[int, int]:
    """Month targets inside the window are summed; otherwise the month=0 target applies."""
    mine = [t for t in tables.targets if t.department == department]
    monthly = [t for t in mine if t.month != 0 and start <= t.month <= end]
    if monthly:
        return sum(t.qj_target_cents for t in monthly), sum(t.dc_target_cents for t in monthly)
    yearly = [t for t in mine if t.month == 0]
    if yearly:
        return yearly[0].qj_target_cents, yearly[0].dc_target_cents
    return 0, 0


# ======================================================
# DEPARTMENT VIEW
# ======================================================

def _daily_by_department(daily_rows: Sequence[ResolvedDaily]) -> Dict[str, Tuple[int, int, int]]:
    acc: Dict[str, List[int]] = {}
    for d in daily_rows:
        a = acc.setdefault(d.department, [0, 0, 0])
        a[0] += d.qj_cents
        a[1] += d.feiyou_qj_cents
        a[2] += d.dc_cents
    return {k: tuple(v) for k, v in acc.items()}


def build_daily_view(daily_rows: Sequence[ResolvedDaily], order: Sequence[str]) -> ReportView:
    by_dept = _daily_by_department(daily_rows)
    names = _with_unassigned_last(list(order), by_dept.keys()) if by_dept else list(order)
    records = []
    for name in names:
        qj, feiyou, dc = by_dept.get(name, (0, 0, 0))
        records.append({
            "department": name,
            "qj": qj,
            "feiyou_qj": feiyou,
            "dc": dc,
            "floor_target": DAILY_FLOOR_TARGET_CENTS,
            "floor_rate": attainment(qj, DAILY_FLOOR_TARGET_CENTS),
        })
    table = pd.DataFrame(records, columns=["department", "qj", "feiyou_qj", "dc", "floor_target", "floor_rate"])
    totals = {
        "qj": sum(d.qj_cents for d in daily_rows),
        "feiyou_qj": sum(d.feiyou_qj_cents for d in daily_rows),
        "dc": sum(d.dc_cents for d in daily_rows),
    }
    return ReportView("daily", to_yuan(table, ("qj", "feiyou_qj", "dc", "floor_target")), totals)


def build_department_view(
    frame: pd.DataFrame,
    roster: Roster,
    tables: ReferenceTables,
    start: int,
    end: int,
    daily_rows: Sequence[ResolvedDaily] = (),
) -> ReportView:
    validate_month_range(start, end)
    f = frame[frame["in_range"]]
    order = department_order(f, roster, tables)
    g = _sum_by(f, "department", order)

    daily = _daily_by_department(daily_rows)
    branch_qj = _branch_qj(frame)
    ironclad: Dict[str, List[int]] = {}
    directors: Dict[str, str] = {}
    managers: Dict[str, set] = {}
    for e in roster.entities:
        if not e.department:
            continue
        directors.setdefault(e.department, e.director or "")
        if e.manager:
            managers.setdefault(e.department, set()).add(e.manager)
        if e.is_ironclad:
            a = ironclad.setdefault(e.department, [0, 0])
            a[0] += 1
            a[1] += branch_qj.get(e.branch, 0) > 0

    by_manager = f.groupby("manager")[["qj", "guibao"]].sum()
    mgr_qj = by_manager["qj"].to_dict()
    mgr_guibao = by_manager["guibao"].to_dict()

    records = []
    for name in order:
        row = g.loc[name]
        qj_t, dc_t = target_for(tables, name, start, end)
        dq, dfq, ddc = daily.get(name, (0, 0, 0))
        members = sorted(managers.get(name, ()))
        active = sum(1 for m in members if mgr_qj.get(m, 0) > 0)
        iron = ironclad.get(name, [0, 0])
        records.append({
            "department": name,
            "director": directors.get(name, ""),
            **{m: int(row[m]) for m in METRICS},
            "qj_target": qj_t,
            "qj_attainment": attainment(int(row["qj"]), qj_t),
            "qj_gap": qj_t - int(row["qj"]),
            "dc_target": dc_t,
            "dc_attainment": attainment(int(row["dc"]), dc_t),
            "dc_gap": dc_t - int(row["dc"]),
            "daily_qj": dq,
            "daily_feiyou_qj": dfq,
            "daily_dc": ddc,
            "managers": len(members),
            "managers_active": active,
            "open_rate": ratio(active, len(members)),
            "guibao_20k": sum(1 for m in members if mgr_guibao.get(m, 0) >= GUIBAO_MILESTONE_CENTS),
            "ironclad_total": iron[0],
            "ironclad_active": iron[1],
        })
    table = pd.DataFrame(records)
    if table.empty:
        table = pd.DataFrame(columns=["department", "director", *METRICS, "qj_target", "qj_attainment",
                                      "qj_gap", "dc_target", "dc_attainment", "dc_gap", "rank"])
    else:
        table["rank"] = table["qj"].rank(ascending=False, method="min").astype(int)

    money = (*MONEY_METRICS, "qj_target", "qj_gap", "dc_target", "dc_gap",
             "daily_qj", "daily_feiyou_qj", "daily_dc")
    extras = {
        "big_policies": _big_policies(f, order),
        "bank_matrix": _matrix(f, "department", "bank_short", order),
    }
    return ReportView("department", to_yuan(table, money), _column_totals(g), extras)


def _big_policies(f: pd.DataFrame, order: Sequence[str]) -> pd.DataFrame:
    annual = f[f["qj"] > 0]
    records = []
    for name in order:
        premiums = annual.loc[annual["department"] == name, "qj"]
        rec = {"department": name}
        for label, floor in BIG_POLICY_THRESHOLDS_CENTS:
            rec[label] = int((premiums >= floor).sum())
        rec["sum_ge_100k"] = _yuan(premiums[premiums >= BIG_POLICY_SUM_FLOOR_CENTS].sum())
        records.append(rec)
    return pd.DataFrame(records, columns=["department", *(l for l, _ in BIG_POLICY_THRESHOLDS_CENTS), "sum_ge_100k"])


def _matrix(f: pd.DataFrame, index: str, columns: str, order: Optional[Sequence[str]] = None,
            value: str = "qj") -> pd.DataFrame:
    if f.empty:
        return pd.DataFrame(columns=[index])
    pivot = f.pivot_table(index=index, columns=columns, values=value, aggfunc="sum", fill_value=0)
    if order is not None:
        pivot = pivot.reindex(order, fill_value=0)
    pivot = (pivot / 100).round(2)
    pivot.columns.name = None
    return pivot.reset_index()


# ======================================================
# CHANNEL VIEW
# ======================================================

def channel_order(frame: pd.DataFrame, roster_channels: Iterable[str], tables: ReferenceTables) -> List[str]:
    seen: set = set()
    order = _ordered((c.name for c in sorted(tables.channels, key=lambda c: c.sort_order)), seen)
    order += _ordered(sorted(set(roster_channels)), seen)
    return _with_unassigned_last(order, frame["channel"].unique())


def build_channel_view(
    frame: pd.DataFrame,
    roster: Roster,
    tables: ReferenceTables,
    start: int,
    end: int,
) -> ReportView:
    validate_month_range(start, end)
    f = frame[frame["in_range"]]
    roster_channels = _roster_channel_map(roster, tables)
    order = channel_order(f, roster_channels.values(), tables)
    g = _sum_by(f, "channel", order)
    total_qj = int(g["qj"].sum())

    active_branches = set(f["branch"].unique())
    net_total: Dict[str, int] = {}
    net_active: Dict[str, int] = {}
    for branch, channel in roster_channels.items():
        net_total[channel] = net_total.get(channel, 0) + 1
        net_active[channel] = net_active.get(channel, 0) + (branch in active_branches)

    records = []
    for name in order:
        row = g.loc[name]
        qj = int(row["qj"])
        total = net_total.get(name, 0)
        active = net_active.get(name, 0)
        records.append({
            "channel": name,
            **{m: int(row[m]) for m in METRICS},
            "share": ratio(qj, total_qj),
            "net_total": total,
            "net_active": active,
            "active_rate": ratio(active, total),
            "avg_output": _yuan(qj // active) if active else None,
        })
    table = pd.DataFrame(records, columns=["channel", *METRICS, "share", "net_total", "net_active",
                                           "active_rate", "avg_output"])

    extras = {
        "monthly_trend": _monthly_trend(frame, "channel", order),
        "product_detail": _product_detail(f),
        "product_matrix": _matrix(f, "channel", "product_short", order),
    }
    return ReportView("channel", to_yuan(table), _column_totals(g), extras)


def _monthly_trend(frame: pd.DataFrame, key: str, order: Sequence[str]) -> pd.DataFrame:
    """qj per month 1-12 regardless of the selected range."""
    dated = frame[frame["month"].notna()]
    if dated.empty:
        pivot = pd.DataFrame(0, index=list(order), columns=list(MONTHS))
    else:
        dated = dated.assign(month=dated["month"].astype(int))
        pivot = dated.pivot_table(index=key, columns="month", values="qj", aggfunc="sum", fill_value=0)
        pivot = pivot.reindex(index=list(order), columns=list(MONTHS), fill_value=0)
    pivot = (pivot / 100).round(2)
    pivot.columns = [f"m{m}" for m in MONTHS]
    pivot.index.name = key
    return pivot.reset_index()


def _product_detail(f: pd.DataFrame) -> pd.DataFrame:
    cols = ["product_short", "qj", "share", "y3", "y5", "dc"]
    if f.empty:
        return pd.DataFrame(columns=cols)
    years = pd.to_numeric(f["pay_years"], errors="coerce")
    work = pd.DataFrame({
        "product_short": f["product_short"],
        "qj": f["qj"],
        "y3": f["qj"].where(years == 3, 0),
        "y5": f["qj"].where(years == 5, 0),
        "dc": f["dc"],
    })
    g = work.groupby("product_short")[["qj", "y3", "y5", "dc"]].sum()
    g = g[(g["qj"] > 0) | (g["dc"] > 0)].sort_values(["qj", "dc"], ascending=False)
    total = int(g["qj"].sum())
    g["share"] = [ratio(int(v), total) for v in g["qj"]]
    g = g.reset_index()[cols]
    return to_yuan(g, ("qj", "y3", "y5", "dc"))


# ======================================================
# HR VIEW
# ======================================================

def build_hr_view(
    frame: pd.DataFrame,
    roster: Roster,
    tables: ReferenceTables,
    start: int,
    end: int,
) -> ReportView:
    validate_month_range(start, end)
    f = frame[frame["in_range"]]

    home: Dict[str, Tuple[str, str, str]] = {}
    for e in roster.entities:
        if e.manager and e.manager not in home:
            home[e.manager] = (e.department or UNASSIGNED, e.director or UNASSIGNED, e.manager_code or "")
    for rec in f[["manager", "department", "director"]].itertuples(index=False):
        home.setdefault(rec.manager, (rec.department, rec.director, ""))

    order = _with_unassigned_last(sorted(m for m in home if m != UNASSIGNED), f["manager"].unique())
    g = _sum_by(f, "manager", order)
    stats = _branch_stats_by(roster, tables, "manager", _branch_qj(frame))
    person = {p.name: p for p in tables.person_targets}

    records = []
    for name in order:
        row = g.loc[name]
        m = {k: int(row[k]) for k in METRICS}
        dept, director, code = home.get(name, (UNASSIGNED, UNASSIGNED, ""))
        s = stats.get(name, _BranchStats())
        p = person.get(name)
        maintain = p.maintain_bb_cents if p else 0
        realtime = m["qj"] - m["presale_qj"]
        records.append({
            "manager": name,
            "code": code,
            "department": dept,
            "director": director,
            **m,
            "realtime_qj": realtime,
            "broke_zero": int(m["qj"] > 0),
            "feiyou_broke_zero": int(m["feiyou_qj"] > 0),
            "realtime_broke_zero": int(realtime > 0),
            "net_total": s.total,
            "net_feiyou": s.feiyou,
            "net_active": s.active,
            "net_physical": s.physical,
            "net_physical_active": s.physical_active,
            "rank": p.rank if p else "",
            "maintain_bb": maintain,
            "maintain_gap": 0 if m["bb"] >= maintain else m["bb"] - maintain,
        })
    table = pd.DataFrame(records, columns=[
        "manager", "code", "department", "director", *METRICS, "realtime_qj", "broke_zero",
        "feiyou_broke_zero", "realtime_broke_zero", "net_total", "net_feiyou", "net_active",
        "net_physical", "net_physical_active", "rank", "maintain_bb", "maintain_gap",
    ])
    money = (*MONEY_METRICS, "realtime_qj", "maintain_bb", "maintain_gap")
    return ReportView("hr", to_yuan(table, money), _column_totals(g))


# ======================================================
# TRACKING VIEW
# ======================================================

def build_tracking_view(
    frame: pd.DataFrame,
    roster: Roster,
    tables: ReferenceTables,
    start: int,
    end: int,
) -> ReportView:
    validate_month_range(start, end)
    f = frame[frame["in_range"]]
    departments = department_order(f, roster, tables)

    members: Dict[str, List[str]] = {d: [] for d in departments}
    for e in roster.entities:
        if e.department and e.manager and e.manager not in members.setdefault(e.department, []):
            members[e.department].append(e.manager)
    for rec in f[["department", "manager"]].drop_duplicates().itertuples(index=False):
        if rec.manager not in members.setdefault(rec.department, []):
            members[rec.department].append(rec.manager)

    g = f.groupby(["department", "manager"])[list(METRICS)].sum().astype("int64")
    member_qj = {k: int(v) for k, v in g["qj"].items()}

    keys: List[Tuple[str, str]] = []
    for d in departments:
        ranked = sorted(members.get(d, []), key=lambda m: (-member_qj.get((d, m), 0), m))
        keys.extend((d, m) for m in ranked)
    g = g.reindex(pd.MultiIndex.from_tuples(keys, names=["department", "manager"]), fill_value=0) \
        if keys else g

    stats = _branch_stats_by(roster, tables, "manager", _branch_qj(frame))
    records = []
    for d, m in keys:
        row = g.loc[(d, m)]
        s = stats.get(m, _BranchStats())
        records.append({
            "department": d,
            "manager": m,
            **{k: int(row[k]) for k in METRICS},
            "net_total": s.total,
            "net_feiyou": s.feiyou,
            "net_active": s.active,
            "net_physical": s.physical,
            "net_physical_active": s.physical_active,
        })
    cols = ["department", "manager", *METRICS, "net_total", "net_feiyou", "net_active",
            "net_physical", "net_physical_active"]
    table = pd.DataFrame(records, columns=cols)

    subtotals = table.groupby("department", sort=False)[list(METRICS)].sum().reset_index() \
        if not table.empty else pd.DataFrame(columns=["department", *METRICS])
    totals = _column_totals(table) if not table.empty else {m: 0 for m in METRICS}
    return ReportView("tracking", to_yuan(table), totals, {"departments": to_yuan(subtotals)})


# ======================================================
# CORE NETWORK VIEW
# ======================================================

def build_core_network_view(
    frame: pd.DataFrame,
    roster: Roster,
    tables: ReferenceTables,
    start: int,
    end: int,
) -> ReportView:
    validate_month_range(start, end)
    index = tables.branch_index(roster.branch_names())
    whitelist: Dict[str, object] = {}
    for c in tables.core_networks:
        whitelist.setdefault(index.lookup(c.agency_name) or c.agency_name, c)

    core = frame[frame["branch"].isin(list(whitelist)) & frame["month"].notna()]
    by_month: Dict[Tuple[str, int], int] = {}
    if not core.empty:
        for (branch, month), v in core.groupby(["branch", "month"])["qj"].sum().items():
            by_month[(branch, int(month))] = int(v)
    in_range_core = core[core["in_range"]]
    policies = in_range_core.groupby("branch")["policies"].sum().to_dict()

    records = []
    totals = {"qj": 0, "policies": 0}
    for branch, c in whitelist.items():
        series = [by_month.get((branch, m), 0) for m in MONTHS]
        selected = sum(series[m - 1] for m in range(start, end + 1))
        n = int(policies.get(branch, 0))
        totals["qj"] += selected
        totals["policies"] += n
        records.append({
            "branch": branch,
            "bank": c.bank,
            "customer_manager": c.customer_manager,
            "dept_manager": c.dept_manager,
            "area_director": c.area_director,
            **{f"m{m}": _yuan(v) for m, v in zip(MONTHS, series)},
            "qj": _yuan(selected),
            "policies": n,
            "months_active": sum(1 for v in series if v > 0),
        })
    cols = ["branch", "bank", "customer_manager", "dept_manager", "area_director",
            *(f"m{m}" for m in MONTHS), "qj", "policies", "months_active"]
    return ReportView("core_network", pd.DataFrame(records, columns=cols), totals)


# ======================================================
# NETWORK VIEW
# ======================================================

NETWORK_COLUMNS = ["branch", "short_name", "bank", "channel", "branch_code", "manager", "department",
                   "director", "city", "is_physical", "is_ironclad"]


def build_network_view(
    frame: pd.DataFrame,
    roster: Roster,
    tables: ReferenceTables,
    start: int,
    end: int,
) -> ReportView:
    """One row per roster branch; ledger branches outside the roster fold into 未分配."""
    validate_month_range(start, end)
    f = frame[frame["in_range"]]
    entities = {e.branch: e for e in roster.entities}
    keyed = f.assign(network=f["branch"].where(f["branch"].isin(list(entities)), UNASSIGNED))
    order = _with_unassigned_last(_ordered(entities), keyed["network"].unique())
    g = _sum_by(keyed, "network", order)
    shorts = tables.network_short_names()

    records = []
    for name in order:
        row = g.loc[name]
        e = entities.get(name)
        m = {k: int(row[k]) for k in METRICS}
        records.append({
            "branch": name,
            "short_name": shorts.get(name, ""),
            "bank": e.bank if e else "",
            "channel": e.channel if e else "",
            "branch_code": e.branch_code if e else "",
            "manager": e.manager if e else "",
            "department": e.department if e else "",
            "director": e.director if e else "",
            "city": e.city if e else "",
            "is_physical": bool(e and e.is_physical),
            "is_ironclad": bool(e and e.is_ironclad),
            **m,
            "realtime_qj": m["qj"] - m["presale_qj"],
        })
    table = pd.DataFrame(records, columns=[*NETWORK_COLUMNS, *METRICS, "realtime_qj"])
    return ReportView("network", to_yuan(table, (*MONEY_METRICS, "realtime_qj")), _column_totals(g))


# ======================================================
# RAW DATA-SOURCE VIEW
# ======================================================

def build_data_source_view(frame: pd.DataFrame, start: int, end: int) -> ReportView:
    validate_month_range(start, end)
    f = frame[frame["in_range"]]
    totals = {m: int(f[m].sum()) for m in METRICS}
    return ReportView("data_source", to_yuan(frame.drop(columns=["rows"])), totals)


def paginate(table: pd.DataFrame, page: int = 1, page_size: int = 50) -> Tuple[pd.DataFrame, int]:
    """1-based page slice plus the page count."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    pages = max(1, -(-len(table) // page_size))
    page = min(max(page, 1), pages)
    lo = (page - 1) * page_size
    return table.iloc[lo:lo + page_size].reset_index(drop=True), pages
