#!/usr/bin/env python3
"""
resolve.py

Joins normalized ledger rows to the roster and reference tables and derives
the per-row premium metrics every view sums.

Attribution
-----------
- branch:     network table / roster names, then network short-name aliases
- channel:    roster channel of the branch, else the row's 十大银行渠道 text
              (银行总行 when that is blank), looked up in the channel table
- department: roster (by branch, then branch code) -> org chart (signing
              manager in force for the row's month) -> 未分配
- director:   roster -> org chart (department's director) -> 未分配

A miss never drops a row: the raw text becomes the resolved value and is
counted as unresolved for that dimension. Blank text resolves to 未分配.

Metrics (integer cents)
-----------------------
- qj      年交 premium
- dc      趸交 premium
- bb      (qj + dc * zhebiao(product, tenor)) * channel bbWeight
- guibao  premium * 0.2 for 价值类 趸交, premium otherwise
- jzdc    趸交 premium of 价值类 rows
- gmdc    趸交 premium of 规模类 rows
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Sequence, Tuple

from .daily import DailyRow
from .normalize import TransactionRow
from .orgchart import OrgChart
from .reference import UNASSIGNED, ReferenceTables, product_key
from .roster import OrgEntity, Roster

ANNUAL = "年交"
LUMP = "趸交"
VALUE_CLASS = "价值类"
SCALE_CLASS = "规模类"
GUIBAO_VALUE_LUMP_FACTOR = Decimal("0.2")
PLAN_FACTORS = {"方案1": 1.0, "方案0.5": 0.5}

DIMENSIONS = ("channel", "bank", "product", "branch")


@dataclass(frozen=True)
class ResolvedRow:
    row: TransactionRow
    product: str
    product_short: str
    product_category: str
    bank: str
    bank_short: str
    channel: str
    branch: str
    branch_short: str
    department: str
    director: str
    manager: str
    is_postal: bool
    zhebiao_rate: float
    bb_weight: float
    qj_cents: int
    dc_cents: int
    bb_cents: int
    guibao_cents: int
    jzdc_cents: int
    gmdc_cents: int
    presale_qj_cents: int
    plan_factor: float
    counts_as_policy: bool

    @property
    def row_id(self) -> str:
        return self.row.row_id

    @property
    def month(self) -> Optional[int]:
        return self.row.month

    @property
    def premium_cents(self) -> int:
        return self.row.premium_cents

    @property
    def feiyou_qj_cents(self) -> int:
        return 0 if self.is_postal else self.qj_cents


@dataclass(frozen=True)
class ResolvedDaily:
    row: DailyRow
    department: str
    is_postal: bool
    qj_cents: int
    dc_cents: int

    @property
    def feiyou_qj_cents(self) -> int:
        return 0 if self.is_postal else self.qj_cents


@dataclass(frozen=True)
class ResolveResult:
    rows: Tuple[ResolvedRow, ...]
    unresolved: Dict[str, int]
    unresolved_values: Dict[str, Tuple[str, ...]]
    unassigned: int


def _scale(cents: int, factor: Decimal) -> int:
    return int((Decimal(cents) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _is_number(text: Optional[str]) -> bool:
    if text is None:
        return False
    try:
        float(text)
    except ValueError:
        return False
    return True


def counts_as_policy(pay_years: Optional[str]) -> bool:
    return _is_number(pay_years) and float(pay_years) >= 0


class Resolver:
    """Lookup indices for one run. Build once, then resolve every row."""

    def __init__(self, roster: Roster, tables: ReferenceTables):
        self.tables = tables
        self.product_index = tables.product_index()
        self.bank_index = tables.bank_index()
        self.channel_index = tables.channel_index()
        self.branch_index = tables.branch_index(roster.branch_names())

        self.products = tables.product_by_name()
        self.banks = tables.bank_by_name()
        self.channels = tables.channel_by_name()
        self.network_shorts = tables.network_short_names()
        self.zhebiao = tables.zhebiao_table()
        self.roster_by_branch = roster.by_branch()
        self.roster_by_code = roster.by_code()
        self.org = OrgChart(tables.staff)

        self.unresolved: Counter = Counter()
        self.unresolved_values: Dict[str, set] = {d: set() for d in DIMENSIONS}

    # --------------------------------------------------

    def _resolve(self, dimension: str, index, raw: Optional[str]) -> Tuple[str, bool]:
        if not raw:
            return UNASSIGNED, False
        hit = index.lookup(raw)
        if hit is not None:
            return hit, True
        self.unresolved[dimension] += 1
        self.unresolved_values[dimension].add(raw)
        return raw, False

    def zhebiao_rate(self, product_raw: Optional[str], product: str, pay_years: Optional[str]) -> float:
        tenor = pay_years or ""
        for name in (product_raw, product):
            key = product_key(name)
            if (key, tenor) in self.zhebiao:
                return self.zhebiao[(key, tenor)]
        if _is_number(tenor):
            want = float(tenor)
            for name in (product_raw, product):
                key = product_key(name)
                for (p, t), rate in self.zhebiao.items():
                    if p == key and _is_number(t) and float(t) == want:
                        return rate
        return 0.0

    def roster_entity(self, branch: str, branch_code: Optional[str]) -> Optional[OrgEntity]:
        ent = self.roster_by_branch.get(branch)
        if ent is None and branch_code:
            ent = self.roster_by_code.get(branch_code)
        return ent

    def resolve_row(self, row: TransactionRow) -> ResolvedRow:
        product, _ = self._resolve("product", self.product_index, row.product_raw)
        bank, _ = self._resolve("bank", self.bank_index, row.bank_raw)
        branch, _ = self._resolve("branch", self.branch_index, row.branch_raw)

        ent = self.roster_entity(branch, row.branch_code)
        channel_text = (ent.channel if ent and ent.channel else None) or row.channel_raw or row.bank_raw
        channel, _ = self._resolve("channel", self.channel_index, channel_text)
        channel_ref = self.channels.get(channel)

        department = (ent.department if ent else None) or self.org.department_of(row.manager_raw, row.month)
        department = department or UNASSIGNED
        director = (ent.director if ent else None) or self.org.director_of(department, row.month)
        director = director or UNASSIGNED

        product_ref = self.products.get(product)
        bank_ref = self.banks.get(bank)

        premium = row.premium_cents
        interval = row.pay_interval or ""
        qj = premium if interval == ANNUAL else 0
        dc = premium if interval == LUMP else 0

        rate = self.zhebiao_rate(row.product_raw, product, row.pay_years)
        weight = channel_ref.bb_weight if channel_ref else 1.0
        bb = _scale(qj + _scale(dc, Decimal(str(rate))), Decimal(str(weight)))

        value_lump = interval == LUMP and row.value_class == VALUE_CLASS
        guibao = _scale(premium, GUIBAO_VALUE_LUMP_FACTOR) if value_lump else premium
        category = product_ref.category if product_ref else ""

        return ResolvedRow(
            row=row,
            product=product,
            product_short=(product_ref.short_name if product_ref else "") or product,
            product_category=category,
            bank=bank,
            bank_short=(bank_ref.short_name if bank_ref else "") or bank,
            channel=channel,
            branch=branch,
            branch_short=self.network_shorts.get(branch, ""),
            department=department,
            director=director,
            manager=row.manager_raw or UNASSIGNED,
            is_postal=bool(channel_ref and channel_ref.is_postal),
            zhebiao_rate=rate,
            bb_weight=weight,
            qj_cents=qj,
            dc_cents=dc,
            bb_cents=bb,
            guibao_cents=guibao,
            jzdc_cents=dc if value_lump else 0,
            gmdc_cents=dc if row.value_class == SCALE_CLASS else 0,
            presale_qj_cents=qj if row.presale else 0,
            plan_factor=PLAN_FACTORS.get(category, 0.0) if qj else 0.0,
            counts_as_policy=counts_as_policy(row.pay_years),
        )

    def resolve_daily(self, row: DailyRow) -> ResolvedDaily:
        department = row.dept_manager_raw
        if not department and row.agency_raw:
            branch = self.branch_index.lookup(row.agency_raw) or row.agency_raw
            ent = self.roster_by_branch.get(branch)
            department = ent.department if ent else None
        channel = self.channel_index.lookup(row.bank_raw)
        channel_ref = self.channels.get(channel) if channel else None
        interval = row.pay_interval or ""
        return ResolvedDaily(
            row=row,
            department=department or UNASSIGNED,
            is_postal=bool(channel_ref and channel_ref.is_postal),
            qj_cents=row.premium_cents if interval == ANNUAL else 0,
            dc_cents=row.premium_cents if interval == LUMP else 0,
        )

    def result(self, rows: Sequence[ResolvedRow]) -> ResolveResult:
        return ResolveResult(
            rows=tuple(rows),
            unresolved={d: self.unresolved.get(d, 0) for d in DIMENSIONS},
            unresolved_values={d: tuple(sorted(self.unresolved_values[d])) for d in DIMENSIONS},
            unassigned=sum(1 for r in rows if r.department == UNASSIGNED),
        )


def resolve_rows(
    rows: Sequence[TransactionRow],
    roster: Roster,
    tables: ReferenceTables,
) -> ResolveResult:
    resolver = Resolver(roster, tables)
    return resolver.result([resolver.resolve_row(r) for r in rows])


def resolve_daily_rows(
    rows: Sequence[DailyRow],
    roster: Roster,
    tables: ReferenceTables,
) -> Tuple[ResolvedDaily, ...]:
    resolver = Resolver(roster, tables)
    return tuple(resolver.resolve_daily(r) for r in rows)
