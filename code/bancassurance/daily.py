"""
daily.py

Optional same-day ledger (日清单). Its layout differs from the main ledger:
the amount column is 保费, the header usually sits one row higher, and the
department manager's name is carried on the row itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .headers import (
    DAILY_KEY_COLUMNS,
    build_header_index,
    cell_text,
    detect_header_row,
    resolve_column,
)
from .normalize import clean_text, month_of, parse_amount_cents, parse_sign_date

DAILY_DEFAULT_HEADER_ROW = 5

DAILY_HEADERS: Dict[str, Tuple[str, ...]] = {
    "policy_no": ("保单号",),
    "holder_name": ("投保人姓名",),
    "product_raw": ("险种",),
    "pay_interval": ("交费间隔", "缴费间隔"),
    "premium": ("保费",),
    "bank_raw": ("银行总行",),
    "agency_raw": ("代理机构名称",),
    "manager_raw": ("推荐人名称", "姓名"),
    "dept_manager_raw": ("营业部经理姓名", "营业部"),
    "status": ("保单状态",),
    "sign_date": ("签单日期",),
}


@dataclass(frozen=True)
class DailyRow:
    policy_no: Optional[str] = None
    holder_name: Optional[str] = None
    product_raw: Optional[str] = None
    pay_interval: Optional[str] = None
    premium_cents: int = 0
    bank_raw: Optional[str] = None
    agency_raw: Optional[str] = None
    manager_raw: Optional[str] = None
    dept_manager_raw: Optional[str] = None
    status: Optional[str] = None
    month: Optional[int] = None


@dataclass(frozen=True)
class DailySheet:
    rows: Tuple[DailyRow, ...]
    header_row: int
    soft_errors: int = 0
    dropped_blank: int = 0


def normalize_daily(
    rows: Sequence[Optional[Sequence[object]]],
    header_row: Optional[int] = None,
) -> DailySheet:
    if header_row is None:
        header_row = detect_header_row(rows, DAILY_KEY_COLUMNS, default=DAILY_DEFAULT_HEADER_ROW)

    header_cells = rows[header_row] if 0 <= header_row < len(rows) else None
    index = build_header_index(header_cells)
    cols = {f: resolve_column(index, names) for f, names in DAILY_HEADERS.items()}

    out: List[DailyRow] = []
    soft_errors = 0
    dropped = 0
    for r in range(header_row + 1, len(rows)):
        raw = rows[r]
        # the export pads with rows whose first cell is empty
        if not raw or cell_text(raw[0]) == "":
            dropped += 1
            continue

        def get(f: str) -> object:
            c = cols[f]
            return raw[c] if c is not None and c < len(raw) else None

        premium_cents, ok = parse_amount_cents(get("premium"))
        if not ok:
            soft_errors += 1
        sign_date, ok = parse_sign_date(get("sign_date"))
        if not ok:
            soft_errors += 1

        out.append(DailyRow(
            policy_no=clean_text(get("policy_no")),
            holder_name=clean_text(get("holder_name")),
            product_raw=clean_text(get("product_raw")),
            pay_interval=clean_text(get("pay_interval")),
            premium_cents=premium_cents,
            bank_raw=clean_text(get("bank_raw")),
            agency_raw=clean_text(get("agency_raw")),
            manager_raw=clean_text(get("manager_raw")),
            dept_manager_raw=clean_text(get("dept_manager_raw")),
            status=clean_text(get("status")),
            month=month_of(sign_date),
        ))

    if soft_errors:
        print(f"[WARNING] Daily ledger: {soft_errors} cells could not be parsed")

    return DailySheet(
        rows=tuple(out),
        header_row=header_row,
        soft_errors=soft_errors,
        dropped_blank=dropped,
    )
