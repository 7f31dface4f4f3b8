#!/usr/bin/env python3
"""
normalize.py

Turns the raw cells of a ledger sheet (数据源) into TransactionRow records.

Input Contract
--------------
- rows: the first sheet as a list of rows (each an ordered sequence of cells
  of mixed type: str, int, float, datetime, None)
- header_row: index of the header row (see headers.detect_header_row)

Coercion rules
--------------
- Money: thousands separators, currency marks (￥, 元, RMB) and surrounding
  whitespace are stripped; anything else left over (units such as 万,
  exponents, inner spaces) or a negative value becomes 0 and counts as one
  soft error.
  Amounts are stored as integer cents so sums never drift.
- Dates: datetime cells, Excel serial numbers, YYYY-MM-DD, YYYY/MM/DD,
  YYYY年M月D日 and anything pandas can parse. Failure leaves month unset.
- Text: trimmed, empty -> None.

Rows blank across every key column are dropped; so are footer rows whose
policy-number cell is a totals label. Nothing here raises on bad cells.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .headers import (
    SOURCE_KEY_COLUMNS,
    build_header_index,
    cell_text,
    detect_header_row,
    resolve_column,
)


# ======================================================
# COLUMN CONTRACT
# ======================================================

# canonical field -> accepted header labels (first match wins)
FIELD_HEADERS: Dict[str, Tuple[str, ...]] = {
    "policy_no": ("保单号",),
    "holder_name": ("投保人姓名",),
    "product_raw": ("险种",),
    "pay_interval": ("缴费间隔", "交费间隔"),
    "pay_years": ("缴费期间年", "交费期间年", "缴费年期", "交费年期"),
    "premium": ("新约保费",),
    "value_class": ("价值规模分类",),
    "channel_raw": ("十大银行渠道", "销售渠道"),
    "bank_raw": ("银行总行",),
    "agency_raw": ("代理机构名称",),
    "branch_raw": ("业绩归属网点名称", "网点名称"),
    "branch_code": ("业绩归属网点代码", "代理机构代码"),
    "manager_raw": ("业绩归属客户经理姓名",),
    "dept_manager_raw": ("营业部经理名称", "营业部经理姓名"),
    "director_raw": ("营业区总监", "营业区总监姓名"),
    "status": ("保单状态",),
    "sign_date": ("保单签单日期", "签单日期"),
    "prerecorded": ("是否行方预录",),
    "reserved": ("是否蓄客",),
    "prospect": ("是否潜客",),
}

KEY_FIELDS = ("policy_no", "premium", "product_raw", "bank_raw", "status")

CRITICAL_COLUMNS = (
    "新约保费", "保单号", "险种", "缴费间隔", "保单签单日期", "保单状态",
    "银行总行", "代理机构名称", "业绩归属网点名称", "业绩归属客户经理姓名",
    "营业部经理名称", "营业区总监",
)

FOOTER_LABELS = {"合计", "总计", "小计", "总合计"}

YES = "是"

EXCEL_EPOCH = datetime(1899, 12, 30)
EXCEL_SERIAL_MAX = 2958465  # 9999-12-31

CURRENCY_MARKS = ("￥", "¥", "元", "RMB", "CNY")
_AMOUNT = re.compile(r"(\()?(-?(?:\d+(?:\.\d*)?|\.\d+))(\))?")

_DATE_PATTERNS = [
    re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})"),
    re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})"),
    re.compile(r"^(\d{4})\.(\d{1,2})\.(\d{1,2})"),
    re.compile(r"^(\d{4})年(\d{1,2})月(\d{1,2})日?"),
]


# ======================================================
# TYPES
# ======================================================

@dataclass(frozen=True)
class TransactionRow:
    row_id: str = ""
    source_row: int = -1
    policy_no: Optional[str] = None
    holder_name: Optional[str] = None
    product_raw: Optional[str] = None
    pay_interval: Optional[str] = None
    pay_years: Optional[str] = None
    premium_cents: int = 0
    value_class: Optional[str] = None
    channel_raw: Optional[str] = None
    bank_raw: Optional[str] = None
    agency_raw: Optional[str] = None
    branch_raw: Optional[str] = None
    branch_code: Optional[str] = None
    manager_raw: Optional[str] = None
    dept_manager_raw: Optional[str] = None
    director_raw: Optional[str] = None
    status: Optional[str] = None
    sign_date: Optional[str] = None
    month: Optional[int] = None
    presale: bool = False


@dataclass(frozen=True)
class ColumnValidation:
    missing_critical: Tuple[str, ...]
    missing_optional: Tuple[str, ...]
    extra_columns: Tuple[str, ...]
    found_columns: Tuple[str, ...]


@dataclass(frozen=True)
class NormalizedSheet:
    rows: Tuple[TransactionRow, ...]
    header_row: int
    columns: ColumnValidation
    soft_errors: int = 0
    dropped_blank: int = 0
    dropped_footer: int = 0
    filename: str = ""


@dataclass
class _SoftErrors:
    count: int = 0
    samples: List[str] = field(default_factory=list)

    def add(self, row_idx: int, column: str, value: object) -> None:
        self.count += 1
        if len(self.samples) < 20:
            self.samples.append(f"row {row_idx + 1} {column}={value!r}")


# ======================================================
# CELL COERCION
# ======================================================

def clean_text(value: object) -> Optional[str]:
    s = cell_text(value)
    return s if s != "" else None


def parse_amount_cents(value: object) -> Tuple[int, bool]:
    """
    Parse a money cell into integer cents.

    Returns (cents, ok). Blank cells are (0, True); unparseable or negative
    values are (0, False).
    """
    if isinstance(value, bool):
        return 0, False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if pd.isna(value):
            return 0, True
        d = Decimal(str(value))
    else:
        s = cell_text(value)
        if s == "":
            return 0, True
        s = s.replace(",", "").replace("，", "")
        for mark in CURRENCY_MARKS:
            s = s.replace(mark, "")
        m = _AMOUNT.fullmatch(s.strip())
        if not m or bool(m.group(1)) != bool(m.group(3)):
            return 0, False
        try:
            d = Decimal(m.group(2))
        except InvalidOperation:
            return 0, False
        if m.group(1):
            d = -abs(d)

    if not d.is_finite():
        return 0, False
    cents = int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0:
        return 0, False
    return cents, True


def _from_excel_serial(serial: float) -> Optional[date]:
    if not (1 <= serial <= EXCEL_SERIAL_MAX):
        return None
    return (EXCEL_EPOCH + timedelta(days=float(serial))).date()


def parse_sign_date(value: object) -> Tuple[Optional[date], bool]:
    """Returns (date, ok). Blank cells are (None, True)."""
    if value is None:
        return None, True
    if isinstance(value, pd.Timestamp):
        return (None, False) if pd.isna(value) else (value.date(), True)
    if isinstance(value, datetime):
        return value.date(), True
    if isinstance(value, date):
        return value, True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if pd.isna(value):
            return None, True
        d = _from_excel_serial(value)
        return d, d is not None

    s = cell_text(value)
    if s == "":
        return None, True
    for pat in _DATE_PATTERNS:
        m = pat.match(s)
        if m:
            try:
                return date(int(m.group(1)), int(m.group(2)), int(m.group(3))), True
            except ValueError:
                return None, False
    if re.fullmatch(r"\d+(\.\d+)?", s):
        d = _from_excel_serial(float(s))
        return d, d is not None

    ts = pd.to_datetime(s, errors="coerce")
    if pd.isna(ts):
        return None, False
    return ts.date(), True


def month_of(d: Optional[date]) -> Optional[int]:
    return d.month if d is not None else None


# ======================================================
# ROW IDENTITY
# ======================================================

def _content_key(row: TransactionRow) -> str:
    parts = [
        row.policy_no or "",
        row.product_raw or "",
        row.pay_interval or "",
        row.pay_years or "",
        str(row.premium_cents),
        row.sign_date or "NA",
        row.branch_raw or "",
        row.manager_raw or "",
    ]
    return "|".join(" ".join(p.split()).upper() for p in parts)


def _fingerprint(base_key: str, occurrence: int) -> str:
    raw_key = f"{base_key}|OCC{occurrence:03d}"
    return hashlib.sha1(raw_key.encode("utf-8")).hexdigest()


def assign_row_ids(rows: Sequence[TransactionRow]) -> List[TransactionRow]:
    """
    Give every row a deterministic SHA-1 id from its content plus an
    occurrence index, so identical lines in one sheet still get distinct ids.
    """
    seen: Dict[str, int] = {}
    out: List[TransactionRow] = []
    for row in rows:
        base_key = _content_key(row)
        seen[base_key] = seen.get(base_key, 0) + 1
        out.append(replace(row, row_id=_fingerprint(base_key, seen[base_key])))
    return out


def new_row_id(row: TransactionRow, taken: Iterable[str]) -> str:
    """Id for a row added after ingestion: first free occurrence of its content."""
    taken = set(taken)
    base_key = _content_key(row)
    n = 1
    while _fingerprint(base_key, n) in taken:
        n += 1
    return _fingerprint(base_key, n)


# ======================================================
# COLUMN VALIDATION
# ======================================================

def validate_columns(header_cells: Optional[Sequence[object]]) -> ColumnValidation:
    index = build_header_index(header_cells)
    labels = set(index.keys())

    known: Dict[str, Tuple[str, ...]] = {}
    for names in FIELD_HEADERS.values():
        known[names[0]] = names

    found: List[str] = []
    missing_critical: List[str] = []
    missing_optional: List[str] = []
    for primary, names in known.items():
        if any(n in labels for n in names):
            found.append(primary)
        elif primary in CRITICAL_COLUMNS:
            missing_critical.append(primary)
        else:
            missing_optional.append(primary)

    all_names = {n for names in known.values() for n in names}
    extra = [label for label in index if label not in all_names]

    return ColumnValidation(
        missing_critical=tuple(missing_critical),
        missing_optional=tuple(missing_optional),
        extra_columns=tuple(extra),
        found_columns=tuple(found),
    )


# ======================================================
# NORMALIZATION
# ======================================================

def _cell(row: Sequence[object], col: Optional[int]) -> object:
    if col is None or col >= len(row):
        return None
    return row[col]


def _is_blank_key(values: Dict[str, object]) -> bool:
    for f in KEY_FIELDS:
        if cell_text(values.get(f)) != "":
            return False
    return True


def normalize_rows(
    rows: Sequence[Optional[Sequence[object]]],
    header_row: Optional[int] = None,
    filename: str = "",
) -> NormalizedSheet:
    """
    Normalize a raw ledger sheet into TransactionRows.

    When `header_row` is None the header is located with the default key
    columns.
    """
    if header_row is None:
        header_row = detect_header_row(rows, SOURCE_KEY_COLUMNS)

    header_cells = rows[header_row] if 0 <= header_row < len(rows) else None
    index = build_header_index(header_cells)
    cols = {f: resolve_column(index, names) for f, names in FIELD_HEADERS.items()}

    soft = _SoftErrors()
    dropped_blank = 0
    dropped_footer = 0
    out: List[TransactionRow] = []

    for r in range(header_row + 1, len(rows)):
        raw = rows[r]
        if raw is None:
            dropped_blank += 1
            continue
        values = {f: _cell(raw, c) for f, c in cols.items()}

        if _is_blank_key(values):
            dropped_blank += 1
            continue
        if cell_text(values["policy_no"]) in FOOTER_LABELS:
            dropped_footer += 1
            continue

        premium_cents, ok = parse_amount_cents(values["premium"])
        if not ok:
            soft.add(r, "新约保费", values["premium"])

        sign_date, ok = parse_sign_date(values["sign_date"])
        if not ok:
            soft.add(r, "保单签单日期", values["sign_date"])

        branch_raw = clean_text(values["branch_raw"]) or clean_text(values["agency_raw"])
        presale = any(
            cell_text(values[f]) == YES for f in ("prerecorded", "reserved", "prospect")
        )

        out.append(TransactionRow(
            source_row=r,
            policy_no=clean_text(values["policy_no"]),
            holder_name=clean_text(values["holder_name"]),
            product_raw=clean_text(values["product_raw"]),
            pay_interval=clean_text(values["pay_interval"]),
            pay_years=clean_text(values["pay_years"]),
            premium_cents=premium_cents,
            value_class=clean_text(values["value_class"]),
            channel_raw=clean_text(values["channel_raw"]),
            bank_raw=clean_text(values["bank_raw"]),
            agency_raw=clean_text(values["agency_raw"]),
            branch_raw=branch_raw,
            branch_code=clean_text(values["branch_code"]),
            manager_raw=clean_text(values["manager_raw"]),
            dept_manager_raw=clean_text(values["dept_manager_raw"]),
            director_raw=clean_text(values["director_raw"]),
            status=clean_text(values["status"]),
            sign_date=sign_date.isoformat() if sign_date else None,
            month=month_of(sign_date),
            presale=presale,
        ))

    if soft.count:
        print(f"[WARNING] {soft.count} cells could not be parsed; defaults used "
              f"(e.g. {'; '.join(soft.samples[:3])})")

    return NormalizedSheet(
        rows=tuple(assign_row_ids(out)),
        header_row=header_row,
        columns=validate_columns(header_cells),
        soft_errors=soft.count,
        dropped_blank=dropped_blank,
        dropped_footer=dropped_footer,
        filename=filename,
    )
