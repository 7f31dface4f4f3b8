"""
headers.py

Header-row detection for exported sheets whose title block varies from file
to file (report title, export date, blank spacer rows, then the real header).

The locator is a plain scoring routine over cell text: it does not care which
spreadsheet library produced the rows, only that each row is an ordered
sequence of loosely typed cells (or None for a missing row).
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .encoding import repair_mojibake

SOURCE_KEY_COLUMNS = ("保单号", "新约保费", "险种", "银行总行", "保单状态")
DAILY_KEY_COLUMNS = ("保单号", "保费", "险种", "银行总行", "保单状态", "代理机构名称")
ROSTER_KEY_COLUMNS = ("代理机构名称", "营业部经理姓名", "客户经理姓名", "总行名称", "归属渠道")

SCAN_ROWS_DEFAULT = 20
MIN_MATCHES_DEFAULT = 2
# Most real exports carry a six-row title block above the header.
DEFAULT_HEADER_ROW = 6


def cell_text(value: object) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def header_label(value: object) -> str:
    """Trimmed header text with upload mojibake repaired."""
    return str(repair_mojibake(cell_text(value)))


def _is_blank_row(row: Optional[Sequence[object]]) -> bool:
    if row is None:
        return True
    return all(cell_text(c) == "" for c in row)


def detect_header_row(
    rows: Sequence[Optional[Sequence[object]]],
    key_columns: Iterable[str] = SOURCE_KEY_COLUMNS,
    scan_rows: int = SCAN_ROWS_DEFAULT,
    min_matches: int = MIN_MATCHES_DEFAULT,
    default: int = DEFAULT_HEADER_ROW,
) -> int:
    """
    Return the 0-based index of the first row (within the first `scan_rows`)
    containing at least `min_matches` of `key_columns` verbatim.

    Empty or missing rows never match. When nothing qualifies the fixed
    `default` index is returned.
    """
    keys = list(key_columns)
    for r, row in enumerate(rows[:scan_rows]):
        if _is_blank_row(row):
            continue
        labels = {header_label(c) for c in row}
        matched = sum(1 for k in keys if k in labels)
        if matched >= min_matches:
            return r
    return default


def build_header_index(header_row: Optional[Sequence[object]]) -> Dict[str, int]:
    """Map header label -> column index; the first occurrence of a label wins."""
    index: Dict[str, int] = {}
    if header_row is None:
        return index
    for c, value in enumerate(header_row):
        label = header_label(value)
        if label and label not in index:
            index[label] = c
    return index


def resolve_column(index: Dict[str, int], names: Sequence[str]) -> Optional[int]:
    for name in names:
        if name in index:
            return index[name]
    return None


def present_labels(header_row: Optional[Sequence[object]]) -> List[str]:
    return list(build_header_index(header_row).keys())
