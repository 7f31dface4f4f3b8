"""
roster.py

Org/network roster (人网): one row per partner branch with its bank, channel,
department manager, director and customer manager. The roster is the
authority for branch -> channel -> department; transaction rows never
override it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .headers import (
    ROSTER_KEY_COLUMNS,
    build_header_index,
    cell_text,
    detect_header_row,
    resolve_column,
)

YES = "是"

ROSTER_HEADERS: Dict[str, Tuple[str, ...]] = {
    "bank": ("总行名称",),
    "channel": ("归属渠道",),
    "branch_code": ("代理机构代码",),
    "branch": ("代理机构名称",),
    "manager_code": ("客户经理工号",),
    "manager": ("客户经理姓名",),
    "department_code": ("营业部经理工号",),
    "department": ("营业部经理姓名",),
    "director_code": ("营业区总监工号",),
    "director": ("营业区总监姓名",),
    "city": ("所在市名称",),
    "is_physical": ("是否物理合作网点",),
    "is_ironclad": ("是否铁杆网点",),
}


@dataclass(frozen=True)
class OrgEntity:
    branch: str
    branch_code: Optional[str] = None
    bank: Optional[str] = None
    channel: Optional[str] = None
    department: Optional[str] = None
    director: Optional[str] = None
    manager: Optional[str] = None
    manager_code: Optional[str] = None
    city: Optional[str] = None
    is_physical: bool = False
    is_ironclad: bool = False


@dataclass(frozen=True)
class Roster:
    entities: Tuple[OrgEntity, ...] = ()
    duplicates: int = 0
    header_row: int = 0

    def __len__(self) -> int:
        return len(self.entities)

    def by_branch(self) -> Dict[str, OrgEntity]:
        return {e.branch: e for e in self.entities}

    def by_code(self) -> Dict[str, OrgEntity]:
        return {e.branch_code: e for e in self.entities if e.branch_code}

    def branch_names(self) -> List[str]:
        return [e.branch for e in self.entities]


def _text(row: Sequence[object], col: Optional[int]) -> Optional[str]:
    if col is None or col >= len(row):
        return None
    s = cell_text(row[col])
    return s or None


def build_roster(entities: Sequence[OrgEntity]) -> Roster:
    """First occurrence of a branch wins; later repeats are counted, not kept."""
    seen = set()
    kept: List[OrgEntity] = []
    dupes = 0
    for e in entities:
        if e.branch in seen:
            dupes += 1
            continue
        seen.add(e.branch)
        kept.append(e)
    return Roster(entities=tuple(kept), duplicates=dupes)


def normalize_roster(
    rows: Sequence[Optional[Sequence[object]]],
    header_row: Optional[int] = None,
) -> Roster:
    if header_row is None:
        header_row = detect_header_row(rows, ROSTER_KEY_COLUMNS, default=0)

    header_cells = rows[header_row] if 0 <= header_row < len(rows) else None
    index = build_header_index(header_cells)
    cols = {f: resolve_column(index, names) for f, names in ROSTER_HEADERS.items()}

    entities: List[OrgEntity] = []
    for r in range(header_row + 1, len(rows)):
        raw = rows[r]
        if raw is None:
            continue
        branch = _text(raw, cols["branch"])
        if not branch:
            continue
        entities.append(OrgEntity(
            branch=branch,
            branch_code=_text(raw, cols["branch_code"]),
            bank=_text(raw, cols["bank"]),
            channel=_text(raw, cols["channel"]),
            department=_text(raw, cols["department"]),
            director=_text(raw, cols["director"]),
            manager=_text(raw, cols["manager"]),
            manager_code=_text(raw, cols["manager_code"]),
            city=_text(raw, cols["city"]),
            is_physical=_text(raw, cols["is_physical"]) == YES,
            is_ironclad=_text(raw, cols["is_ironclad"]) == YES,
        ))

    roster = build_roster(entities)
    if roster.duplicates:
        print(f"[WARNING] Roster lists {roster.duplicates} branch(es) more than once; first row kept")
    return Roster(entities=roster.entities, duplicates=roster.duplicates, header_row=header_row)
