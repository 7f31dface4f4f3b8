"""
orgchart.py

Month-aware org chart built from the staff table: customer manager ->
department manager -> director. Each staff record carries the month it takes
effect (0 = whole-year default); the record in force for a month is the
active one with the greatest month not after it.

Also scans a ledger for people and reporting lines the chart does not know
yet, producing the staff records to add (the caller decides whether to save
them).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .normalize import TransactionRow
from .reference import StaffMember

ACTIVE = "active"
TRANSFERRED = "transferred"
YEAR_END = 12


class OrgChart:
    def __init__(self, staff: Iterable[StaffMember]):
        self._records: Dict[Tuple[str, str], List[StaffMember]] = {}
        for s in staff:
            self._records.setdefault((s.role, s.name), []).append(s)

    def effective(self, name: Optional[str], role: str, month: Optional[int]) -> Optional[StaffMember]:
        if not name:
            return None
        records = [r for r in self._records.get((role, name), []) if r.status == ACTIVE]
        if not records:
            return None
        target = month or YEAR_END
        best: Optional[StaffMember] = None
        for r in records:
            if r.month == 0 or r.month <= target:
                if best is None or r.month > best.month:
                    best = r
        return best or records[0]

    def department_of(self, manager: Optional[str], month: Optional[int]) -> Optional[str]:
        rec = self.effective(manager, "customerManager", month)
        return rec.parent if rec and rec.parent else None

    def director_of(self, department: Optional[str], month: Optional[int]) -> Optional[str]:
        rec = self.effective(department, "deptManager", month)
        return rec.parent if rec and rec.parent else None


# ======================================================
# STAFF SCAN
# ======================================================

@dataclass
class StaffScanResult:
    added: List[StaffMember] = field(default_factory=list)
    transferred: List[Tuple[StaffMember, str]] = field(default_factory=list)  # (new record, old parent)
    unchanged: int = 0
    scanned_rows: int = 0

    def new_records(self) -> List[StaffMember]:
        out = list(self.added)
        for rec, old_parent in self.transferred:
            out.append(StaffMember(
                name=rec.name, role=rec.role, parent=old_parent, code=rec.code,
                status=TRANSFERRED, month=rec.month,
            ))
            out.append(rec)
        return out


def _people_by_month(rows: Sequence[TransactionRow]) -> List[StaffMember]:
    seen: Dict[Tuple[int, str, str], StaffMember] = {}
    for row in rows:
        if row.month is None:
            continue
        m = row.month
        chain = (
            ("director", row.director_raw, ""),
            ("deptManager", row.dept_manager_raw, row.director_raw or ""),
            ("customerManager", row.manager_raw, row.dept_manager_raw or ""),
        )
        for role, name, parent in chain:
            if name and (m, role, name) not in seen:
                seen[(m, role, name)] = StaffMember(name=name, role=role, parent=parent, month=m)
    return sorted(seen.values(), key=lambda s: s.month)


def scan_staff_changes(rows: Sequence[TransactionRow], staff: Sequence[StaffMember]) -> StaffScanResult:
    """
    Compare the reporting lines seen in `rows` (month by month) against
    `staff`. Unknown people are added effective from the first month they
    appear; a known person whose parent differs from the record in force
    that month is recorded as transferred.
    """
    result = StaffScanResult(scanned_rows=sum(1 for r in rows if r.month is not None))
    known: Dict[Tuple[str, str], List[StaffMember]] = {}
    for s in staff:
        known.setdefault((s.role, s.name), []).append(s)

    for seen in _people_by_month(rows):
        key = (seen.role, seen.name)
        existing = known.get(key)
        if not existing:
            known[key] = [seen]
            result.added.append(seen)
            continue

        in_force = OrgChart(existing).effective(seen.name, seen.role, seen.month)
        if in_force and seen.parent and in_force.parent and in_force.parent != seen.parent:
            if any(r.month == seen.month for r in existing):
                result.unchanged += 1
                continue
            existing.append(seen)
            result.transferred.append((seen, in_force.parent))
        else:
            result.unchanged += 1

    if result.added or result.transferred:
        print(f"[INFO] Staff scan: +{len(result.added)} added, "
              f"{len(result.transferred)} transferred, {result.unchanged} unchanged")
    return result
