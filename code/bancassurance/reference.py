#!/usr/bin/env python3
"""
reference.py

Immutable snapshot of the user-editable reference tables plus the alias
lookup used to resolve raw ledger text against them.

Input Contract
--------------
A settings document (the JSON persisted by the settings screens):

- productShorts: [{fullName, shortName, category, aliases?}]
- bankShorts:    [{fullName, shortName, sortOrder, aliases?}]
- channels:      [{name, aliases?, isPostal, bbWeight?, sortOrder?}]
- zhebiaoCofs:   [{xianzhong, nianxian, xishu}]
- coreNetworks:  [{totalBankName, networkCode, agencyName, customerManager,
                   deptManager, areaDirector, coreNetwork}]
- networkShorts: [{fullName, shortName}]
- deptTargets:   [{deptName, month, qjTarget, dcTarget}]   month 0 = whole year
- personTargets: [{name, zhiji, weichi}]
- staff:         [{id, name, code, role, parentId, status, month}]

Every collection becomes a tuple of frozen records; a snapshot is never
mutated, edits produce a new snapshot with a new version hash.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ReportInputError

UNASSIGNED = "未分配"

STAFF_ROLES = ("director", "deptManager", "customerManager")

# Used when a settings document carries no channel table.
DEFAULT_CHANNELS = (
    {"name": "邮储渠道", "aliases": ["中国邮政储蓄银行", "邮政"], "isPostal": True, "bbWeight": 0.3, "sortOrder": 0},
)


# ======================================================
# RECORDS
# ======================================================

@dataclass(frozen=True)
class ProductRef:
    full_name: str
    short_name: str = ""
    category: str = ""
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BankRef:
    full_name: str
    short_name: str = ""
    sort_order: int = 0
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ChannelRef:
    name: str
    aliases: Tuple[str, ...] = ()
    is_postal: bool = False
    bb_weight: float = 1.0
    sort_order: int = 0


@dataclass(frozen=True)
class ZhebiaoRate:
    product: str
    tenor: str
    rate: float


@dataclass(frozen=True)
class CoreNetwork:
    agency_name: str
    bank: str = ""
    network_code: str = ""
    customer_manager: str = ""
    dept_manager: str = ""
    area_director: str = ""


@dataclass(frozen=True)
class NetworkAlias:
    full_name: str
    short_name: str


@dataclass(frozen=True)
class DeptTarget:
    department: str
    month: int
    qj_target_cents: int
    dc_target_cents: int


@dataclass(frozen=True)
class PersonTarget:
    name: str
    rank: str = ""
    maintain_bb_cents: int = 0


@dataclass(frozen=True)
class StaffMember:
    name: str
    role: str
    parent: str = ""
    code: str = ""
    status: str = "active"
    month: int = 0
    id: str = ""


# ======================================================
# KEY FOLDING / ALIAS INDEX
# ======================================================

def fold_key(text: object) -> str:
    """Comparison key: NFKC (folds full-width brackets), no whitespace, casefolded."""
    if text is None:
        return ""
    s = unicodedata.normalize("NFKC", str(text))
    s = re.sub(r"\s+", "", s)
    return s.casefold()


def product_key(text: object) -> str:
    """Product names in the rate table sometimes drop the closing bracket."""
    return re.sub(r"\)$", "", fold_key(text))


class AliasIndex:
    """
    Exact canonical match first, then alias match, both on folded keys.
    Built once per run; lookups are dict hits.
    """

    def __init__(self, canonical: Iterable[str], aliases: Iterable[Tuple[str, str]] = ()):
        self._exact: Dict[str, str] = {}
        self._alias: Dict[str, str] = {}
        for name in canonical:
            k = fold_key(name)
            if k and k not in self._exact:
                self._exact[k] = name
        for alias, name in aliases:
            k = fold_key(alias)
            if k and k not in self._alias:
                self._alias[k] = name

    def __len__(self) -> int:
        return len(self._exact)

    def lookup(self, raw: object) -> Optional[str]:
        k = fold_key(raw)
        if not k:
            return None
        if k in self._exact:
            return self._exact[k]
        return self._alias.get(k)


# ======================================================
# PARSING HELPERS
# ======================================================

def _s(v: object) -> str:
    return "" if v is None else str(v).strip()


def _yuan_to_cents(v: object, what: str) -> int:
    if v is None or v == "":
        return 0
    try:
        return int((Decimal(str(v)) * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ReportInputError(f"{what}: not a number: {v!r}") from exc


def _int(v: object, what: str, default: int = 0) -> int:
    if v is None or v == "":
        return default
    try:
        return int(float(v))
    except (TypeError, ValueError) as exc:
        raise ReportInputError(f"{what}: not an integer: {v!r}") from exc


def _float(v: object, what: str, default: float) -> float:
    if v is None or v == "":
        return default
    try:
        return float(v)
    except (TypeError, ValueError) as exc:
        raise ReportInputError(f"{what}: not a number: {v!r}") from exc


def _aliases(v: object) -> Tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        v = re.split(r"[,，;；]", v)
    return tuple(a for a in (_s(x) for x in v) if a)


def _truthy(v: object) -> bool:
    if isinstance(v, str):
        return v.strip() in ("是", "true", "True", "1", "Y", "y")
    return bool(v)


def _records(doc: Mapping[str, object], key: str) -> List[Mapping[str, object]]:
    items = doc.get(key) or []
    if not isinstance(items, list):
        raise ReportInputError(f"settings.{key} must be a list, got {type(items).__name__}")
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ReportInputError(f"settings.{key}[{i}] must be an object")
    return items


# ======================================================
# SNAPSHOT
# ======================================================

@dataclass(frozen=True)
class ReferenceTables:
    products: Tuple[ProductRef, ...] = ()
    banks: Tuple[BankRef, ...] = ()
    channels: Tuple[ChannelRef, ...] = ()
    zhebiao: Tuple[ZhebiaoRate, ...] = ()
    core_networks: Tuple[CoreNetwork, ...] = ()
    network_aliases: Tuple[NetworkAlias, ...] = ()
    targets: Tuple[DeptTarget, ...] = ()
    person_targets: Tuple[PersonTarget, ...] = ()
    staff: Tuple[StaffMember, ...] = ()
    version: str = ""

    @classmethod
    def from_settings(cls, doc: Mapping[str, object]) -> "ReferenceTables":
        if not isinstance(doc, dict):
            raise ReportInputError("settings document must be a JSON object")

        products = tuple(
            ProductRef(
                full_name=_s(p.get("fullName")),
                short_name=_s(p.get("shortName")),
                category=_s(p.get("category")),
                aliases=_aliases(p.get("aliases")),
            )
            for p in _records(doc, "productShorts") if _s(p.get("fullName"))
        )
        banks = tuple(
            BankRef(
                full_name=_s(b.get("fullName")),
                short_name=_s(b.get("shortName")),
                sort_order=_int(b.get("sortOrder"), "bankShorts.sortOrder"),
                aliases=_aliases(b.get("aliases")),
            )
            for b in _records(doc, "bankShorts") if _s(b.get("fullName"))
        )

        raw_channels = _records(doc, "channels") if "channels" in doc else list(DEFAULT_CHANNELS)
        channels = tuple(
            ChannelRef(
                name=_s(c.get("name")),
                aliases=_aliases(c.get("aliases")),
                is_postal=_truthy(c.get("isPostal")),
                bb_weight=_float(c.get("bbWeight"), "channels.bbWeight", 1.0),
                sort_order=_int(c.get("sortOrder"), "channels.sortOrder"),
            )
            for c in raw_channels if _s(c.get("name"))
        )

        zhebiao = tuple(
            ZhebiaoRate(
                product=_s(z.get("xianzhong")),
                tenor=_s(z.get("nianxian")),
                rate=_float(z.get("xishu"), "zhebiaoCofs.xishu", 0.0),
            )
            for z in _records(doc, "zhebiaoCofs") if _s(z.get("xianzhong"))
        )

        core = tuple(
            CoreNetwork(
                agency_name=_s(c.get("agencyName")),
                bank=_s(c.get("totalBankName")),
                network_code=_s(c.get("networkCode")),
                customer_manager=_s(c.get("customerManager")),
                dept_manager=_s(c.get("deptManager")),
                area_director=_s(c.get("areaDirector")),
            )
            for c in _records(doc, "coreNetworks") if _s(c.get("agencyName"))
        )

        network_aliases = tuple(
            NetworkAlias(full_name=_s(n.get("fullName")), short_name=_s(n.get("shortName")))
            for n in _records(doc, "networkShorts") if _s(n.get("fullName"))
        )

        targets = []
        for t in _records(doc, "deptTargets"):
            name = _s(t.get("deptName"))
            if not name:
                continue
            month = _int(t.get("month"), "deptTargets.month")
            if not 0 <= month <= 12:
                raise ReportInputError(f"deptTargets.month out of range for {name}: {month}")
            targets.append(DeptTarget(
                department=name,
                month=month,
                qj_target_cents=_yuan_to_cents(t.get("qjTarget"), "deptTargets.qjTarget"),
                dc_target_cents=_yuan_to_cents(t.get("dcTarget"), "deptTargets.dcTarget"),
            ))

        person_targets = tuple(
            PersonTarget(
                name=_s(p.get("name")),
                rank=_s(p.get("zhiji")),
                maintain_bb_cents=_yuan_to_cents(p.get("weichi"), "personTargets.weichi"),
            )
            for p in _records(doc, "personTargets") if _s(p.get("name"))
        )

        staff = []
        for m in _records(doc, "staff"):
            name = _s(m.get("name"))
            if not name:
                continue
            role = _s(m.get("role"))
            if role not in STAFF_ROLES:
                raise ReportInputError(f"staff role for {name} must be one of {STAFF_ROLES}, got {role!r}")
            staff.append(StaffMember(
                name=name,
                role=role,
                parent=_s(m.get("parentId")),
                code=_s(m.get("code")),
                status=_s(m.get("status")) or "active",
                month=_int(m.get("month"), "staff.month"),
                id=_s(m.get("id")),
            ))

        canonical = json.dumps(doc, ensure_ascii=False, sort_keys=True, default=str)
        version = _s(doc.get("version")) or hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:12]

        return cls(
            products=products,
            banks=banks,
            channels=channels,
            zhebiao=zhebiao,
            core_networks=core,
            network_aliases=network_aliases,
            targets=tuple(targets),
            person_targets=person_targets,
            staff=tuple(staff),
            version=version,
        )

    # --------------------------------------------------
    # Lookup builders (called once per run)
    # --------------------------------------------------

    def product_index(self) -> AliasIndex:
        return AliasIndex(
            [p.full_name for p in self.products],
            [(a, p.full_name) for p in self.products for a in (p.short_name, *p.aliases) if a],
        )

    def bank_index(self) -> AliasIndex:
        return AliasIndex(
            [b.full_name for b in self.banks],
            [(a, b.full_name) for b in self.banks for a in (b.short_name, *b.aliases) if a],
        )

    def channel_index(self) -> AliasIndex:
        return AliasIndex(
            [c.name for c in self.channels],
            [(a, c.name) for c in self.channels for a in c.aliases],
        )

    def branch_index(self, roster_branches: Iterable[str] = ()) -> AliasIndex:
        """Canonical universe: network table full names plus roster branches."""
        names = [n.full_name for n in self.network_aliases] + list(roster_branches)
        return AliasIndex(names, [(n.short_name, n.full_name) for n in self.network_aliases if n.short_name])

    def channel_by_name(self) -> Dict[str, ChannelRef]:
        return {c.name: c for c in self.channels}

    def product_by_name(self) -> Dict[str, ProductRef]:
        return {p.full_name: p for p in self.products}

    def bank_by_name(self) -> Dict[str, BankRef]:
        return {b.full_name: b for b in self.banks}

    def network_short_names(self) -> Dict[str, str]:
        return {n.full_name: n.short_name for n in self.network_aliases}

    def zhebiao_table(self) -> Dict[Tuple[str, str], float]:
        table: Dict[Tuple[str, str], float] = {}
        for z in self.zhebiao:
            table.setdefault((product_key(z.product), z.tenor), z.rate)
        return table


def load_reference_tables(path: Path) -> ReferenceTables:
    path = Path(path)
    if not path.exists():
        raise ReportInputError(f"Settings file not found: {path}")
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ReportInputError(f"Settings file is not valid JSON: {path}: {exc}") from exc
    tables = ReferenceTables.from_settings(doc)
    print(f"[INFO] Reference tables {tables.version}: {len(tables.products)} products, "
          f"{len(tables.banks)} banks, {len(tables.channels)} channels, "
          f"{len(tables.targets)} targets, {len(tables.staff)} staff")
    return tables
