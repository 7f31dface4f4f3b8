import os
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Sequence

from dotenv import load_dotenv
from openpyxl import load_workbook

from .config import Settings, build_settings
from .errors import ReportInputError
from .transforms import validate_month_range

SOURCE_SHEET_HINTS = ("数据1", "数据")
ROSTER_SHEET_HINTS = ("网点", "代理")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ReportInputError(f"{name} must be an integer month, got {raw!r}") from exc


def load_settings(
    source_xlsx=None,
    roster_xlsx=None,
    settings_json=None,
    output_dir=None,
    daily_xlsx=None,
    month_start=None,
    month_end=None,
) -> Settings:
    load_dotenv()
    source_xlsx = source_xlsx or os.getenv("REPORT_SOURCE_XLSX")
    roster_xlsx = roster_xlsx or os.getenv("REPORT_ROSTER_XLSX")
    settings_json = settings_json or os.getenv("REPORT_SETTINGS_JSON")
    output_dir = output_dir or os.getenv("REPORT_OUTPUT_DIR")
    daily_xlsx = daily_xlsx or os.getenv("REPORT_DAILY_XLSX") or None
    if not source_xlsx or not roster_xlsx:
        raise ReportInputError("REPORT_SOURCE_XLSX and REPORT_ROSTER_XLSX must be provided")
    if not settings_json or not output_dir:
        raise ReportInputError("REPORT_SETTINGS_JSON and REPORT_OUTPUT_DIR must be provided")

    start = month_start if month_start is not None else _env_int("REPORT_MONTH_START", 1)
    end = month_end if month_end is not None else _env_int("REPORT_MONTH_END", start)
    validate_month_range(start, end)
    return build_settings(source_xlsx, roster_xlsx, settings_json, output_dir, daily_xlsx, start, end)


def ensure_dirs(s: Settings):
    s.output_dir.mkdir(parents=True, exist_ok=True)
    s.charts_dir.mkdir(parents=True, exist_ok=True)
    s.tables_dir.mkdir(parents=True, exist_ok=True)


def _pick_sheet(names: Sequence[str], hints: Sequence[str]) -> str:
    for hint in hints:
        if hint in names:
            return hint
    for hint in hints:
        for name in names:
            if hint in name:
                return name
    return names[0]


def read_sheet_rows(data: Optional[bytes], what: str = "workbook", hints: Sequence[str] = ()) -> List[list]:
    """
    Raw cell grid of one sheet, blank rows included, so row indices match
    what the user sees in Excel (0-based).
    """
    if not data:
        raise ReportInputError(f"{what} is missing or empty")
    try:
        wb = load_workbook(BytesIO(data), data_only=True)
    except Exception as exc:
        raise ReportInputError(f"{what} could not be read as an .xlsx file: {exc}") from exc

    try:
        if not wb.sheetnames:
            raise ReportInputError(f"{what} has no sheets")
        name = _pick_sheet(wb.sheetnames, hints)
        rows = [list(r) for r in wb[name].iter_rows(values_only=True)]
    finally:
        wb.close()

    if not any(any(c is not None and str(c).strip() != "" for c in r) for r in rows):
        raise ReportInputError(f"{what} sheet '{name}' is empty")
    print(f"[INFO] Read {what} sheet '{name}': {len(rows)} rows")
    return rows


def read_file_bytes(path: Optional[Path], what: str) -> Optional[bytes]:
    if path is None:
        return None
    path = Path(path)
    if not path.exists():
        raise ReportInputError(f"{what} not found: {path}")
    return path.read_bytes()
