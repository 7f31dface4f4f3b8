from typing import Optional

from .errors import ReportInputError

MONTHS = tuple(range(1, 13))


def validate_month_range(start, end):
    """Fail fast on anything outside 1 <= start <= end <= 12; no clamping."""
    for label, v in (("month_start", start), ("month_end", end)):
        if isinstance(v, bool) or not isinstance(v, int):
            raise ReportInputError(f"{label} must be an integer month, got {v!r}")
    if not (1 <= start <= end <= 12):
        raise ReportInputError(f"Invalid month range {start}-{end}: need 1 <= start <= end <= 12")
    return start, end


def in_range(month: Optional[int], start: int, end: int) -> bool:
    return month is not None and start <= month <= end
