from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Settings:
    source_xlsx: Path
    roster_xlsx: Path
    daily_xlsx: Optional[Path]
    settings_json: Path
    output_dir: Path
    charts_dir: Path
    tables_dir: Path
    month_start: int = 1
    month_end: int = 1


def build_settings(
    source_xlsx: str,
    roster_xlsx: str,
    settings_json: str,
    output_dir: str,
    daily_xlsx: Optional[str] = None,
    month_start: int = 1,
    month_end: int = 1,
) -> Settings:
    out = Path(output_dir)
    return Settings(
        source_xlsx=Path(source_xlsx),
        roster_xlsx=Path(roster_xlsx),
        daily_xlsx=Path(daily_xlsx) if daily_xlsx else None,
        settings_json=Path(settings_json),
        output_dir=out,
        charts_dir=out / "charts",
        tables_dir=out / "tables",
        month_start=month_start,
        month_end=month_end,
    )
