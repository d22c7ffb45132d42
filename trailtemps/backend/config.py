"""Runtime settings for the normals pipeline.

Values come from environment variables (see `TrailConfig.from_env`) with
per-field overrides so tests and runners can pin anything explicitly.
Malformed numbers fall back to the default instead of failing the run.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Optional, Tuple

EnvGetter = Callable[[str], Optional[str]]

DEFAULT_DATA_DIR = Path("trails") / "appalachian-trail" / "data"
DEFAULT_ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"

MODES = ("annual", "smoothed")


def _str_env(name: str, default: str, getenv: EnvGetter) -> str:
    value = getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _int_env(name: str, default: int, getenv: EnvGetter, minimum: int | None = None, maximum: int | None = None) -> int:
    value = getenv(name)
    try:
        parsed = int(value.strip()) if value is not None else default
    except ValueError:
        parsed = default
    if minimum is not None and parsed < minimum:
        parsed = minimum
    if maximum is not None and parsed > maximum:
        parsed = maximum
    return parsed


def _float_env(name: str, default: float, getenv: EnvGetter, minimum: float | None = None, maximum: float | None = None) -> float:
    value = getenv(name)
    try:
        parsed = float(value.strip()) if value is not None else default
    except ValueError:
        parsed = default
    if parsed != parsed:  # NaN
        parsed = default
    if minimum is not None and parsed < minimum:
        parsed = minimum
    if maximum is not None and parsed > maximum:
        parsed = maximum
    return parsed


def _date_env(name: str, getenv: EnvGetter) -> Optional[date]:
    value = getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def trailing_years_range(years: int, today: Optional[date] = None) -> Tuple[date, date]:
    """Inclusive range of `years` years ending two days ago (archive publication delay)."""
    today = today or date.today()
    end = today - timedelta(days=2)
    try:
        start = end.replace(year=end.year - years)
    except ValueError:
        # Feb 29 end date
        start = end.replace(year=end.year - years, day=28)
    return start, end


@dataclass(frozen=True)
class TrailConfig:
    data_dir: Path = DEFAULT_DATA_DIR
    points_path: Path = DEFAULT_DATA_DIR / "points.json"
    normals_path: Path = DEFAULT_DATA_DIR / "historical_weather.json"
    trail_code: str = "at"
    alignment: str = "main"
    archive_url: str = DEFAULT_ARCHIVE_URL
    dataset: str = "era5_land"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    years: int = 7
    request_interval_s: float = 2.0
    window_days: int = 3
    mode: str = "annual"
    max_retries: int = 8
    backoff_base_s: float = 0.8
    backoff_max_s: float = 20.0
    timeout_s: float = 90.0
    log_level: str = "INFO"

    @staticmethod
    def from_env(getenv: EnvGetter = os.environ.get, **overrides) -> "TrailConfig":
        data_dir = Path(_str_env("TRAILTEMPS_DATA_DIR", str(DEFAULT_DATA_DIR), getenv))
        mode = _str_env("TRAILTEMPS_MODE", "annual", getenv).lower()
        if mode not in MODES:
            mode = "annual"
        cfg = TrailConfig(
            data_dir=data_dir,
            points_path=Path(_str_env("TRAILTEMPS_POINTS_FILE", str(data_dir / "points.json"), getenv)),
            normals_path=Path(_str_env("TRAILTEMPS_NORMALS_FILE", str(data_dir / "historical_weather.json"), getenv)),
            trail_code=_str_env("TRAILTEMPS_TRAIL_CODE", "at", getenv),
            alignment=_str_env("TRAILTEMPS_ALIGNMENT", "main", getenv),
            archive_url=_str_env("TRAILTEMPS_ARCHIVE_URL", DEFAULT_ARCHIVE_URL, getenv),
            dataset=_str_env("TRAILTEMPS_DATASET", "era5_land", getenv),
            start_date=_date_env("TRAILTEMPS_START_DATE", getenv),
            end_date=_date_env("TRAILTEMPS_END_DATE", getenv),
            years=_int_env("TRAILTEMPS_YEARS", 7, getenv, minimum=1, maximum=40),
            request_interval_s=_float_env("TRAILTEMPS_REQUEST_INTERVAL_S", 2.0, getenv, minimum=0.0, maximum=120.0),
            window_days=_int_env("TRAILTEMPS_WINDOW_DAYS", 3, getenv, minimum=0, maximum=30),
            mode=mode,
            max_retries=_int_env("TRAILTEMPS_MAX_RETRIES", 8, getenv, minimum=0, maximum=20),
            backoff_base_s=_float_env("TRAILTEMPS_BACKOFF_BASE_S", 0.8, getenv, minimum=0.0, maximum=60.0),
            backoff_max_s=_float_env("TRAILTEMPS_BACKOFF_MAX_S", 20.0, getenv, minimum=0.0, maximum=600.0),
            timeout_s=_float_env("TRAILTEMPS_TIMEOUT_S", 90.0, getenv, minimum=1.0, maximum=600.0),
            log_level=_str_env("TRAILTEMPS_LOG_LEVEL", "INFO", getenv).upper(),
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(cfg, **overrides) if overrides else cfg

    def date_range(self, today: Optional[date] = None) -> Tuple[date, date]:
        """Explicit start/end when both are set, otherwise the trailing default range."""
        if self.start_date is not None and self.end_date is not None:
            if self.end_date < self.start_date:
                raise ValueError(f"end_date {self.end_date} precedes start_date {self.start_date}")
            return self.start_date, self.end_date
        return trailing_years_range(self.years, today=today)
