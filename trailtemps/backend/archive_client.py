"""Open-Meteo archive client used by the normals builder.

Single-threaded request loop:
- `RateLimiter` keeps a fixed minimum interval between requests.
- `RetryPolicy` decides which failures are retried and how long to wait
  (server `Retry-After` first, otherwise capped exponential backoff).
- Non-retryable statuses fail immediately; an exhausted budget raises
  `RetryBudgetExhausted` so the runner can stop with the store intact.

Clock and sleep are injectable so tests never wait.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, FrozenSet, Optional

import requests

from .config import TrailConfig

log = logging.getLogger('pipeline.archive')

OPEN_METEO_ARCHIVE = "https://archive-api.open-meteo.com/v1/archive"
DAILY_VARS = "temperature_2m_max,temperature_2m_min"
BODY_EXCERPT_CHARS = 300


class ArchiveRequestError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class RetryBudgetExhausted(ArchiveRequestError):
    pass


def parse_retry_after(value: Any, now: Optional[datetime] = None) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    try:
        secs = float(raw)
    except ValueError:
        secs = None
    if secs is not None:
        return secs if secs >= 0 and secs == secs else None
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 8
    base_delay_s: float = 0.8
    max_delay_s: float = 20.0
    jitter_s: float = 0.0
    honor_retry_after: bool = True
    retry_statuses: FrozenSet[int] = field(default_factory=lambda: frozenset({429, 500, 502, 503, 504}))

    @staticmethod
    def from_config(cfg: TrailConfig) -> "RetryPolicy":
        return RetryPolicy(
            max_retries=cfg.max_retries,
            base_delay_s=cfg.backoff_base_s,
            max_delay_s=cfg.backoff_max_s,
        )

    def is_retryable(self, status: int) -> bool:
        return int(status) in self.retry_statuses

    def delay_for(self, attempt: int, retry_after: Optional[float] = None, rng: Optional[random.Random] = None) -> float:
        """Wait before retry number `attempt` (0-based)."""
        if self.honor_retry_after and retry_after is not None and retry_after >= 0:
            delay = float(retry_after)
        else:
            delay = self.base_delay_s * (2 ** attempt)
        delay = min(delay, self.max_delay_s)
        if self.jitter_s > 0:
            delay += (rng or random).uniform(0.0, self.jitter_s)
        return delay


class RateLimiter:
    def __init__(
        self,
        min_interval_s: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_s = float(min_interval_s)
        self._clock = clock
        self._sleep = sleep
        self._last_ts: Optional[float] = None

    def wait(self) -> float:
        """Block until the interval since the previous request has passed. Returns the time slept."""
        slept = 0.0
        if self._last_ts is not None:
            elapsed = self._clock() - self._last_ts
            if elapsed < self.min_interval_s:
                slept = self.min_interval_s - elapsed
                log.info('[API] rate limit wait %.2fs', slept)
                self._sleep(slept)
        self._last_ts = self._clock()
        return slept


class ArchiveClient:
    def __init__(
        self,
        base_url: str = OPEN_METEO_ARCHIVE,
        policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout_s: float = 90.0,
        dataset: Optional[str] = "era5_land",
    ) -> None:
        self.base_url = base_url
        self.policy = policy or RetryPolicy()
        self.rate_limiter = rate_limiter or RateLimiter(0.0, sleep=sleep)
        self.session = session or requests.Session()
        self._sleep = sleep
        self.timeout_s = float(timeout_s)
        self.dataset = dataset

    @staticmethod
    def from_config(cfg: TrailConfig, session: Optional[requests.Session] = None, sleep: Callable[[float], None] = time.sleep) -> "ArchiveClient":
        return ArchiveClient(
            base_url=cfg.archive_url,
            policy=RetryPolicy.from_config(cfg),
            rate_limiter=RateLimiter(cfg.request_interval_s, sleep=sleep),
            session=session,
            sleep=sleep,
            timeout_s=cfg.timeout_s,
            dataset=cfg.dataset,
        )

    def _backoff(self, attempt: int, reason: str, retry_after: Optional[float] = None) -> None:
        delay = self.policy.delay_for(attempt, retry_after=retry_after)
        log.warning('[API] %s; retry %d/%d in %.2fs', reason, attempt + 1, self.policy.max_retries, delay)
        self._sleep(delay)

    def get_json(self, params: Dict[str, Any]) -> dict:
        last_reason = "no attempt made"
        last_status: Optional[int] = None
        for attempt in range(self.policy.max_retries + 1):
            can_retry = attempt < self.policy.max_retries
            self.rate_limiter.wait()
            try:
                resp = self.session.get(self.base_url, params=params, timeout=self.timeout_s)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                last_reason = f"network error: {e}"
                last_status = None
                if can_retry:
                    self._backoff(attempt, last_reason)
                    continue
                break

            status = int(resp.status_code)
            if status == 200:
                try:
                    return resp.json()
                except ValueError as e:
                    raise ArchiveRequestError(f"Invalid JSON from archive: {e}", status=status, body=resp.text[:BODY_EXCERPT_CHARS])

            body = (resp.text or "")[:BODY_EXCERPT_CHARS]
            if not self.policy.is_retryable(status):
                raise ArchiveRequestError(f"HTTP {status}: {body}", status=status, body=body)

            last_reason = f"HTTP {status}"
            last_status = status
            if can_retry:
                retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                self._backoff(attempt, last_reason, retry_after=retry_after)
                continue
            break

        raise RetryBudgetExhausted(
            f"Retry budget exhausted after {self.policy.max_retries} retries ({last_reason})",
            status=last_status,
        )

    def daily_params(self, lat: float, lon: float, start: date, end: date) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "latitude": f"{float(lat):.6f}",
            "longitude": f"{float(lon):.6f}",
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "daily": DAILY_VARS,
            "temperature_unit": "fahrenheit",
            "timezone": "auto",
        }
        if self.dataset:
            params["models"] = self.dataset
        return params

    def fetch_daily_max_min(self, lat: float, lon: float, start: date, end: date) -> dict:
        """Daily max/min temperature (F) for the inclusive range. Returns the payload's `daily` block."""
        j = self.get_json(self.daily_params(lat, lon, start, end))
        daily = j.get("daily") if isinstance(j, dict) else None
        if not isinstance(daily, dict) or not isinstance(daily.get("time"), list):
            raise ArchiveRequestError(f"Archive response has no daily.time list (lat={lat}, lon={lon})")
        log.info('[API] daily lat=%.4f lon=%.4f days=%d', float(lat), float(lon), len(daily["time"]))
        return daily
