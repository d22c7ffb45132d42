import random
from datetime import date, datetime, timezone

import pytest
import requests

from trailtemps.backend.archive_client import (
    ArchiveClient,
    ArchiveRequestError,
    RateLimiter,
    RetryBudgetExhausted,
    RetryPolicy,
    parse_retry_after,
)
from trailtemps.backend.config import TrailConfig

OK_PAYLOAD = {"daily": {"time": ["2020-01-01"], "temperature_2m_max": [50.0], "temperature_2m_min": [30.0]}}


def make_client(session, policy=None, sleeps=None):
    sleeps = sleeps if sleeps is not None else []
    return ArchiveClient(
        base_url="https://archive.example/v1/archive",
        policy=policy or RetryPolicy(),
        session=session,
        sleep=sleeps.append,
    )


@pytest.mark.parametrize("attempt,expected", [(0, 0.8), (1, 1.6), (3, 6.4), (5, 20.0), (10, 20.0)])
def test_backoff_is_exponential_and_capped(attempt, expected):
    assert RetryPolicy().delay_for(attempt) == pytest.approx(expected)


def test_retry_after_hint_wins_but_is_capped():
    policy = RetryPolicy()
    assert policy.delay_for(0, retry_after=5) == 5
    assert policy.delay_for(0, retry_after=120) == 20.0
    assert RetryPolicy(honor_retry_after=False).delay_for(0, retry_after=5) == pytest.approx(0.8)


def test_jitter_stays_in_range():
    policy = RetryPolicy(jitter_s=0.5)
    rng = random.Random(42)
    for attempt in range(4):
        d = policy.delay_for(attempt, rng=rng)
        base = min(0.8 * 2 ** attempt, 20.0)
        assert base <= d <= base + 0.5


def test_retryable_statuses():
    policy = RetryPolicy()
    assert all(policy.is_retryable(s) for s in (429, 500, 502, 503, 504))
    assert not any(policy.is_retryable(s) for s in (400, 401, 404, 422))


def test_parse_retry_after():
    assert parse_retry_after("7") == 7.0
    assert parse_retry_after(" 1.5 ") == 1.5
    assert parse_retry_after(None) is None
    assert parse_retry_after("") is None
    assert parse_retry_after("-3") is None
    assert parse_retry_after("soon") is None
    now = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == pytest.approx(30.0)


def test_rate_limiter_enforces_fixed_interval():
    t = [100.0]
    slept = []

    def sleep(s):
        slept.append(s)
        t[0] += s

    rl = RateLimiter(2.0, clock=lambda: t[0], sleep=sleep)
    assert rl.wait() == 0.0
    t[0] += 0.5
    assert rl.wait() == pytest.approx(1.5)
    t[0] += 3.0
    assert rl.wait() == 0.0
    assert slept == [pytest.approx(1.5)]


def test_429_with_retry_after_then_success(fake_session, fake_response):
    session = fake_session([
        fake_response(429, text="slow down", headers={"Retry-After": "3"}),
        fake_response(200, OK_PAYLOAD),
    ])
    sleeps = []
    client = make_client(session, sleeps=sleeps)
    assert client.get_json({"a": 1}) == OK_PAYLOAD
    assert sleeps == [3.0]
    assert len(session.calls) == 2


def test_server_errors_exhaust_budget(fake_session, fake_response):
    policy = RetryPolicy(max_retries=3)
    session = fake_session([fake_response(503, text="busy")] * 4)
    sleeps = []
    client = make_client(session, policy=policy, sleeps=sleeps)
    with pytest.raises(RetryBudgetExhausted) as exc:
        client.get_json({})
    assert exc.value.status == 503
    assert len(session.calls) == 4
    assert sleeps == [pytest.approx(0.8), pytest.approx(1.6), pytest.approx(3.2)]


def test_non_retryable_status_fails_fast_with_body_excerpt(fake_session, fake_response):
    session = fake_session([fake_response(400, text="x" * 1000)])
    sleeps = []
    client = make_client(session, sleeps=sleeps)
    with pytest.raises(ArchiveRequestError) as exc:
        client.get_json({})
    assert not isinstance(exc.value, RetryBudgetExhausted)
    assert exc.value.status == 400
    assert len(exc.value.body) == 300
    assert sleeps == []


def test_network_errors_are_retried(fake_session, fake_response):
    session = fake_session([
        requests.exceptions.ConnectionError("reset"),
        requests.exceptions.Timeout("slow"),
        fake_response(200, OK_PAYLOAD),
    ])
    sleeps = []
    assert make_client(session, sleeps=sleeps).get_json({}) == OK_PAYLOAD
    assert len(sleeps) == 2


def test_fetch_daily_max_min_params(fake_session, fake_response):
    session = fake_session([fake_response(200, OK_PAYLOAD)])
    client = make_client(session)
    daily = client.fetch_daily_max_min(34.6266, -84.1939, date(2018, 1, 1), date(2024, 12, 31))
    assert daily["time"] == ["2020-01-01"]
    params = session.calls[0]["params"]
    assert params["daily"] == "temperature_2m_max,temperature_2m_min"
    assert params["temperature_unit"] == "fahrenheit"
    assert params["timezone"] == "auto"
    assert params["start_date"] == "2018-01-01"
    assert params["end_date"] == "2024-12-31"
    assert params["models"] == "era5_land"
    assert session.calls[0]["url"] == "https://archive.example/v1/archive"


def test_payload_without_daily_time_is_rejected(fake_session, fake_response):
    session = fake_session([fake_response(200, {"daily": {}})])
    with pytest.raises(ArchiveRequestError, match="daily.time"):
        make_client(session).fetch_daily_max_min(1.0, 2.0, date(2020, 1, 1), date(2020, 1, 2))


def test_client_from_config(fake_session):
    cfg = TrailConfig(archive_url="https://x.example/archive", max_retries=2, request_interval_s=0.25, dataset="era5")
    client = ArchiveClient.from_config(cfg, session=fake_session([]))
    assert client.base_url == "https://x.example/archive"
    assert client.policy.max_retries == 2
    assert client.rate_limiter.min_interval_s == 0.25
    assert client.dataset == "era5"
