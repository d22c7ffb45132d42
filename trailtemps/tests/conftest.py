import json
from datetime import date, timedelta

import pytest


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", headers=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text else (json.dumps(payload) if payload is not None else "")
        self.headers = headers or {}

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Replays canned responses; an Exception instance in the list is raised instead."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def build_daily(start, end, hi, lo):
    times, his, los = [], [], []
    d = start
    while d <= end:
        times.append(d.isoformat())
        his.append(hi(d))
        los.append(lo(d))
        d += timedelta(days=1)
    return {"time": times, "temperature_2m_max": his, "temperature_2m_min": los}


class FakeArchive:
    """Stands in for ArchiveClient in aggregator tests."""

    def __init__(self, hi=lambda d: 70.0, lo=lambda d: 45.0, fail_on_call=None, error=None):
        self.hi = hi
        self.lo = lo
        self.fail_on_call = fail_on_call
        self.error = error
        self.calls = []

    def fetch_daily_max_min(self, lat, lon, start, end):
        self.calls.append((lat, lon, start, end))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise self.error
        return build_daily(start, end, self.hi, self.lo)


def write_json(path, obj):
    path.write_text(json.dumps(obj, indent=2) + "\n", encoding="utf-8")
    return path


def flat_profile(hi, lo):
    return {"hi": [hi] * 365, "lo": [lo] * 365}


@pytest.fixture
def make_daily():
    return build_daily


@pytest.fixture
def fake_archive():
    return FakeArchive


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def write_doc():
    return write_json


@pytest.fixture
def profile():
    return flat_profile


@pytest.fixture
def canonical_points():
    return [
        {"id": "at-main-mi0000000", "mile": 0.0, "lat": 34.6266, "lon": -84.1939, "state": "GA"},
        {"id": "at-main-mi0010000", "legacy_id": "GA_10", "mile": 10.0, "lat": 34.68, "lon": -84.09, "state": "GA"},
        {"id": "at-main-mi0020000", "mile": 20.0, "lat": 34.74, "lon": -83.98, "state": "GA"},
    ]


@pytest.fixture
def short_range():
    return date(2019, 1, 1), date(2020, 12, 31)
