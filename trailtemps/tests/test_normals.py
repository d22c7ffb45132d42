from datetime import date

import pytest

from trailtemps.backend.normals import (
    MODE_SMOOTHED,
    annual_average_profile,
    bucket_by_month_day,
    compute_profile,
    daily_frame,
    day_index,
    day_index_for_date,
    month_day_for_index,
    planning_average,
    smoothed_profile,
    window_keys,
)


@pytest.mark.parametrize("month,day,expected", [(1, 1, 0), (2, 28, 58), (2, 29, 59), (3, 1, 59), (12, 31, 364)])
def test_day_index(month, day, expected):
    assert day_index(month, day) == expected


def test_day_index_inverse():
    assert month_day_for_index(59) == (3, 1)
    assert all(day_index(*month_day_for_index(i)) == i for i in range(365))
    assert day_index_for_date(date(2024, 2, 29)) == 59
    with pytest.raises(ValueError):
        month_day_for_index(365)


def test_window_wraps_year_and_skips_feb29():
    assert window_keys(1, 1, 3) == [(12, 29), (12, 30), (12, 31), (1, 1), (1, 2), (1, 3), (1, 4)]
    assert window_keys(3, 1, 1) == [(2, 28), (3, 1), (3, 2)]
    assert window_keys(6, 15, 0) == [(6, 15)]


def test_daily_frame_cleans_input():
    daily = {
        "time": ["2020-02-28", "2020-02-29", "garbage", "2020-03-01"],
        "temperature_2m_max": [50, 99, 51, "x"],
        "temperature_2m_min": [30, 99, 31],
    }
    df = daily_frame(daily)
    assert list(zip(df["month"], df["day"])) == [(2, 28), (3, 1)]
    assert df["hi"].iloc[0] == 50
    assert df["hi"].isna().iloc[1]
    assert df["lo"].isna().iloc[1]


def test_annual_profile_averages_years_and_ignores_feb29(make_daily):
    daily = make_daily(
        date(2019, 1, 1), date(2020, 12, 31),
        hi=lambda d: 999.0 if (d.month, d.day) == (2, 29) else (50.0 if d.year == 2019 else 60.0),
        lo=lambda d: -999.0 if (d.month, d.day) == (2, 29) else (30.0 if d.year == 2019 else 40.0),
    )
    prof = compute_profile(daily)
    assert prof.hi_count == 365 and prof.lo_count == 365
    assert prof.coverage == 1.0
    assert not prof.is_sparse()
    assert set(prof.hi) == {55.0}
    assert set(prof.lo) == {35.0}


def test_smoothed_profile_wraps_year_boundary(make_daily):
    daily = make_daily(date(2020, 1, 1), date(2020, 1, 1), hi=lambda d: 10.0, lo=lambda d: 0.0)
    prof = smoothed_profile(bucket_by_month_day(daily_frame(daily)), window_days=3)
    filled = [i for i, v in enumerate(prof.hi) if v is not None]
    assert filled == [0, 1, 2, 3, 362, 363, 364]
    assert prof.is_sparse()


def test_smoothed_window_mixes_neighbours(make_daily):
    daily = make_daily(date(2021, 6, 1), date(2021, 6, 30), hi=lambda d: float(d.day), lo=lambda d: 0.0)
    prof = compute_profile(daily, mode=MODE_SMOOTHED, window_days=1)
    assert prof.hi[day_index(6, 15)] == pytest.approx(15.0)
    assert prof.hi[day_index(6, 1)] == pytest.approx(1.5)
    assert prof.hi[day_index(5, 31)] == pytest.approx(1.0)
    assert prof.hi[day_index(5, 30)] is None


def test_rounding_is_half_up(make_daily):
    daily = make_daily(
        date(2019, 1, 1), date(2020, 12, 31),
        hi=lambda d: 50.0 if d.year == 2019 else 51.0,
        lo=lambda d: 30.0 if d.year == 2019 else 31.0,
    )
    prof = annual_average_profile(bucket_by_month_day(daily_frame(daily)), round_to=0)
    assert prof.hi[0] == 51 and isinstance(prof.hi[0], int)
    assert prof.lo[0] == 31


def test_unknown_mode(make_daily):
    with pytest.raises(ValueError):
        compute_profile(make_daily(date(2020, 1, 1), date(2020, 1, 2), lambda d: 1.0, lambda d: 0.0), mode="hourly")


def test_planning_average(make_daily):
    daily = make_daily(date(2020, 12, 28), date(2021, 1, 5), hi=lambda d: float(d.day), lo=lambda d: -1.0)
    hi, lo = planning_average(daily, 1, 1, window_days=1)
    # Dec 31, Jan 1, Jan 2
    assert hi == pytest.approx((31 + 1 + 2) / 3)
    assert lo == -1.0
    assert planning_average(daily, 7, 1, window_days=3) is None


def test_empty_payload_gives_empty_profile():
    prof = compute_profile({"time": []})
    assert prof.hi_count == 0
    assert prof.coverage == 0.0
