"""Tests for DateGrid and tenor arithmetic."""

from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest

from revalcube.dategrid import DateGrid, advance, parse_tenor

TODAY = date(2026, 1, 5)


class TestTenors:
    @pytest.mark.parametrize("tenor, expected", [
        ("10D", date(2026, 1, 15)),
        ("2W", date(2026, 1, 19)),
        ("3M", date(2026, 4, 5)),
        ("1Y", date(2027, 1, 5)),
        (" 6m ", date(2026, 7, 5)),
    ])
    def test_advance(self, tenor, expected):
        assert advance(TODAY, tenor) == expected

    def test_month_end_roll(self):
        assert advance(date(2026, 1, 31), "1M") == date(2026, 2, 28)

    def test_parse_tenor_returns_dateoffset(self):
        assert isinstance(parse_tenor("3M"), pd.DateOffset)

    @pytest.mark.parametrize("bad", ["", "M", "3Q", "1.5Y", "-1M"])
    def test_invalid_tenor(self, bad):
        with pytest.raises(ValueError, match="Invalid tenor"):
            parse_tenor(bad)


class TestDateGrid:
    def test_sorted_union_with_flags(self):
        grid = DateGrid([date(2026, 3, 1), date(2026, 2, 1)], [date(2026, 2, 15), date(2026, 3, 1)])
        assert grid.dates == [date(2026, 2, 1), date(2026, 2, 15), date(2026, 3, 1)]
        assert grid.is_valuation_date == [True, False, True]
        assert grid.is_close_out_date == [False, True, True]
        assert grid.valuation_dates == [date(2026, 2, 1), date(2026, 3, 1)]
        assert grid.close_out_dates == [date(2026, 2, 15), date(2026, 3, 1)]

    def test_duplicates_collapse(self):
        grid = DateGrid([date(2026, 2, 1), date(2026, 2, 1)])
        assert grid.size == 1
        assert len(grid) == 1

    def test_empty_grid(self):
        grid = DateGrid([])
        assert grid.size == 0
        assert grid.dates == []

    def test_accepts_datetimes_and_timestamps(self):
        grid = DateGrid([datetime(2026, 2, 1, 12, 0), pd.Timestamp("2026-03-01")])
        assert grid.dates == [date(2026, 2, 1), date(2026, 3, 1)]

    def test_rejects_non_dates(self):
        with pytest.raises(TypeError):
            DateGrid(["2026-02-01"])

    def test_index_and_membership(self):
        grid = DateGrid([date(2026, 2, 1), date(2026, 3, 1)])
        assert grid.index(date(2026, 3, 1)) == 1
        assert date(2026, 2, 1) in grid
        assert date(2026, 2, 2) not in grid
        with pytest.raises(KeyError):
            grid.index(date(2026, 2, 2))
        assert list(grid) == grid.dates

    def test_times(self):
        grid = DateGrid([date(2026, 2, 4), date(2027, 1, 5)])
        np.testing.assert_allclose(grid.times(TODAY), [30 / 365.0, 1.0])


class TestFromTenors:
    def test_from_tenor_string(self):
        grid = DateGrid.from_tenors(TODAY, "1M,3M,1Y")
        assert grid.dates == [date(2026, 2, 5), date(2026, 4, 5), date(2027, 1, 5)]
        assert all(grid.is_valuation_date)
        assert not any(grid.is_close_out_date)

    def test_with_mpor(self):
        grid = DateGrid.from_tenors(TODAY, ["1M", "3M"], mpor_days=14)
        assert grid.valuation_dates == [date(2026, 2, 5), date(2026, 4, 5)]
        assert grid.close_out_dates == [date(2026, 2, 19), date(2026, 4, 19)]
        assert grid.is_close_out_date == [False, True, False, True]

    def test_close_out_coinciding_with_valuation_date(self):
        grid = DateGrid.from_tenors(TODAY, "1W,2W", mpor_days=7)
        assert grid.dates == [date(2026, 1, 12), date(2026, 1, 19), date(2026, 1, 26)]
        assert grid.is_valuation_date == [True, True, False]
        assert grid.is_close_out_date == [False, True, True]

    def test_with_close_out_dates_requires_positive_lag(self):
        grid = DateGrid.from_tenors(TODAY, "1M")
        with pytest.raises(ValueError):
            grid.with_close_out_dates(0)

    def test_repr(self):
        grid = DateGrid.from_tenors(TODAY, "1M,2M", mpor_days=10)
        assert repr(grid) == "DateGrid(dates=4, valuation=2, close_out=2)"
