"""
DateGrid — the ordered simulation dates of a cube build.

Every slot of the grid is a valuation date, a close-out date, or both. Valuation
dates own a slot in the results cube; close-out dates (valuation date + margin
period of risk) are auxiliary dates whose results are stored against the
preceding valuation date.
"""

import re
from datetime import date, datetime, timedelta

import numpy as np
import pandas as pd

_TENOR_RE = re.compile(r"^\s*(\d+)\s*([DWMY])\s*$", re.IGNORECASE)


def parse_tenor(tenor):
    """Turn a tenor string such as ``"3M"`` into a pandas DateOffset."""
    match = _TENOR_RE.match(tenor)
    if match is None:
        raise ValueError(f"Invalid tenor {tenor!r}, expected e.g. 10D, 2W, 3M, 1Y")
    n, unit = int(match.group(1)), match.group(2).upper()
    if unit == "D":
        return pd.DateOffset(days=n)
    if unit == "W":
        return pd.DateOffset(weeks=n)
    if unit == "M":
        return pd.DateOffset(months=n)
    return pd.DateOffset(years=n)


def advance(start, tenor):
    """Calendar date ``tenor`` after ``start`` (month-end rolls follow pandas)."""
    return (pd.Timestamp(start) + parse_tenor(tenor)).date()


def _as_date(d):
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, pd.Timestamp):
        return d.date()
    if isinstance(d, date):
        return d
    raise TypeError(f"Expected a date, got {type(d).__name__}")


class DateGrid:
    """
    Strictly ascending simulation dates with valuation / close-out flags.

    Parameters
    ----------
    valuation_dates : iterable of date
    close_out_dates : iterable of date, optional
        A date present in both collections occupies one slot carrying both flags.
    """

    def __init__(self, valuation_dates, close_out_dates=()):
        valuation = {_as_date(d) for d in valuation_dates}
        close_out = {_as_date(d) for d in close_out_dates}
        self._dates = sorted(valuation | close_out)
        self._index = {d: i for i, d in enumerate(self._dates)}
        self._is_valuation = [d in valuation for d in self._dates]
        self._is_close_out = [d in close_out for d in self._dates]

    @classmethod
    def from_tenors(cls, today, tenors, mpor_days=None):
        """
        Build a grid from a comma separated tenor list, e.g. ``"1M,3M,1Y"``.

        With ``mpor_days`` every valuation date gets a close-out date
        ``mpor_days`` calendar days later.
        """
        if isinstance(tenors, str):
            tenors = [t for t in tenors.split(",") if t.strip()]
        valuation = [advance(today, t) for t in tenors]
        grid = cls(valuation)
        if mpor_days:
            grid = grid.with_close_out_dates(mpor_days)
        return grid

    def with_close_out_dates(self, mpor_days):
        """Return a new grid with a close-out date after each valuation date."""
        if mpor_days <= 0:
            raise ValueError(f"mpor_days must be positive, got {mpor_days}")
        lag = timedelta(days=mpor_days)
        valuation = self.valuation_dates
        return DateGrid(valuation, [d + lag for d in valuation] + self.close_out_dates)

    @property
    def dates(self):
        return list(self._dates)

    @property
    def is_valuation_date(self):
        return list(self._is_valuation)

    @property
    def is_close_out_date(self):
        return list(self._is_close_out)

    @property
    def valuation_dates(self):
        return [d for d, v in zip(self._dates, self._is_valuation) if v]

    @property
    def close_out_dates(self):
        return [d for d, c in zip(self._dates, self._is_close_out) if c]

    @property
    def size(self):
        return len(self._dates)

    def index(self, d):
        try:
            return self._index[_as_date(d)]
        except KeyError:
            raise KeyError(f"{d} is not a date of this grid") from None

    def times(self, today):
        """ACT/365 year fractions from ``today`` to each grid date."""
        return np.array([(d - today).days / 365.0 for d in self._dates], dtype=np.float64)

    def __len__(self):
        return len(self._dates)

    def __iter__(self):
        return iter(self._dates)

    def __contains__(self, d):
        return _as_date(d) in self._index

    def __repr__(self):
        n_val = sum(self._is_valuation)
        n_co = sum(self._is_close_out)
        return f"DateGrid(dates={len(self._dates)}, valuation={n_val}, close_out={n_co})"
