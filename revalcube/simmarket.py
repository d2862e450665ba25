"""
Simulation market — today's market re-pointed to a future date and scenario.

The ValuationEngine only talks to the ScenarioMarket protocol:

    pre_update() -> update_date(d) -> update_scenario(d)
        -> post_update(d, with_fixings) -> update_aggregation_scenario_data(d)

SimMarket implements it on top of a Dagger dependency graph. Quotes are named
by convention:

    IR/<ccy>        flat continuously compounded zero rate
    FX/<ccy><base>  spot FX rate, units of base currency per unit of <ccy>
    EQ/<name>       equity spot
    EQVOL/<name>    equity Black volatility
    IDX/<index>     flat forward rate of a floating rate index
    CR/<name>       flat hazard rate of a credit name
"""

from abc import ABC, abstractmethod
import logging
import math
import threading

import numpy as np

from .dagger import DependencyGraph, Quote
from .errors import MissingFixingError, MissingMarketDataError, require
from .observation import ObservationMode

logger = logging.getLogger(__name__)

EVALUATION_DATE = "EvaluationDate"


def year_fraction(start, end):
    """ACT/365 fixed."""
    return (end - start).days / 365.0


# ── ScenarioMarket ──────────────────────────────────────────────────────

class ScenarioMarket(ABC):
    """Update protocol the valuation engine drives through the date grid."""

    def __init__(self):
        # held by a ValuationEngine for the duration of a cube build
        self.checkout_lock = threading.Lock()

    @abstractmethod
    def pre_update(self):
        """Prepare for a batch of changes."""

    @abstractmethod
    def update_date(self, d):
        """Move the evaluation date to ``d``."""

    @abstractmethod
    def update_scenario(self, d):
        """Apply the simulated market state for ``d``."""

    @abstractmethod
    def post_update(self, d, with_fixings):
        """Finish the batch; with_fixings records index fixings up to ``d``."""

    @abstractmethod
    def update_aggregation_scenario_data(self, d):
        """Record scenario data needed by downstream aggregation."""

    @abstractmethod
    def reset(self):
        """Return to today's market."""

    @property
    @abstractmethod
    def as_of_date(self):
        """Current evaluation date."""

    @property
    @abstractmethod
    def current_label(self):
        """Label of the scenario currently applied."""

    @property
    @abstractmethod
    def fixing_manager(self):
        """FixingManager with initialise(portfolio, market) and reset()."""


# ── AggregationScenarioData ─────────────────────────────────────────────

class AggregationScenarioData:
    """Dense (num_dates, num_samples) store of scenario values per key."""

    def __init__(self, num_dates, num_samples):
        self.num_dates = num_dates
        self.num_samples = num_samples
        self._data = {}  # key -> np.ndarray [num_dates, num_samples]

    def set(self, date_index, sample, value, key):
        if not (0 <= date_index < self.num_dates and 0 <= sample < self.num_samples):
            raise IndexError(f"Aggregation data index ({date_index}, {sample}) out of range "
                             f"({self.num_dates}, {self.num_samples})")
        arr = self._data.get(key)
        if arr is None:
            arr = np.zeros((self.num_dates, self.num_samples))
            self._data[key] = arr
        arr[date_index, sample] = value

    def get(self, date_index, sample, key):
        try:
            return float(self._data[key][date_index, sample])
        except KeyError:
            raise KeyError(f"No aggregation scenario data for {key!r}") from None

    def has(self, key):
        return key in self._data

    @property
    def keys(self):
        return sorted(self._data)


# ── FixingManager ───────────────────────────────────────────────────────

class FixingManager:
    """
    Feeds simulated index fixings into the market as the simulation moves on.

    Only fixing dates referenced by the portfolio are tracked. A fixing due
    today without a historical value is taken from today's index rate when the
    manager is initialised. Fixings added during a sample are removed again by
    reset(), leaving the historical and today's fixings untouched.
    """

    def __init__(self, market):
        self._market = market
        self._fixing_dates = {}  # index name -> sorted list of dates
        self._added = []  # (index name, date)
        self._last = None
        self.initialised = False

    def initialise(self, portfolio, market=None):
        market = market or self._market
        dates = {}
        for trade in portfolio.trades.values():
            for leg in trade.legs:
                for cf in leg:
                    index = getattr(cf, "index", None)
                    fixing_date = getattr(cf, "fixing_date", None)
                    if index is None or fixing_date is None:
                        continue
                    dates.setdefault(index.index_name, set()).add(fixing_date)
        self._fixing_dates = {name: sorted(ds) for name, ds in dates.items()}
        self._market = market
        self._last = market.as_of_date
        for name, fixing_dates in self._fixing_dates.items():
            if self._last in fixing_dates and not market.has_fixing(name, self._last):
                market.add_fixing(name, self._last, market.index_rate(name))
        self.initialised = True
        logger.debug(f"FixingManager tracking {len(self._fixing_dates)} indices")

    @property
    def fixing_dates(self):
        return {name: list(ds) for name, ds in self._fixing_dates.items()}

    def update(self, d):
        """Fix every tracked fixing date in (last update, d] at today's simulated rate."""
        if not self.initialised or d <= self._last:
            return
        for name, fixing_dates in self._fixing_dates.items():
            rate = self._market.index_rate(name)
            for fd in fixing_dates:
                if self._last < fd <= d and not self._market.has_fixing(name, fd):
                    self._market.add_fixing(name, fd, rate)
                    self._added.append((name, fd))
        self._last = d

    def reset(self):
        for name, fd in self._added:
            self._market.remove_fixing(name, fd)
        self._added = []
        if self.initialised:
            self._last = self._market.today


# ── SimMarket ───────────────────────────────────────────────────────────

class SimMarket(ScenarioMarket):
    """
    Scenario market backed by a dependency graph of quotes.

    Parameters
    ----------
    today              : date — simulation start date
    quotes             : dict[str, float] — today's quote values
    scenario_generator : ScenarioGenerator, optional
    base_currency      : str
    observation_mode   : ObservationMode or str
    fixings            : dict[str, dict[date, float]] — historical index fixings
    aggregation_data   : AggregationScenarioData, optional
    """

    def __init__(self, today, quotes, scenario_generator=None, base_currency="EUR",
                 observation_mode=ObservationMode.NONE, fixings=None, aggregation_data=None):
        super().__init__()
        self.today = today
        self.base_currency = base_currency
        self.observation_mode = ObservationMode.parse(observation_mode)
        self.scenario_generator = scenario_generator
        self.aggregation_data = aggregation_data

        self.graph = DependencyGraph()
        self.graph.updates_enabled = self.observation_mode is not ObservationMode.DISABLE
        self.evaluation_date = self.graph.register(Quote(EVALUATION_DATE, today))

        self._base_quotes = dict(quotes)
        self._quotes = {}
        for name, value in self._base_quotes.items():
            self._quotes[name] = self.graph.register(Quote(name, value))

        self._fixings = {name: dict(f) for name, f in (fixings or {}).items()}
        self._fixing_manager = FixingManager(self)
        self._label = ""
        self._asd_count = 0

    # ── Market data access ──────────────────────────────────────────────

    def quote(self, name):
        try:
            return self._quotes[name]
        except KeyError:
            raise MissingMarketDataError(f"No quote {name!r} in simulation market") from None

    def has_quote(self, name):
        return name in self._quotes

    def zero_rate(self, ccy):
        return self.quote(f"IR/{ccy}").value

    def discount(self, ccy, d):
        """Discount factor from the evaluation date to ``d``."""
        return math.exp(-self.zero_rate(ccy) * year_fraction(self.as_of_date, d))

    def fx_spot(self, ccy):
        """Units of base currency per unit of ``ccy``."""
        if ccy == self.base_currency:
            return 1.0
        return self.quote(f"FX/{ccy}{self.base_currency}").value

    def survival_probability(self, name, d):
        hazard = self.quote(f"CR/{name}").value
        return math.exp(-hazard * max(year_fraction(self.today, d), 0.0))

    def numeraire(self):
        """Money market account in base currency, rolled at the current base rate."""
        name = f"IR/{self.base_currency}"
        rate = self._quotes[name].value if name in self._quotes else 0.0
        return math.exp(rate * year_fraction(self.today, self.as_of_date))

    def index_rate(self, index_name):
        return self.quote(f"IDX/{index_name}").value

    def fixing(self, index_name, d):
        try:
            return self._fixings[index_name][d]
        except KeyError:
            raise MissingFixingError(f"Missing {index_name} fixing for {d}") from None

    def has_fixing(self, index_name, d):
        return d in self._fixings.get(index_name, {})

    def add_fixing(self, index_name, d, value):
        self._fixings.setdefault(index_name, {})[d] = value

    def remove_fixing(self, index_name, d):
        self._fixings.get(index_name, {}).pop(d, None)

    # ── ScenarioMarket protocol ─────────────────────────────────────────

    @property
    def as_of_date(self):
        return self.evaluation_date.value

    @property
    def current_label(self):
        return self._label

    @property
    def fixing_manager(self):
        return self._fixing_manager

    def pre_update(self):
        if self.observation_mode is ObservationMode.DEFER:
            self.graph.defer_updates()

    def update_date(self, d):
        self.evaluation_date.set_value(d)

    def update_scenario(self, d):
        require(self.scenario_generator is not None, "SimMarket: no scenario generator")
        scenario = self.scenario_generator.next(d)
        for name, value in scenario.values.items():
            self.quote(name).set_value(value)
        self._label = scenario.label

    def post_update(self, d, with_fixings):
        if with_fixings:
            self._fixing_manager.update(d)
        self.graph.flush()

    def update_aggregation_scenario_data(self, d):
        asd = self.aggregation_data
        if asd is None:
            return
        date_index = self._asd_count % asd.num_dates
        sample = self._asd_count // asd.num_dates
        asd.set(date_index, sample, self.numeraire(), "numeraire")
        for name, q in self._quotes.items():
            if name.startswith(("FX/", "IDX/")):
                asd.set(date_index, sample, q.value, name)
        self._asd_count += 1

    def reset(self):
        self.graph.flush()
        self.evaluation_date.set_value(self.today)
        for name, value in self._base_quotes.items():
            self._quotes[name].set_value(value)
        if self.scenario_generator is not None:
            self.scenario_generator.reset()
        self._fixing_manager.reset()
        self._label = ""
        self._asd_count = 0

    def __repr__(self):
        return (f"SimMarket(today={self.today}, as_of={self.as_of_date}, "
                f"quotes={len(self._quotes)}, mode={self.observation_mode.value})")
