"""
Calculators — the units of work that fill a results cube.

The engine calls a valuation calculator once per (trade, date, sample) and a
counterparty calculator once per (counterparty, date, sample). Calculators
decide which depth slots they write; the engine only routes the calls.

Classes:
    ValuationCalculator           — trade-level interface
    CounterpartyCalculator        — counterparty-level interface
    NPVCalculator                 — deflated NPV in a base currency
    CashflowCalculator            — cashflows paid since the last valuation date
    MPORCalculator                — NPV at default date and close-out date
    SurvivalProbabilityCalculator — counterparty survival probabilities
"""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


# ── Interfaces ──────────────────────────────────────────────────────────

class ValuationCalculator(ABC):
    """Trade-level calculator."""

    def init(self, portfolio, market):
        """Bind to the portfolio and market once per cube build."""

    def init_scenario(self):
        """Called before each per-trade loop of a date / scenario step."""

    @abstractmethod
    def calculate_t0(self, trade, trade_index, market, cube, close_out_cube):
        """Write time-zero results of ``trade``."""

    @abstractmethod
    def calculate(self, trade, trade_index, market, cube, close_out_cube,
                  date, date_index, sample, is_close_out):
        """Write results of ``trade`` for one date and sample."""


class CounterpartyCalculator(ABC):
    """Counterparty-level calculator; there is no time-zero phase."""

    @abstractmethod
    def calculate(self, counterparty, index, market, cube, date, date_index, sample, is_close_out):
        """Write results of ``counterparty`` for one date and sample."""


# ── Trade-level calculators ─────────────────────────────────────────────

class NPVCalculator(ValuationCalculator):
    """
    NPV converted to ``base_currency`` and deflated by the market numeraire.

    Writes at depth ``index`` on valuation dates only.
    """

    def __init__(self, base_currency, index=0):
        self.base_currency = base_currency
        self.index = index

    def fx(self, ccy, market):
        if ccy == self.base_currency:
            return 1.0
        return market.fx_spot(ccy) / market.fx_spot(self.base_currency)

    def npv(self, trade, market):
        return trade.instrument.npv() * self.fx(trade.npv_currency, market) / market.numeraire()

    def calculate_t0(self, trade, trade_index, market, cube, close_out_cube):
        cube.set_t0(self.npv(trade, market), trade_index, self.index)

    def calculate(self, trade, trade_index, market, cube, close_out_cube,
                  date, date_index, sample, is_close_out):
        if not is_close_out:
            cube.set(self.npv(trade, market), trade_index, date_index, sample, self.index)


class CashflowCalculator(ValuationCalculator):
    """
    Deflated net cashflow paid in (previous valuation date, date].

    The first valuation date of each sample collects everything paid after
    today.
    """

    def __init__(self, base_currency, index=1):
        self.base_currency = base_currency
        self.index = index
        self._npv = NPVCalculator(base_currency)
        self._today = None
        self._last = {}  # trade index -> last valuation date seen

    def init(self, portfolio, market):
        self._today = market.as_of_date
        self._last = {}

    def calculate_t0(self, trade, trade_index, market, cube, close_out_cube):
        cube.set_t0(0.0, trade_index, self.index)

    def calculate(self, trade, trade_index, market, cube, close_out_cube,
                  date, date_index, sample, is_close_out):
        if is_close_out:
            return
        start = self._last.get(trade_index)
        if start is None or start >= date:
            start = self._today
        self._last[trade_index] = date
        flow = trade.instrument.cashflows(start, date)
        value = flow * self._npv.fx(trade.npv_currency, market) / market.numeraire()
        cube.set(value, trade_index, date_index, sample, self.index)


class MPORCalculator(ValuationCalculator):
    """
    Composite calculator for margin period of risk exposures.

    Valuation dates write the default-date NPV at ``default_index``; close-out
    dates write the close-out NPV at ``close_out_index`` of the same cube, or
    at ``default_index`` of the close-out cube when one is supplied.
    """

    def __init__(self, npv_calculator, default_index=0, close_out_index=1):
        self.npv_calculator = npv_calculator
        self.default_index = default_index
        self.close_out_index = close_out_index

    @property
    def children(self):
        return [self.npv_calculator]

    def init(self, portfolio, market):
        self.npv_calculator.init(portfolio, market)

    def init_scenario(self):
        self.npv_calculator.init_scenario()

    def calculate_t0(self, trade, trade_index, market, cube, close_out_cube):
        value = self.npv_calculator.npv(trade, market)
        cube.set_t0(value, trade_index, self.default_index)
        if close_out_cube is not None:
            close_out_cube.set_t0(value, trade_index, self.default_index)
        else:
            cube.set_t0(value, trade_index, self.close_out_index)

    def calculate(self, trade, trade_index, market, cube, close_out_cube,
                  date, date_index, sample, is_close_out):
        value = self.npv_calculator.npv(trade, market)
        if not is_close_out:
            cube.set(value, trade_index, date_index, sample, self.default_index)
        elif close_out_cube is not None:
            close_out_cube.set(value, trade_index, date_index, sample, self.default_index)
        else:
            cube.set(value, trade_index, date_index, sample, self.close_out_index)


# ── Counterparty calculators ────────────────────────────────────────────

class SurvivalProbabilityCalculator(CounterpartyCalculator):
    """Survival probability of each counterparty to the simulation date."""

    def __init__(self, index=0):
        self.index = index

    def calculate(self, counterparty, index, market, cube, date, date_index, sample, is_close_out):
        if not is_close_out:
            cube.set(market.survival_probability(counterparty, date), index, date_index, sample, self.index)
