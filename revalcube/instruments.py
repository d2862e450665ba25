"""
Instruments, trades and portfolios priced inside the simulation market.

Every instrument is a Dagger node registered in its market's dependency graph,
so it reprices lazily when the evaluation date or one of its quotes changes.
The engine sees instruments only through the InstrumentWrapper interface:

    initialise(dates)     path-dependent state over the simulation dates
    reset()               back to a clean pricing state (start of a sample)
    update_instruments()  refresh quote-dependent internals explicitly
    npv()                 value in the trade's NPV currency
    as_exercisable()      the optionality capability, or None

Classes:
    InterestRateIndex  — floating rate index (forecast + fixings)
    FixedRateCoupon    — fixed cashflow
    FloatingRateCoupon — index-linked cashflow, a graph node
    FixedRateBond, Swap, EquityOption — concrete instruments
    Trade, Portfolio
"""

from dataclasses import dataclass
import logging
import math

from .dagger import Node
from .dategrid import advance
from .models import BlackScholesModelBuilder
from .simmarket import year_fraction

logger = logging.getLogger(__name__)


def _norm_cdf(x):
    """Standard normal CDF using math.erf."""
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


def _schedule(start, maturity, frequency_months):
    """Payment dates from ``start`` (exclusive) to ``maturity`` (inclusive)."""
    dates = []
    k = 1
    d = advance(start, f"{frequency_months * k}M")
    while d < maturity:
        dates.append(d)
        k += 1
        d = advance(start, f"{frequency_months * k}M")
    dates.append(maturity)
    return dates


# ── Indices and cashflows ───────────────────────────────────────────────

class InterestRateIndex(Node):
    """Floating rate index forecast off the IDX/<name> quote."""

    def __init__(self, index_name, market, currency):
        super().__init__(f"INDEX/{index_name}")
        self.index_name = index_name
        self.market = market
        self.currency = currency
        self._quote = market.quote(f"IDX/{index_name}")
        market.graph.register(self)

    @property
    def underliers(self):
        return [self._quote]

    def compute(self):
        self._value = self._quote.value

    def forecast(self):
        return self._quote.value

    def fixing(self, d):
        return self.market.fixing(self.index_name, d)

    def has_fixing(self, d):
        return self.market.has_fixing(self.index_name, d)


@dataclass
class FixedRateCoupon:
    payment_date: object
    nominal: float
    rate: float
    accrual: float = 1.0

    @property
    def amount(self):
        return self.nominal * self.rate * self.accrual


@dataclass
class Redemption:
    payment_date: object
    nominal: float

    @property
    def amount(self):
        return self.nominal


class FloatingRateCoupon(Node):
    """
    Coupon paying (index + spread) * accrual * nominal.

    Past fixing dates read the market's fixing history; a missing historical
    fixing raises MissingFixingError when the coupon is priced.
    """

    def __init__(self, name, index, fixing_date, payment_date, nominal, accrual, spread=0.0):
        super().__init__(name)
        self.index = index
        self.fixing_date = fixing_date
        self.payment_date = payment_date
        self.nominal = nominal
        self.accrual = accrual
        self.spread = spread
        self._eval = index.market.evaluation_date
        index.market.graph.register(self)

    @property
    def underliers(self):
        return [self.index, self._eval]

    def rate(self):
        as_of = self._eval.value
        if self.fixing_date < as_of:
            fixed = self.index.fixing(self.fixing_date)
        elif self.fixing_date == as_of and self.index.has_fixing(self.fixing_date):
            fixed = self.index.fixing(self.fixing_date)
        else:
            fixed = self.index.forecast()
        return fixed + self.spread

    def compute(self):
        self._value = self.rate() * self.accrual * self.nominal

    @property
    def amount(self):
        return self.value


# ── InstrumentWrapper ───────────────────────────────────────────────────

class InstrumentWrapper(Node):
    """Base class for instruments valued by the engine."""

    def __init__(self, name, market, multiplier=1.0):
        super().__init__(name)
        self.market = market
        self.multiplier = multiplier
        self._eval = market.evaluation_date
        self._simulation_dates = []

    @property
    def legs(self):
        return []

    def initialise(self, dates):
        """Set up path-dependent state over the simulation dates."""
        self._simulation_dates = list(dates)
        self.reset()

    def reset(self):
        """Return to a clean pricing state."""
        self.update_instruments()

    def update_instruments(self):
        """Refresh every quote-dependent internal, ignoring the graph."""
        for leg in self.legs:
            for cf in leg:
                if isinstance(cf, Node):
                    cf.mark_dirty()
        self.mark_dirty()

    def npv(self):
        return self.value * self.multiplier

    def cashflows(self, start, end):
        """Net amount paid in (start, end], in the NPV currency."""
        return 0.0

    def as_exercisable(self):
        """Return self if the instrument carries exercise rights, else None."""
        return None

    def _discount(self, currency, d):
        return self.market.discount(currency, d)


class FixedRateBond(InstrumentWrapper):
    """Bullet bond with fixed coupons, discounted on the IR/<ccy> curve."""

    def __init__(self, name, market, currency, face, coupon_rate, maturity,
                 issue_date=None, frequency_months=12, multiplier=1.0):
        super().__init__(name, market, multiplier)
        self.currency = currency
        self.face = face
        self.coupon_rate = coupon_rate
        self.maturity = maturity
        start = issue_date or market.today
        dates = _schedule(start, maturity, frequency_months)
        prev = start
        flows = []
        for d in dates:
            flows.append(FixedRateCoupon(d, face, coupon_rate, year_fraction(prev, d)))
            prev = d
        flows.append(Redemption(maturity, face))
        self._flows = flows
        self._rate = market.quote(f"IR/{currency}")
        market.graph.register(self)

    @property
    def underliers(self):
        return [self._rate, self._eval]

    @property
    def legs(self):
        return [self._flows]

    def compute(self):
        as_of = self._eval.value
        self._value = sum(cf.amount * self._discount(self.currency, cf.payment_date)
                          for cf in self._flows if cf.payment_date > as_of)

    def cashflows(self, start, end):
        return self.multiplier * sum(cf.amount for cf in self._flows
                                     if start < cf.payment_date <= end)


class Swap(InstrumentWrapper):
    """
    Fixed vs floating interest rate swap.

    payer=True pays the fixed leg and receives the floating leg.
    """

    def __init__(self, name, market, currency, index, nominal, fixed_rate, maturity,
                 start_date=None, fixed_frequency_months=12, float_frequency_months=6,
                 spread=0.0, payer=True, multiplier=1.0):
        super().__init__(name, market, multiplier)
        self.currency = currency
        self.index = index
        self.payer = payer
        start = start_date or market.today

        fixed_leg = []
        prev = start
        for d in _schedule(start, maturity, fixed_frequency_months):
            fixed_leg.append(FixedRateCoupon(d, nominal, fixed_rate, year_fraction(prev, d)))
            prev = d

        floating_leg = []
        prev = start
        for i, d in enumerate(_schedule(start, maturity, float_frequency_months)):
            floating_leg.append(FloatingRateCoupon(
                f"{name}/FLT/{i}", index, fixing_date=prev, payment_date=d,
                nominal=nominal, accrual=year_fraction(prev, d), spread=spread,
            ))
            prev = d

        self.fixed_leg = fixed_leg
        self.floating_leg = floating_leg
        self._rate = market.quote(f"IR/{currency}")
        market.graph.register(self)

    @property
    def underliers(self):
        return list(self.floating_leg) + [self._rate, self._eval]

    @property
    def legs(self):
        return [self.fixed_leg, self.floating_leg]

    @property
    def _signs(self):
        return (-1.0, 1.0) if self.payer else (1.0, -1.0)

    def compute(self):
        as_of = self._eval.value
        fixed_sign, float_sign = self._signs
        pv = 0.0
        for sign, leg in ((fixed_sign, self.fixed_leg), (float_sign, self.floating_leg)):
            for cf in leg:
                if cf.payment_date > as_of:
                    pv += sign * cf.amount * self._discount(self.currency, cf.payment_date)
        self._value = pv

    def cashflows(self, start, end):
        fixed_sign, float_sign = self._signs
        total = 0.0
        for sign, leg in ((fixed_sign, self.fixed_leg), (float_sign, self.floating_leg)):
            for cf in leg:
                if start < cf.payment_date <= end:
                    total += sign * cf.amount
        return self.multiplier * total


# ── Options ─────────────────────────────────────────────────────────────

class OptionWrapper(InstrumentWrapper):
    """
    Instrument with exercise rights and path-dependent exercise state.

    Exercise is decided when the option is priced on one of its exercise
    opportunities (simulation dates, fixed by initialise()). Once exercised
    the option stays exercised until reset().
    """

    def __init__(self, name, market, multiplier=1.0):
        super().__init__(name, market, multiplier)
        self._exercise_enabled = True
        self._exercised = False
        self._exercise_date = None
        self._exercise_opportunities = set()

    def as_exercisable(self):
        return self

    @property
    def exercise_enabled(self):
        return self._exercise_enabled

    @property
    def exercised(self):
        return self._exercised

    @property
    def exercise_date(self):
        return self._exercise_date

    def enable_exercise(self):
        self._exercise_enabled = True
        self.mark_dirty()

    def disable_exercise(self):
        self._exercise_enabled = False
        self.mark_dirty()

    def initialise(self, dates):
        dates = list(dates)
        self._exercise_opportunities = set(self.exercise_opportunities(dates))
        super().initialise(dates)

    def reset(self):
        self._exercised = False
        self._exercise_date = None
        super().reset()

    def exercise_opportunities(self, dates):
        """Simulation dates on which exercise may happen."""
        return []

    def should_exercise(self, as_of):
        raise NotImplementedError

    def exercised_value(self):
        raise NotImplementedError

    def unexercised_value(self):
        raise NotImplementedError

    def compute(self):
        as_of = self._eval.value
        if (not self._exercised and self._exercise_enabled
                and as_of in self._exercise_opportunities and self.should_exercise(as_of)):
            self._exercised = True
            self._exercise_date = as_of
            logger.debug(f"{self.name} exercised on {as_of}")
        self._value = self.exercised_value() if self._exercised else self.unexercised_value()


class EquityOption(OptionWrapper):
    """
    Physically settled equity option, European or American, Black-Scholes priced.

    After exercise the position is worth S - K (call) or K - S (put).
    """

    def __init__(self, name, market, underlying, currency, strike, expiry, is_call=True,
                 american=False, quantity=1.0, model_builder=None):
        super().__init__(name, market, multiplier=quantity)
        self.underlying = underlying
        self.currency = currency
        self.strike = strike
        self.expiry = expiry
        self.is_call = is_call
        self.american = american
        self.model_builder = model_builder or BlackScholesModelBuilder(underlying, market)
        self._spot = market.quote(f"EQ/{underlying}")
        self._rate = market.quote(f"IR/{currency}")
        market.graph.register(self)

    @property
    def underliers(self):
        return [self._spot, self._rate, self._eval, self.model_builder]

    def exercise_opportunities(self, dates):
        dates = sorted(dates)
        last = next((d for d in dates if d >= self.expiry), None)
        if self.american:
            opportunities = [d for d in dates if d < self.expiry]
        else:
            opportunities = []
        if last is not None:
            opportunities.append(last)
        return opportunities

    def intrinsic(self):
        S = self._spot.value
        return max(S - self.strike, 0.0) if self.is_call else max(self.strike - S, 0.0)

    def black_scholes(self, T):
        S = self._spot.value
        K = self.strike
        r = self._rate.value
        sigma = self.model_builder.model.volatility

        if T <= 0:
            return self.intrinsic()

        sqrt_T = math.sqrt(T)
        d1 = (math.log(S / K) + (r + 0.5 * sigma ** 2) * T) / (sigma * sqrt_T)
        d2 = d1 - sigma * sqrt_T
        df = math.exp(-r * T)
        if self.is_call:
            return S * _norm_cdf(d1) - K * df * _norm_cdf(d2)
        return K * df * _norm_cdf(-d2) - S * _norm_cdf(-d1)

    def should_exercise(self, as_of):
        intrinsic = self.intrinsic()
        if intrinsic <= 0:
            return False
        if as_of >= self.expiry:
            return True
        # early exercise only pays when the continuation value is below intrinsic
        return intrinsic >= self.black_scholes(year_fraction(as_of, self.expiry))

    def exercised_value(self):
        S = self._spot.value
        return S - self.strike if self.is_call else self.strike - S

    def unexercised_value(self):
        as_of = self._eval.value
        if as_of > self.expiry and as_of not in self._exercise_opportunities:
            return 0.0
        return self.black_scholes(year_fraction(as_of, self.expiry))


# ── Trade / Portfolio ───────────────────────────────────────────────────

class Trade:
    """An instrument with its booking attributes."""

    def __init__(self, trade_id, trade_type, instrument, npv_currency, counterparty="",
                 netting_set_id="", legs=None):
        self.id = trade_id
        self.trade_type = trade_type
        self.instrument = instrument
        self.npv_currency = npv_currency
        self.counterparty = counterparty
        self.netting_set_id = netting_set_id or counterparty
        self._legs = legs

    @property
    def legs(self):
        if self._legs is not None:
            return self._legs
        return self.instrument.legs

    def __repr__(self):
        return f"Trade({self.id!r}, type={self.trade_type}, ccy={self.npv_currency})"


class Portfolio:
    """Trades keyed by id; iteration follows insertion order."""

    def __init__(self, trades=()):
        self._trades = {}
        for trade in trades:
            self.add(trade)

    def add(self, trade):
        if trade.id in self._trades:
            raise ValueError(f"Duplicate trade id {trade.id!r}")
        self._trades[trade.id] = trade

    def remove(self, trade_id):
        return self._trades.pop(trade_id)

    @property
    def trades(self):
        return dict(self._trades)

    @property
    def size(self):
        return len(self._trades)

    def ids(self):
        return list(self._trades)

    def counterparties(self):
        return sorted({t.counterparty for t in self._trades.values() if t.counterparty})

    def __len__(self):
        return len(self._trades)

    def __iter__(self):
        return iter(self._trades.values())

    def __repr__(self):
        return f"Portfolio(trades={len(self._trades)})"
