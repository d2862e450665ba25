"""Shared fakes for the revalcube tests."""

from datetime import date, timedelta

from revalcube.calculators import CounterpartyCalculator, ValuationCalculator
from revalcube.dategrid import DateGrid
from revalcube.instruments import Portfolio, Trade
from revalcube.observation import ObservationMode
from revalcube.simmarket import ScenarioMarket

TODAY = date(2026, 1, 5)


def days(n):
    return TODAY + timedelta(days=n)


def grid_of(valuation, close_out=()):
    """DateGrid from day offsets relative to TODAY."""
    return DateGrid([days(n) for n in valuation], [days(n) for n in close_out])


class RecordingFixingManager:
    def __init__(self, events):
        self.events = events
        self.initialise_calls = 0
        self.reset_calls = 0

    def initialise(self, portfolio, market):
        self.initialise_calls += 1
        self.events.append(("fixing_initialise",))

    def reset(self):
        self.reset_calls += 1
        self.events.append(("fixing_reset",))


class RecordingMarket(ScenarioMarket):
    """ScenarioMarket that records every protocol call in ``events``."""

    def __init__(self, today=TODAY, events=None, observation_mode=ObservationMode.NONE,
                 fail_scenario_on=None):
        super().__init__()
        self.today = today
        self.events = events if events is not None else []
        self.observation_mode = observation_mode
        self.fail_scenario_on = fail_scenario_on
        self._as_of = today
        self._label = ""
        self._scenarios = 0
        self._fixing_manager = RecordingFixingManager(self.events)
        self.reset_calls = 0

    @property
    def as_of_date(self):
        return self._as_of

    @property
    def current_label(self):
        return self._label

    @property
    def fixing_manager(self):
        return self._fixing_manager

    def pre_update(self):
        self.events.append(("pre_update",))

    def update_date(self, d):
        self._as_of = d
        self.events.append(("update_date", d))

    def update_scenario(self, d):
        if self.fail_scenario_on == d:
            raise RuntimeError(f"scenario generator exhausted at {d}")
        self._scenarios += 1
        self._label = f"scenario-{self._scenarios}"
        self.events.append(("update_scenario", d))

    def post_update(self, d, with_fixings):
        self.events.append(("post_update", d, with_fixings))

    def update_aggregation_scenario_data(self, d):
        self.events.append(("asd", d))

    def reset(self):
        self.reset_calls += 1
        self._as_of = self.today
        self._label = ""
        self.events.append(("reset",))

    def protocol_events(self):
        protocol = {"pre_update", "update_date", "update_scenario", "post_update", "asd"}
        return [e for e in self.events if e[0] in protocol]


class FakeInstrument:
    """Instrument whose npv() is the current market date offset plus ``base``."""

    def __init__(self, market, base=100.0, events=None, name="FAKE"):
        self.market = market
        self.base = base
        self.name = name
        self.events = events if events is not None else []
        self.initialised_with = None
        self.reset_calls = 0
        self.update_calls = 0
        self.legs = []

    def initialise(self, dates):
        self.initialised_with = list(dates)

    def reset(self):
        self.reset_calls += 1

    def update_instruments(self):
        self.update_calls += 1
        self.events.append(("update_instruments", self.name))

    def npv(self):
        return self.base + (self.market.as_of_date - self.market.today).days

    def as_exercisable(self):
        return None


class FakeExercisable(FakeInstrument):
    def __init__(self, market, base=100.0, events=None, name="OPTION"):
        super().__init__(market, base, events, name)
        self.exercise_enabled = True

    def enable_exercise(self):
        self.exercise_enabled = True
        self.events.append(("enable_exercise", self.name))

    def disable_exercise(self):
        self.exercise_enabled = False
        self.events.append(("disable_exercise", self.name))

    def as_exercisable(self):
        return self


class FailingInstrument(FakeInstrument):
    """Raises from npv() once the market reaches ``fail_from``."""

    def __init__(self, market, fail_from, base=100.0, events=None, name="BROKEN"):
        super().__init__(market, base, events, name)
        self.fail_from = fail_from

    def npv(self):
        if self.market.as_of_date >= self.fail_from:
            raise ValueError(f"cannot price {self.name}")
        return super().npv()


class RecordingCalculator(ValuationCalculator):
    """
    Writes instrument npv at depth 0 on valuation dates and at depth 1 (when
    the cube has it) on close-out dates.
    """

    def __init__(self, events=None):
        self.events = events if events is not None else []
        self.init_calls = 0
        self.init_scenario_calls = 0
        self.t0_calls = []
        self.calls = []

    def init(self, portfolio, market):
        self.init_calls += 1

    def init_scenario(self):
        self.init_scenario_calls += 1

    def calculate_t0(self, trade, trade_index, market, cube, close_out_cube):
        self.t0_calls.append(trade.id)
        cube.set_t0(trade.instrument.npv(), trade_index)

    def calculate(self, trade, trade_index, market, cube, close_out_cube,
                  date, date_index, sample, is_close_out):
        self.calls.append((trade.id, date, date_index, sample, is_close_out))
        self.events.append(("calculate", trade.id, date, is_close_out))
        value = trade.instrument.npv()
        if not is_close_out:
            cube.set(value, trade_index, date_index, sample, 0)
        elif close_out_cube is not None:
            close_out_cube.set(value, trade_index, date_index, sample, 0)
        elif cube.depth > 1:
            cube.set(value, trade_index, date_index, sample, 1)


class RecordingCounterpartyCalculator(CounterpartyCalculator):
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def calculate(self, counterparty, index, market, cube, date, date_index, sample, is_close_out):
        self.calls.append((counterparty, index, date, date_index, sample, is_close_out))
        if counterparty == self.fail_on:
            raise RuntimeError(f"no credit curve for {counterparty}")
        cube.set(float(index + 1), index, date_index, sample)


class CountingModelBuilder:
    def __init__(self, events=None):
        self.events = events if events is not None else []
        self.force_calls = 0
        self.recalibrate_calls = 0

    def force_recalculate(self):
        self.force_calls += 1
        self.events.append(("force",))

    def recalibrate(self):
        self.recalibrate_calls += 1
        self.events.append(("recalibrate",))


def fake_portfolio(market, n=2, events=None, counterparties=None):
    trades = []
    for i in range(n):
        cpty = counterparties[i] if counterparties else f"CP{i}"
        instrument = FakeInstrument(market, base=100.0 * (i + 1), events=events, name=f"T{i}")
        trades.append(Trade(f"T{i}", "Fake", instrument, "EUR", counterparty=cpty))
    return Portfolio(trades)
