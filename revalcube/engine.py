"""
ValuationEngine — replays a portfolio over the date grid under every simulated
scenario and fills the results cubes.

Loop order is samples, then dates, then trades:

    for each sample:
        reset every instrument
        for each grid date (ascending):
            close-out date  -> advance scenario (date too unless sticky),
                               recalibrate, run calculators in close-out mode
                               at the previous valuation date's cube slot
            valuation date  -> advance date + scenario (once) + fixings,
                               record aggregation data, recalibrate,
                               run trade and counterparty calculators
        reset simulated fixings

A failing trade is logged as a structured error, skipped for the rest of the
run and zeroed in the output cube at the end; everything else carries on.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
import time
from typing import Optional

from .errors import (
    SCENARIO_VALUATION,
    MarketBusyError,
    StructuredTradeError,
    require,
)
from .instruments import FloatingRateCoupon
from .observation import ObservationMode
from .progress import ProgressReporter

logger = logging.getLogger(__name__)


# ── Build report ────────────────────────────────────────────────────────

@dataclass
class TradeOutcome:
    """Valuation outcome of one trade over the whole build."""
    trade_id: str
    trade_type: str
    error: Optional[StructuredTradeError] = None

    @property
    def ok(self):
        return self.error is None


@dataclass
class CubeBuildReport:
    outcomes: dict = field(default_factory=dict)  # trade id -> TradeOutcome
    errors: list = field(default_factory=list)  # StructuredTradeError, in order
    samples: int = 0
    update_time: float = 0.0
    pricing_time: float = 0.0
    fixing_time: float = 0.0
    loop_time: float = 0.0

    @property
    def failed_trades(self):
        return [tid for tid, o in self.outcomes.items() if not o.ok]

    def summary(self):
        return (f"{len(self.outcomes)} trades, {len(self.failed_trades)} failed, "
                f"{self.samples} samples; loop {self.loop_time:.2f} sec, "
                f"pricing {self.pricing_time:.2f} sec, update {self.update_time:.2f} sec, "
                f"fixing {self.fixing_time:.2f} sec")


# ── ValuationEngine ─────────────────────────────────────────────────────

class ValuationEngine(ProgressReporter):
    """
    Parameters
    ----------
    today            : date — simulation start date, not after the first grid date
    date_grid        : DateGrid
    sim_market       : ScenarioMarket
    model_builders   : iterable of (currency, ModelBuilder) pairs
    observation_mode : ObservationMode, optional
        Defaults to the market's own observation mode, else NONE.
    """

    def __init__(self, today, date_grid, sim_market, model_builders=(), observation_mode=None):
        super().__init__()
        require(date_grid is not None and len(date_grid) > 0, "Error, DateGrid size must be > 0")
        first = date_grid.dates[0]
        require(today <= first, f"ValuationEngine: Error today ({today}) must not be later "
                                f"than first DateGrid date {first}")
        require(sim_market is not None, "ValuationEngine: Error, Null SimMarket")

        self.today = today
        self.date_grid = date_grid
        self.sim_market = sim_market
        self.model_builders = list(model_builders)
        for ccy, builder in self.model_builders:
            require(builder is not None, f"ValuationEngine: no model builder for {ccy}")

        if observation_mode is None:
            observation_mode = getattr(sim_market, "observation_mode", ObservationMode.NONE)
        self.observation_mode = ObservationMode.parse(observation_mode)

    def recalibrate_models(self):
        for _, builder in self.model_builders:
            if self.observation_mode.forces_recalculation:
                builder.force_recalculate()
            builder.recalibrate()

    @contextmanager
    def _market_checkout(self):
        """Exclusive use of the market; the market is reset on every exit path."""
        lock = self.sim_market.checkout_lock
        if not lock.acquire(blocking=False):
            raise MarketBusyError("ValuationEngine: simulation market is already in use")
        try:
            yield self.sim_market
        finally:
            try:
                self.sim_market.reset()
            finally:
                lock.release()

    def build_cube(self, portfolio, output_cube, calculators, mpor_sticky_date=False,
                   close_out_cube=None, output_cpty_cube=None, cpty_calculators=(), dry_run=False):
        """
        Fill ``output_cube`` (and the optional close-out / counterparty cubes).

        Parameters
        ----------
        portfolio        : Portfolio
        output_cube      : NPVCube [trades, valuation dates, samples, depth]
        calculators      : list of ValuationCalculator
        mpor_sticky_date : bool — close-out dates keep the previous valuation date
        close_out_cube   : NPVCube, optional — passed through to calculators
        output_cpty_cube : NPVCube, optional [counterparties + 1, grid dates, samples, depth]
        cpty_calculators : list of CounterpartyCalculator
        dry_run          : bool — value one sample, fill the rest of every cube from T0 values

        Returns
        -------
        CubeBuildReport
        """
        with self._market_checkout():
            logger.info(f"Build cube with mpor_sticky_date={mpor_sticky_date}, dry_run={dry_run}")
            self._check_inputs(portfolio, output_cube, close_out_cube, output_cpty_cube)
            return self._build(portfolio, output_cube, list(calculators), mpor_sticky_date,
                               close_out_cube, output_cpty_cube, list(cpty_calculators), dry_run)

    def _check_inputs(self, portfolio, output_cube, close_out_cube, output_cpty_cube):
        grid = self.date_grid
        require(portfolio.size > 0, "ValuationEngine: Error portfolio is empty")
        require(output_cube.num_ids == portfolio.size,
                f"cube x dimension ({output_cube.num_ids}) different from portfolio size ({portfolio.size})")
        n_valuation = len(grid.valuation_dates)
        require(output_cube.num_dates == n_valuation,
                f"cube y dimension ({output_cube.num_dates}) different from number of "
                f"valuation dates ({n_valuation})")

        if close_out_cube is not None:
            require(close_out_cube.num_ids == output_cube.num_ids
                    and close_out_cube.num_dates == output_cube.num_dates,
                    f"close-out cube dimensions ({close_out_cube.num_ids}, {close_out_cube.num_dates}) "
                    f"different from output cube ({output_cube.num_ids}, {output_cube.num_dates})")

        if output_cpty_cube is not None:
            n_cpty = len(portfolio.counterparties())
            require(output_cpty_cube.num_ids == n_cpty + 1,
                    f"cptyCube x dimension ({output_cpty_cube.num_ids} minus 1) different from "
                    f"portfolio counterparty size ({n_cpty})")
            require(output_cpty_cube.num_dates == grid.size,
                    f"outputCptyCube y dimension ({output_cpty_cube.num_dates}) different from "
                    f"number of time steps ({grid.size})")

        for trade in portfolio.trades.values():
            require(bool(trade.npv_currency), f"NPV currency not set for trade {trade.id}")

    def _build(self, portfolio, output_cube, calculators, sticky, close_out_cube,
               output_cpty_cube, cpty_calculators, dry_run):
        market = self.sim_market
        grid = self.date_grid
        dates = grid.dates
        is_valuation = grid.is_valuation_date
        is_close_out = grid.is_close_out_date
        trades = list(portfolio.trades.values())
        counterparties = output_cpty_cube.ids_and_indexes() if output_cpty_cube is not None else {}

        report = CubeBuildReport(outcomes={t.id: TradeOutcome(t.id, t.trade_type) for t in trades})
        logger.info(f"Starting ValuationEngine for {portfolio.size} trades, {output_cube.samples} "
                    f"samples and {grid.size} dates.")

        logger.info(f"Initialise {len(calculators)} valuation calculators")
        for calc in calculators:
            calc.init(portfolio, market)
            calc.init_scenario()

        # state objects for each trade (path-dependent derivatives in particular) and T0 values
        logger.info("Initialise state objects...")
        for i, trade in enumerate(trades):
            logger.debug(f"Initialise wrapper for trade {trade.id}")
            self.recalibrate_models()
            error = self._value_t0(trade, i, dates, calculators, output_cube, close_out_cube)
            if error is not None:
                self._record(report, error)
            if self.observation_mode is ObservationMode.UNREGISTER:
                self._unregister_floating_legs(trade)
        logger.info(f"Total number of trades = {portfolio.size}")

        # the fixing manager is only required if sim dates contain future dates
        if any(d > market.as_of_date for d in dates):
            market.fixing_manager.initialise(portfolio, market)

        n_samples = min(1, output_cube.samples) if dry_run else output_cube.samples
        loop_start = time.perf_counter()
        for sample in range(n_samples):
            logger.debug(f"ValuationEngine: apply scenario sample #{sample}")
            self.update_progress(sample, output_cube.samples)

            for trade in trades:
                trade.instrument.reset()

            cube_date_index = -1
            for i, d in enumerate(dates):
                # close-out dates first; results go to the previous valuation date's slot
                scenario_updated = False
                if is_close_out[i]:
                    require(cube_date_index >= 0, "negative cube date index, ensure that the date "
                                                  "grid starts with a valuation date")
                    t0 = time.perf_counter()
                    market.pre_update()
                    if not sticky:
                        market.update_date(d)
                    market.update_scenario(d)
                    scenario_updated = True
                    market.post_update(d, not sticky)  # with fixings only if not sticky
                    self.recalibrate_models()
                    report.update_time += time.perf_counter() - t0

                    t0 = time.perf_counter()
                    if sticky:
                        self._set_exercisable(False, trades)
                    try:
                        self._run_calculators(True, trades, report, calculators, output_cube,
                                              close_out_cube, d, cube_date_index, sample)
                    finally:
                        if sticky:
                            self._set_exercisable(True, trades)
                    report.pricing_time += time.perf_counter() - t0

                if is_valuation[i]:
                    t0 = time.perf_counter()
                    cube_date_index += 1
                    market.pre_update()
                    market.update_date(d)
                    if not scenario_updated:
                        market.update_scenario(d)
                    market.post_update(d, True)
                    market.update_aggregation_scenario_data(d)
                    self.recalibrate_models()
                    report.update_time += time.perf_counter() - t0

                    t0 = time.perf_counter()
                    self._run_calculators(False, trades, report, calculators, output_cube,
                                          close_out_cube, d, cube_date_index, sample)
                    self._run_cpty_calculators(False, counterparties, cpty_calculators,
                                               output_cpty_cube, d, cube_date_index, sample)
                    report.pricing_time += time.perf_counter() - t0

            t0 = time.perf_counter()
            market.fixing_manager.reset()
            report.fixing_time += time.perf_counter() - t0
            report.samples += 1

        if dry_run:
            logger.info("Doing a dry run - fill remaining cube with T0 values plus positional noise.")
            for cube in (output_cube, close_out_cube, output_cpty_cube):
                if cube is not None:
                    self._fill_dry_run(cube)

        self.update_progress(output_cube.samples, output_cube.samples)
        report.loop_time = time.perf_counter() - loop_start
        logger.info(f"ValuationEngine completed: loop {report.loop_time:.2f} sec, "
                    f"pricing {report.pricing_time:.2f} sec, update {report.update_time:.2f} sec, "
                    f"fixing {report.fixing_time:.2f} sec")

        for j, trade in enumerate(trades):
            if not report.outcomes[trade.id].ok:
                logger.warning(f"setting all results in output cube to zero for trade '{trade.id}' "
                               f"since there was at least one error during simulation")
                output_cube.remove(j)
                if close_out_cube is not None:
                    close_out_cube.remove(j)
        return report

    # ── Per-trade work ──────────────────────────────────────────────────

    def _value_t0(self, trade, index, dates, calculators, output_cube, close_out_cube):
        """Initialise and value one trade at time zero; return an error or None."""
        try:
            trade.instrument.initialise(dates)
            for calc in calculators:
                calc.calculate_t0(trade, index, self.sim_market, output_cube, close_out_cube)
        except Exception as e:
            return self._trade_error(trade, f"T0 valuation error: {e}")
        return None

    def _run_calculators(self, is_close_out, trades, report, calculators, cube, close_out_cube,
                         d, date_index, sample):
        refresh = self.observation_mode.refreshes_instruments
        label = self.sim_market.current_label
        for calc in calculators:
            calc.init_scenario()
        for j, trade in enumerate(trades):
            if not report.outcomes[trade.id].ok:
                continue
            try:
                if refresh:
                    trade.instrument.update_instruments()
                for calc in calculators:
                    calc.calculate(trade, j, self.sim_market, cube, close_out_cube, d,
                                   date_index, sample, is_close_out)
            except Exception as e:
                msg = f"date = {d.isoformat()}, sample = {sample}, label = {label}: {e}"
                self._record(report, self._trade_error(trade, msg))

    def _run_cpty_calculators(self, is_close_out, counterparties, calculators, cube,
                              d, date_index, sample):
        for counterparty, index in counterparties.items():
            for calc in calculators:
                calc.calculate(counterparty, index, self.sim_market, cube, d, date_index,
                               sample, is_close_out)

    @staticmethod
    def _trade_error(trade, message):
        return StructuredTradeError(trade.id, trade.trade_type, SCENARIO_VALUATION, message).log()

    @staticmethod
    def _record(report, error):
        outcome = report.outcomes[error.trade_id]
        if outcome.error is None:
            outcome.error = error
        report.errors.append(error)

    @staticmethod
    def _set_exercisable(enable, trades):
        for trade in trades:
            option = trade.instrument.as_exercisable()
            if option is None:
                continue
            if enable:
                option.enable_exercise()
            else:
                option.disable_exercise()

    def _unregister_floating_legs(self, trade):
        eval_date = getattr(self.sim_market, "evaluation_date", None)
        instrument = trade.instrument
        for leg in trade.legs:
            for cf in leg:
                if not isinstance(cf, FloatingRateCoupon):
                    continue
                cf.unregister_with(cf.index)
                instrument.unregister_with(cf)
                if eval_date is not None:
                    cf.unregister_with(eval_date)
                    instrument.unregister_with(eval_date)

    @staticmethod
    def _fill_dry_run(cube):
        for sample in range(1, cube.samples):
            # positional noise on the first ten samples only
            for date_index in range(cube.num_dates):
                for j in range(cube.num_ids):
                    for depth in range(cube.depth):
                        noise = float(date_index + j + depth + sample) if sample < 10 else 0.0
                        cube.set(cube.get_t0(j, depth) + noise, j, date_index, sample, depth)
