#!/usr/bin/env python3
"""
End-to-end demo of revalcube.

Walks through a complete exposure simulation:
1. Build today's simulation market and a correlated scenario generator
2. Book a small multi-currency portfolio (bond, swap, American option)
3. Run an MPOR-sticky cube build with a counterparty cube
4. Print expected exposure at default and close-out dates, and errors

Usage:
    python demo.py [--samples 500] [--mode none|disable|defer|unregister] [--dry-run]
"""

import argparse
import logging
from datetime import date, timedelta

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.table import Table as RichTable

from revalcube import (
    AggregationScenarioData,
    BlackScholesModelBuilder,
    EquityOption,
    FixedRateBond,
    GbmScenarioGenerator,
    InMemoryCube,
    InterestRateIndex,
    MPORCalculator,
    NPVCalculator,
    Portfolio,
    RichProgressBar,
    RiskFactor,
    SimMarket,
    SimulationConfig,
    SurvivalProbabilityCalculator,
    Swap,
    Trade,
    ValuationEngine,
    advance,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("demo")

TODAY = date(2026, 1, 5)

QUOTES = {
    "IR/EUR": 0.025,
    "IR/USD": 0.040,
    "FX/USDEUR": 0.92,
    "EQ/SX5E": 4800.0,
    "EQVOL/SX5E": 0.20,
    "IDX/EURIBOR6M": 0.028,
    "CR/ACME": 0.015,
    "CR/GLOBEX": 0.030,
    "CR/BANK": 0.010,
}

RISK_FACTORS = [
    RiskFactor("IR/EUR", 0.025, 0.007, kind="normal"),
    RiskFactor("IR/USD", 0.040, 0.009, kind="normal"),
    RiskFactor("IDX/EURIBOR6M", 0.028, 0.008, kind="normal"),
    RiskFactor("FX/USDEUR", 0.92, 0.08),
    RiskFactor("EQ/SX5E", 4800.0, 0.20),
]

CORRELATION = [
    [1.0, 0.6, 0.9, 0.1, -0.2],
    [0.6, 1.0, 0.5, -0.3, -0.1],
    [0.9, 0.5, 1.0, 0.1, -0.2],
    [0.1, -0.3, 0.1, 1.0, 0.2],
    [-0.2, -0.1, -0.2, 0.2, 1.0],
]


def build_portfolio(market, model_builder):
    euribor = InterestRateIndex("EURIBOR6M", market, "EUR")
    trades = [
        Trade("BOND_USD_3Y", "Bond",
              FixedRateBond("BOND_USD_3Y", market, "USD", face=1_000_000, coupon_rate=0.045,
                            maturity=advance(TODAY, "3Y")),
              "USD", counterparty="ACME"),
        Trade("IRS_EUR_5Y", "Swap",
              Swap("IRS_EUR_5Y", market, "EUR", euribor, nominal=10_000_000, fixed_rate=0.027,
                   maturity=advance(TODAY, "5Y"), payer=True),
              "EUR", counterparty="GLOBEX"),
        Trade("SX5E_PUT_18M", "EquityOption",
              EquityOption("SX5E_PUT_18M", market, "SX5E", "EUR", strike=4700.0,
                           expiry=advance(TODAY, "18M"), is_call=False, american=True,
                           quantity=100, model_builder=model_builder),
              "EUR", counterparty="ACME"),
        # seasoned swap without its historical fixing: reported and zeroed
        Trade("IRS_EUR_SEASONED", "Swap",
              Swap("IRS_EUR_SEASONED", market, "EUR", euribor, nominal=5_000_000, fixed_rate=0.022,
                   maturity=advance(TODAY, "2Y"), start_date=TODAY - timedelta(days=90),
                   payer=False),
              "EUR", counterparty="GLOBEX"),
    ]
    return Portfolio(trades)


def render_exposure(console, cube, title, depth):
    frame = cube.to_frame()
    frame = frame[frame["depth"] == depth]
    by_sample = frame.groupby(["date", "sample"])["value"].sum()
    exposure = by_sample.clip(lower=0.0).groupby(level="date")
    ee = exposure.mean()
    pfe = exposure.quantile(0.95)

    tbl = RichTable(title=title, title_style="bold white", header_style="bold cyan")
    tbl.add_column("Date")
    tbl.add_column("EE (EUR)", justify="right")
    tbl.add_column("PFE 95% (EUR)", justify="right")
    for d in ee.index:
        tbl.add_row(str(d), f"{ee[d]:,.0f}", f"{pfe[d]:,.0f}")
    console.print(tbl)


def render_survival(console, cube, dates):
    # counterparty results are written at valuation date slots
    tbl = RichTable(title="Survival Probabilities (sample 0)", header_style="bold cyan")
    tbl.add_column("Counterparty")
    for d in dates:
        tbl.add_column(str(d), justify="right")
    for name, i in cube.ids_and_indexes().items():
        tbl.add_row(name, *[f"{cube.get(i, j, 0):.4f}" for j in range(len(dates))])
    console.print(tbl)


def render_report(console, report):
    tbl = RichTable(title="Trade Outcomes", header_style="bold cyan")
    tbl.add_column("Trade")
    tbl.add_column("Type")
    tbl.add_column("Status")
    tbl.add_column("Error")
    for tid, outcome in report.outcomes.items():
        status = "[green]OK[/green]" if outcome.ok else "[red]FAILED[/red]"
        tbl.add_row(tid, outcome.trade_type, status, outcome.error.message if outcome.error else "")
    console.print(tbl)
    console.print(Panel(report.summary(), title="Cube Build", border_style="cyan"))


def main():
    parser = argparse.ArgumentParser(description="revalcube exposure simulation demo")
    parser.add_argument("--samples", type=int, default=500)
    parser.add_argument("--mode", default="none")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    console = Console(width=110)
    config = SimulationConfig(samples=args.samples, grid="1M,3M,6M,1Y,18M,2Y,3Y,4Y,5Y",
                              mpor_days=14, observation_mode=args.mode,
                              mpor_sticky_date=True, dry_run=args.dry_run, depth=2)

    # ── 1. Market and scenarios ─────────────────────────────────────────
    grid = config.build_date_grid(TODAY)
    log.info(f"Date grid: {grid}")
    generator = GbmScenarioGenerator(TODAY, grid, RISK_FACTORS, CORRELATION, seed=config.seed)
    asd = AggregationScenarioData(len(grid.valuation_dates), config.samples)
    market = SimMarket(TODAY, QUOTES, generator, base_currency=config.base_currency,
                       observation_mode=config.observation_mode, aggregation_data=asd)

    # ── 2. Portfolio ────────────────────────────────────────────────────
    sx5e_model = BlackScholesModelBuilder("SX5E", market)
    portfolio = build_portfolio(market, sx5e_model)
    log.info(f"Booked {portfolio}")

    # ── 3. Cubes and engine ─────────────────────────────────────────────
    cube = InMemoryCube(TODAY, portfolio.ids(), grid.valuation_dates, config.samples, depth=config.depth)
    cpty_ids = portfolio.counterparties() + ["BANK"]
    cpty_cube = InMemoryCube(TODAY, cpty_ids, grid.dates, config.samples)

    engine = ValuationEngine(TODAY, grid, market, model_builders=[("EUR", sx5e_model)],
                             observation_mode=config.observation_mode)
    engine.register_progress_indicator(RichProgressBar(console=console))

    calculators = [MPORCalculator(NPVCalculator(config.base_currency), default_index=0, close_out_index=1)]
    report = engine.build_cube(portfolio, cube, calculators,
                               mpor_sticky_date=config.mpor_sticky_date,
                               output_cpty_cube=cpty_cube,
                               cpty_calculators=[SurvivalProbabilityCalculator()],
                               dry_run=config.dry_run)

    # ── 4. Results ──────────────────────────────────────────────────────
    render_report(console, report)
    render_exposure(console, cube, "Exposure at Default Date", depth=0)
    render_exposure(console, cube, "Exposure at Close-Out Date", depth=1)
    render_survival(console, cpty_cube, grid.valuation_dates)
    numeraire = np.array([[asd.get(j, s, "numeraire") for s in range(report.samples)]
                          for j in range(asd.num_dates)])
    log.info(f"Mean numeraire at last date: {numeraire[-1].mean():.4f}")


if __name__ == "__main__":
    main()
