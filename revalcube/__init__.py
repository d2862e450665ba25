"""
revalcube — Monte Carlo portfolio revaluation into results cubes.

Components:
- DateGrid: simulation dates with valuation / close-out flags
- Dagger: reactive dependency graph behind the simulation market
- SimMarket: scenario market, fixing manager, aggregation scenario data
- Scenario generators: correlated GBM paths, static replay
- Instruments: bonds, swaps, equity options, trades and portfolios
- Model builders: recalibrated per scenario
- Cubes: dense and sparse 4-D results containers
- Calculators: NPV, cashflow, MPOR, survival probability
- ValuationEngine: the sample x date x trade revaluation loop
"""

from .dagger import Node, Quote, DependencyGraph, CycleError
from .errors import (
    PreconditionError,
    MissingMarketDataError,
    MissingFixingError,
    MarketBusyError,
    StructuredTradeError,
)
from .observation import ObservationMode
from .dategrid import DateGrid, parse_tenor, advance
from .config import SimulationConfig
from .scenario import (
    Scenario,
    RiskFactor,
    ScenarioGenerator,
    GbmScenarioGenerator,
    StaticScenarioGenerator,
)
from .simmarket import (
    ScenarioMarket,
    SimMarket,
    FixingManager,
    AggregationScenarioData,
)
from .models import ModelBuilder, BlackScholesModel, BlackScholesModelBuilder
from .instruments import (
    InterestRateIndex,
    FixedRateCoupon,
    FloatingRateCoupon,
    InstrumentWrapper,
    OptionWrapper,
    FixedRateBond,
    Swap,
    EquityOption,
    Trade,
    Portfolio,
)
from .cube import NPVCube, InMemoryCube, SparseCube
from .calculators import (
    ValuationCalculator,
    CounterpartyCalculator,
    NPVCalculator,
    CashflowCalculator,
    MPORCalculator,
    SurvivalProbabilityCalculator,
)
from .progress import (
    ProgressIndicator,
    ProgressReporter,
    CallbackProgress,
    ProgressLog,
    RichProgressBar,
)
from .engine import ValuationEngine, CubeBuildReport, TradeOutcome

__all__ = [
    "Node", "Quote", "DependencyGraph", "CycleError",
    "PreconditionError", "MissingMarketDataError", "MissingFixingError",
    "MarketBusyError", "StructuredTradeError",
    "ObservationMode",
    "DateGrid", "parse_tenor", "advance",
    "SimulationConfig",
    "Scenario", "RiskFactor", "ScenarioGenerator", "GbmScenarioGenerator",
    "StaticScenarioGenerator",
    "ScenarioMarket", "SimMarket", "FixingManager", "AggregationScenarioData",
    "ModelBuilder", "BlackScholesModel", "BlackScholesModelBuilder",
    "InterestRateIndex", "FixedRateCoupon", "FloatingRateCoupon",
    "InstrumentWrapper", "OptionWrapper", "FixedRateBond", "Swap", "EquityOption",
    "Trade", "Portfolio",
    "NPVCube", "InMemoryCube", "SparseCube",
    "ValuationCalculator", "CounterpartyCalculator", "NPVCalculator",
    "CashflowCalculator", "MPORCalculator", "SurvivalProbabilityCalculator",
    "ProgressIndicator", "ProgressReporter", "CallbackProgress", "ProgressLog",
    "RichProgressBar",
    "ValuationEngine", "CubeBuildReport", "TradeOutcome",
]
