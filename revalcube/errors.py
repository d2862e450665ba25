"""
Errors raised by the revaluation engine and the structured trade error record.

Fatal contract violations raise PreconditionError and abort the whole build.
Failures of a single trade are caught by the engine, reported through
StructuredTradeError.log() and never re-raised.
"""

import json
import logging
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

SCENARIO_VALUATION = "ScenarioValuation"


class PreconditionError(ValueError):
    """A fatal violation of the engine's input contract."""


class MissingMarketDataError(LookupError):
    """A quote or curve required for pricing is not present in the market."""


class MissingFixingError(MissingMarketDataError):
    """A historical index fixing required for pricing is missing."""


class MarketBusyError(RuntimeError):
    """The scenario market is already in use by another cube build."""


def require(condition, message):
    """Raise PreconditionError with ``message`` unless ``condition`` holds."""
    if not condition:
        raise PreconditionError(message)


@dataclass(frozen=True)
class StructuredTradeError:
    """A trade-level failure, identified by trade, type and processing stage."""
    trade_id: str
    trade_type: str
    stage: str
    message: str

    def to_dict(self):
        return {"type": "Trade", **asdict(self)}

    def log(self):
        logger.error(f"StructuredErrorMessage {json.dumps(self.to_dict())}")
        return self

    def __str__(self):
        return f"[{self.stage}] {self.trade_type} {self.trade_id}: {self.message}"
