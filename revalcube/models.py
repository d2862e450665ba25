"""
Model builders — per-currency / per-underlying models recalibrated during the
simulation.

A builder is a node of the market's dependency graph: when one of its input
quotes changes it is marked dirty and recalibrate() calibrates again. With
notifications disabled the engine calls force_recalculate() first so a changed
input is never missed.
"""

from abc import abstractmethod
from dataclasses import dataclass
import logging

from .dagger import Node

logger = logging.getLogger(__name__)


class ModelBuilder(Node):
    """Base class for recalibrating model builders."""

    def __init__(self, name):
        super().__init__(name)
        self.calibration_count = 0

    @abstractmethod
    def calibrate(self):
        """Return a freshly calibrated model."""

    def compute(self):
        self._value = self.calibrate()
        self.calibration_count += 1

    def recalibrate(self):
        """Calibrate if any input changed since the last calibration."""
        if self._dirty:
            _ = self.value

    def force_recalculate(self):
        """Mark the builder dirty so the next recalibrate() calibrates."""
        self.mark_dirty()

    @property
    def model(self):
        return self.value


@dataclass(frozen=True)
class BlackScholesModel:
    volatility: float


class BlackScholesModelBuilder(ModelBuilder):
    """Black-Scholes model calibrated to the EQVOL/<underlying> quote."""

    def __init__(self, underlying, market):
        super().__init__(f"MODEL/BS/{underlying}")
        self.underlying = underlying
        self._vol = market.quote(f"EQVOL/{underlying}")
        market.graph.register(self)

    @property
    def underliers(self):
        return [self._vol]

    def calibrate(self):
        sigma = self._vol.value
        if sigma <= 0:
            raise ValueError(f"Non-positive volatility {sigma} for {self.underlying}")
        logger.debug(f"Calibrated {self.name}: sigma={sigma:.4f}")
        return BlackScholesModel(volatility=sigma)
