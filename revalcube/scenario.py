"""
Scenario generation for the simulation market.

A scenario generator hands out one Scenario per grid date; the first grid date
of each pass starts a new Monte Carlo sample. Generators are deterministic for
a given seed and restart from the beginning on reset().

Classes:
    Scenario               — simulated quote values at one date
    RiskFactor             — specification of one simulated quote
    GbmScenarioGenerator   — correlated lognormal / normal paths (numpy)
    StaticScenarioGenerator — replays fixed paths
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import numpy as np

LOGNORMAL = "lognormal"
NORMAL = "normal"


@dataclass
class Scenario:
    date: object
    values: dict = field(default_factory=dict)  # quote name -> value
    label: str = ""


@dataclass
class RiskFactor:
    """One simulated quote: spot-like factors are lognormal, rates normal."""
    name: str
    initial: float
    volatility: float
    drift: float = 0.0
    kind: str = LOGNORMAL

    def __post_init__(self):
        if self.kind not in (LOGNORMAL, NORMAL):
            raise ValueError(f"Unknown risk factor kind {self.kind!r}")
        if self.volatility < 0:
            raise ValueError(f"Negative volatility for {self.name}")


class ScenarioGenerator(ABC):

    @abstractmethod
    def next(self, d):
        """Return the Scenario for grid date ``d``."""

    @abstractmethod
    def reset(self):
        """Restart the generator at its first sample."""


class GbmScenarioGenerator(ScenarioGenerator):
    """
    Correlated path simulation over the date grid.

    lognormal: X_t = X_{t-1} * exp((mu - 0.5*sigma^2)*dt + sigma*sqrt(dt)*L@Z)
    normal:    X_t = X_{t-1} + mu*dt + sigma*sqrt(dt)*L@Z

    A whole path is drawn when the first grid date is requested, so samples
    are reproducible from the seed alone.
    """

    def __init__(self, today, grid, factors, correlation=None, seed=42):
        self.today = today
        self.grid = grid
        self.factors = list(factors)
        self.seed = seed
        n = len(self.factors)
        if n == 0:
            raise ValueError("GbmScenarioGenerator needs at least one risk factor")

        corr = np.eye(n) if correlation is None else np.asarray(correlation, dtype=np.float64)
        if corr.shape != (n, n):
            raise ValueError(f"Correlation matrix must be {n}x{n}, got {corr.shape}")
        # Regularize for numerical stability
        self._L = np.linalg.cholesky(corr + 1e-12 * np.eye(n))

        times = grid.times(today)
        self._dt = np.diff(np.concatenate([[0.0], times]))
        if np.any(self._dt < 0):
            raise ValueError("Date grid starts before today")

        self._x0 = np.array([f.initial for f in self.factors], dtype=np.float64)
        self._sigma = np.array([f.volatility for f in self.factors], dtype=np.float64)
        self._mu = np.array([f.drift for f in self.factors], dtype=np.float64)
        self._lognormal = np.array([f.kind == LOGNORMAL for f in self.factors])
        self.reset()

    def reset(self):
        self._rng = np.random.default_rng(self.seed)
        self._path = None
        self._sample = -1

    @property
    def sample(self):
        return self._sample

    def _simulate_path(self):
        n_dates = len(self._dt)
        Z = self._rng.standard_normal((n_dates, len(self.factors)))
        # Correlate: Z_corr = (L @ Z.T).T
        Z_corr = (self._L @ Z.T).T

        dt = self._dt[:, np.newaxis]
        diffusion = self._sigma * np.sqrt(dt) * Z_corr
        log_steps = (self._mu - 0.5 * self._sigma ** 2) * dt + diffusion
        abs_steps = self._mu * dt + diffusion

        steps = np.where(self._lognormal, log_steps, abs_steps)
        cum = np.cumsum(steps, axis=0)
        return np.where(self._lognormal, self._x0 * np.exp(cum), self._x0 + cum)

    def next(self, d):
        i = self.grid.index(d)
        if i == 0 or self._path is None:
            self._path = self._simulate_path()
            self._sample += 1
        values = {f.name: float(self._path[i, k]) for k, f in enumerate(self.factors)}
        return Scenario(d, values, label=f"sample {self._sample}")


class StaticScenarioGenerator(ScenarioGenerator):
    """
    Replays fixed paths: ``paths[sample][grid_index]`` is a dict of quote values.

    Samples beyond the supplied paths wrap around.
    """

    def __init__(self, grid, paths):
        if not paths:
            raise ValueError("StaticScenarioGenerator needs at least one path")
        for p in paths:
            if len(p) != len(grid):
                raise ValueError(f"Each path needs {len(grid)} scenarios, got {len(p)}")
        self.grid = grid
        self.paths = paths
        self.reset()

    def reset(self):
        self._sample = -1

    def next(self, d):
        i = self.grid.index(d)
        if i == 0 or self._sample < 0:
            self._sample += 1
        values = dict(self.paths[self._sample % len(self.paths)][i])
        return Scenario(d, values, label=f"sample {self._sample}")
