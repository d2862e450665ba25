"""
SimulationConfig — parameters of one cube build.
"""

from dataclasses import dataclass

from .dategrid import DateGrid
from .observation import ObservationMode


@dataclass
class SimulationConfig:
    """Configuration for a revaluation run."""
    samples: int = 100
    seed: int = 42
    base_currency: str = "EUR"
    grid: str = "1M,3M,6M,1Y,2Y"  # comma separated tenors from today
    mpor_days: int = None  # close-out lag in calendar days, None for no close-out dates
    observation_mode: ObservationMode = ObservationMode.NONE
    mpor_sticky_date: bool = False
    dry_run: bool = False
    depth: int = 1

    def __post_init__(self):
        if self.samples <= 0:
            raise ValueError(f"samples must be positive, got {self.samples}")
        if self.depth <= 0:
            raise ValueError(f"depth must be positive, got {self.depth}")
        if self.mpor_days is not None and self.mpor_days <= 0:
            raise ValueError(f"mpor_days must be positive, got {self.mpor_days}")
        if not self.base_currency:
            raise ValueError("base_currency must be set")
        self.observation_mode = ObservationMode.parse(self.observation_mode)

    @property
    def tenors(self):
        return [t.strip() for t in self.grid.split(",") if t.strip()]

    def build_date_grid(self, today):
        return DateGrid.from_tenors(today, self.tenors, mpor_days=self.mpor_days)
