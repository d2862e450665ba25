"""
Observation modes for the simulation market's dependency graph.

The mode chooses how changed market inputs reach the nodes that depend on them.
It is a performance knob only: every mode must produce identical cube values.
"""

from enum import Enum


class ObservationMode(Enum):
    NONE = "none"              # propagate every change immediately
    DISABLE = "disable"        # never propagate, force recalculation instead
    DEFER = "defer"            # queue changes, propagate once per market update
    UNREGISTER = "unregister"  # detach floating legs after T0, refresh explicitly

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown observation mode {value!r}, expected one of: {valid}")

    @property
    def forces_recalculation(self):
        return self is ObservationMode.DISABLE

    @property
    def refreshes_instruments(self):
        return self in (ObservationMode.DISABLE, ObservationMode.UNREGISTER)
