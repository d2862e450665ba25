"""
Results cubes — 4-D containers of simulated values.

A cube is addressed by (id, date, sample, depth): the id axis holds trades (or
counterparties), the date axis the valuation dates of the grid, the sample axis
the Monte Carlo scenarios and the depth axis the calculator-specific result
slots. Next to it sits a 2-D time-zero block addressed by (id, depth).

Dimensions are fixed at construction; ids map to indexes through a stable
name -> index table built once.

Classes:
    NPVCube      — abstract container contract
    InMemoryCube — dense numpy storage
    SparseCube   — per-id blocks allocated on first write
"""

from abc import ABC, abstractmethod

import numpy as np
import pandas as pd


def _check_index(axis, i, n):
    if not 0 <= i < n:
        raise IndexError(f"{axis} index {i} out of range [0, {n})")


class NPVCube(ABC):
    """Abstract results cube with fixed (ids, dates, samples, depth) dimensions."""

    def __init__(self, as_of, ids, dates, samples, depth=1):
        ids = list(ids)
        if len(set(ids)) != len(ids):
            raise ValueError("Cube ids must be unique")
        if samples <= 0:
            raise ValueError(f"Cube needs at least one sample, got {samples}")
        if depth <= 0:
            raise ValueError(f"Cube depth must be positive, got {depth}")
        self._as_of = as_of
        self._ids = ids
        self._id_index = {name: i for i, name in enumerate(ids)}
        self._dates = list(dates)
        self._samples = int(samples)
        self._depth = int(depth)

    # ── Dimensions ──────────────────────────────────────────────────────

    @property
    def as_of(self):
        return self._as_of

    @property
    def num_ids(self):
        return len(self._ids)

    @property
    def num_dates(self):
        return len(self._dates)

    @property
    def samples(self):
        return self._samples

    num_samples = samples

    @property
    def depth(self):
        return self._depth

    @property
    def ids(self):
        return list(self._ids)

    @property
    def dates(self):
        return list(self._dates)

    def ids_and_indexes(self):
        """Stable mapping of id -> index, in index order."""
        return dict(self._id_index)

    def index_of(self, name):
        try:
            return self._id_index[name]
        except KeyError:
            raise KeyError(f"{name!r} is not an id of this cube") from None

    def _check(self, i, date_index, sample, depth):
        _check_index("id", i, self.num_ids)
        _check_index("date", date_index, self.num_dates)
        _check_index("sample", sample, self._samples)
        _check_index("depth", depth, self._depth)

    def _check_t0(self, i, depth):
        _check_index("id", i, self.num_ids)
        _check_index("depth", depth, self._depth)

    # ── Storage ─────────────────────────────────────────────────────────

    @abstractmethod
    def get(self, i, date_index, sample, depth=0):
        """Value stored at (id, date, sample, depth)."""

    @abstractmethod
    def set(self, value, i, date_index, sample, depth=0):
        """Store ``value`` at (id, date, sample, depth)."""

    @abstractmethod
    def get_t0(self, i, depth=0):
        """Time-zero value of id ``i`` at ``depth``."""

    @abstractmethod
    def set_t0(self, value, i, depth=0):
        """Store the time-zero value of id ``i`` at ``depth``."""

    @abstractmethod
    def remove(self, i):
        """Zero every value stored for id ``i``, time-zero values included."""

    @abstractmethod
    def _block(self, i):
        """Array [num_dates, samples, depth] of id ``i`` (zeros if unwritten)."""

    # ── Views ───────────────────────────────────────────────────────────

    def to_frame(self):
        """
        Long-format DataFrame with columns id, date, sample, depth, value.

        One row per cube entry, ordered by id, date, sample and depth.
        """
        shape = (self.num_ids, self.num_dates, self._samples, self._depth)
        if self.num_ids:
            values = np.stack([self._block(i) for i in range(self.num_ids)])
        else:
            values = np.zeros(shape)
        index = pd.MultiIndex.from_product(
            [self._ids, self._dates, range(self._samples), range(self._depth)],
            names=["id", "date", "sample", "depth"],
        )
        frame = pd.DataFrame({"value": values.reshape(-1).astype(np.float64)}, index=index)
        return frame.reset_index()

    def t0_frame(self):
        """DataFrame of time-zero values, one row per id, one column per depth."""
        data = [[self.get_t0(i, d) for d in range(self._depth)] for i in range(self.num_ids)]
        return pd.DataFrame(data, index=pd.Index(self._ids, name="id"),
                            columns=range(self._depth), dtype=np.float64)

    def __repr__(self):
        return (f"{self.__class__.__name__}(ids={self.num_ids}, dates={self.num_dates}, "
                f"samples={self._samples}, depth={self._depth})")


class InMemoryCube(NPVCube):
    """
    Dense cube backed by a single numpy array.

    Parameters
    ----------
    as_of   : date — simulation start date
    ids     : iterable of str — trade or counterparty ids, in index order
    dates   : iterable of date — valuation dates (cube date axis)
    samples : int
    depth   : int
    dtype   : numpy dtype, float64 by default (float32 halves the memory)
    """

    def __init__(self, as_of, ids, dates, samples, depth=1, dtype=np.float64):
        super().__init__(as_of, ids, dates, samples, depth)
        self._data = np.zeros((self.num_ids, self.num_dates, self._samples, self._depth), dtype=dtype)
        self._t0 = np.zeros((self.num_ids, self._depth), dtype=dtype)

    @property
    def data(self):
        """Read-only view of the full [ids, dates, samples, depth] array."""
        view = self._data.view()
        view.flags.writeable = False
        return view

    def get(self, i, date_index, sample, depth=0):
        self._check(i, date_index, sample, depth)
        return float(self._data[i, date_index, sample, depth])

    def set(self, value, i, date_index, sample, depth=0):
        self._check(i, date_index, sample, depth)
        self._data[i, date_index, sample, depth] = value

    def get_t0(self, i, depth=0):
        self._check_t0(i, depth)
        return float(self._t0[i, depth])

    def set_t0(self, value, i, depth=0):
        self._check_t0(i, depth)
        self._t0[i, depth] = value

    def remove(self, i):
        _check_index("id", i, self.num_ids)
        self._data[i] = 0.0
        self._t0[i] = 0.0

    def _block(self, i):
        return self._data[i]


class SparseCube(NPVCube):
    """
    Cube that only allocates storage for ids that have been written to.

    Useful for large portfolios where most trades mature early or are
    filtered out; unwritten entries read as zero.
    """

    def __init__(self, as_of, ids, dates, samples, depth=1, dtype=np.float64):
        super().__init__(as_of, ids, dates, samples, depth)
        self._dtype = dtype
        self._blocks = {}  # id index -> array [dates, samples, depth]
        self._t0 = {}  # id index -> array [depth]

    @property
    def allocated_ids(self):
        return sorted(self._ids[i] for i in self._blocks)

    def get(self, i, date_index, sample, depth=0):
        self._check(i, date_index, sample, depth)
        block = self._blocks.get(i)
        if block is None:
            return 0.0
        return float(block[date_index, sample, depth])

    def set(self, value, i, date_index, sample, depth=0):
        self._check(i, date_index, sample, depth)
        block = self._blocks.get(i)
        if block is None:
            block = np.zeros((self.num_dates, self._samples, self._depth), dtype=self._dtype)
            self._blocks[i] = block
        block[date_index, sample, depth] = value

    def get_t0(self, i, depth=0):
        self._check_t0(i, depth)
        t0 = self._t0.get(i)
        return 0.0 if t0 is None else float(t0[depth])

    def set_t0(self, value, i, depth=0):
        self._check_t0(i, depth)
        t0 = self._t0.setdefault(i, np.zeros(self._depth, dtype=self._dtype))
        t0[depth] = value

    def remove(self, i):
        _check_index("id", i, self.num_ids)
        self._blocks.pop(i, None)
        self._t0.pop(i, None)

    def _block(self, i):
        block = self._blocks.get(i)
        if block is None:
            return np.zeros((self.num_dates, self._samples, self._depth), dtype=self._dtype)
        return block
