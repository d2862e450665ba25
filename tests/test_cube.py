"""Tests for the results cubes."""

from datetime import date

import numpy as np
import pytest

from revalcube.cube import InMemoryCube, SparseCube

AS_OF = date(2026, 1, 5)
DATES = [date(2026, 2, 5), date(2026, 4, 5), date(2027, 1, 5)]


@pytest.fixture(params=[InMemoryCube, SparseCube])
def cube_cls(request):
    return request.param


class TestDimensions:
    def test_dimensions(self, cube_cls):
        cube = cube_cls(AS_OF, ["A", "B"], DATES, samples=5, depth=2)
        assert cube.num_ids == 2
        assert cube.num_dates == 3
        assert cube.samples == 5
        assert cube.num_samples == 5
        assert cube.depth == 2
        assert cube.as_of == AS_OF
        assert cube.dates == DATES

    def test_ids_and_indexes_follow_construction_order(self, cube_cls):
        cube = cube_cls(AS_OF, ["Z", "A", "M"], DATES, samples=1)
        assert cube.ids_and_indexes() == {"Z": 0, "A": 1, "M": 2}
        assert list(cube.ids_and_indexes()) == ["Z", "A", "M"]
        assert cube.index_of("M") == 2

    def test_unknown_id(self, cube_cls):
        cube = cube_cls(AS_OF, ["A"], DATES, samples=1)
        with pytest.raises(KeyError):
            cube.index_of("B")

    def test_duplicate_ids_rejected(self, cube_cls):
        with pytest.raises(ValueError, match="unique"):
            cube_cls(AS_OF, ["A", "A"], DATES, samples=1)

    @pytest.mark.parametrize("samples, depth", [(0, 1), (1, 0), (-1, 1)])
    def test_invalid_sizes_rejected(self, cube_cls, samples, depth):
        with pytest.raises(ValueError):
            cube_cls(AS_OF, ["A"], DATES, samples=samples, depth=depth)


class TestStorage:
    def test_set_and_get(self, cube_cls):
        cube = cube_cls(AS_OF, ["A", "B"], DATES, samples=4, depth=2)
        cube.set(1.5, 1, 2, 3, 1)
        assert cube.get(1, 2, 3, 1) == 1.5
        assert cube.get(1, 2, 3, 0) == 0.0
        assert cube.get(0, 0, 0) == 0.0

    def test_t0_values(self, cube_cls):
        cube = cube_cls(AS_OF, ["A", "B"], DATES, samples=1, depth=2)
        cube.set_t0(42.0, 0)
        cube.set_t0(-7.0, 1, 1)
        assert cube.get_t0(0) == 42.0
        assert cube.get_t0(1, 1) == -7.0
        assert cube.get_t0(1) == 0.0

    @pytest.mark.parametrize("coords", [(2, 0, 0, 0), (0, 3, 0, 0), (0, 0, 4, 0), (0, 0, 0, 2), (-1, 0, 0, 0)])
    def test_out_of_range_raises(self, cube_cls, coords):
        cube = cube_cls(AS_OF, ["A", "B"], DATES, samples=4, depth=2)
        with pytest.raises(IndexError):
            cube.get(*coords)
        with pytest.raises(IndexError):
            cube.set(1.0, *coords)

    def test_t0_out_of_range_raises(self, cube_cls):
        cube = cube_cls(AS_OF, ["A"], DATES, samples=1)
        with pytest.raises(IndexError):
            cube.set_t0(1.0, 1)
        with pytest.raises(IndexError):
            cube.get_t0(0, 1)

    def test_remove_zeroes_entity(self, cube_cls):
        cube = cube_cls(AS_OF, ["A", "B"], DATES, samples=2)
        for i in range(2):
            cube.set_t0(10.0 + i, i)
            for d in range(3):
                for s in range(2):
                    cube.set(1.0 + i, i, d, s)
        cube.remove(0)
        assert cube.get_t0(0) == 0.0
        assert all(cube.get(0, d, s) == 0.0 for d in range(3) for s in range(2))
        assert cube.get_t0(1) == 11.0
        assert cube.get(1, 2, 1) == 2.0

    def test_remove_out_of_range(self, cube_cls):
        cube = cube_cls(AS_OF, ["A"], DATES, samples=1)
        with pytest.raises(IndexError):
            cube.remove(3)


class TestInMemoryCube:
    def test_data_view_is_read_only(self):
        cube = InMemoryCube(AS_OF, ["A"], DATES, samples=2)
        cube.set(3.0, 0, 1, 1)
        data = cube.data
        assert data.shape == (1, 3, 2, 1)
        assert data[0, 1, 1, 0] == 3.0
        with pytest.raises(ValueError):
            data[0, 0, 0, 0] = 1.0

    def test_single_precision(self):
        cube = InMemoryCube(AS_OF, ["A"], DATES, samples=1, dtype=np.float32)
        cube.set(0.1, 0, 0, 0)
        assert cube.data.dtype == np.float32
        assert cube.get(0, 0, 0) == pytest.approx(0.1, rel=1e-6)


class TestSparseCube:
    def test_allocates_on_first_write(self):
        cube = SparseCube(AS_OF, ["A", "B", "C"], DATES, samples=2)
        assert cube.allocated_ids == []
        cube.set(1.0, 2, 0, 0)
        assert cube.allocated_ids == ["C"]
        cube.remove(2)
        assert cube.allocated_ids == []


class TestFrames:
    def test_to_frame_long_format(self, cube_cls):
        cube = cube_cls(AS_OF, ["A", "B"], DATES, samples=2, depth=2)
        cube.set(5.0, 1, 2, 1, 1)
        frame = cube.to_frame()
        assert list(frame.columns) == ["id", "date", "sample", "depth", "value"]
        assert len(frame) == 2 * 3 * 2 * 2
        row = frame[(frame["id"] == "B") & (frame["date"] == DATES[2])
                    & (frame["sample"] == 1) & (frame["depth"] == 1)]
        assert row["value"].tolist() == [5.0]
        assert frame["value"].sum() == 5.0

    def test_t0_frame(self, cube_cls):
        cube = cube_cls(AS_OF, ["A", "B"], DATES, samples=1, depth=2)
        cube.set_t0(1.0, 0, 0)
        cube.set_t0(2.0, 1, 1)
        frame = cube.t0_frame()
        assert frame.loc["A", 0] == 1.0
        assert frame.loc["B", 1] == 2.0
        assert frame.loc["B", 0] == 0.0
