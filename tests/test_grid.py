# tests/test_grid.py

import numpy as np
import pytest

from pvs_baker.core.bounds import Bounds
from pvs_baker.core.errors import ConfigurationError
from pvs_baker.core.grid import SpatialGrid, cell_counts, fit_world_bounds, validate_cell_size


def _grid(lo, hi, cell):
    return SpatialGrid(Bounds.from_min_max(lo, hi), cell)


def test_counts_truncate():
    world = Bounds.from_min_max((0, 0, 0), (25, 10, 39.9))
    assert cell_counts(world, (10, 10, 10)) == (2, 1, 3)


def test_counts_absorb_float_error():
    world = Bounds.from_min_max((0, 0, 0), (0.3, 0.3, 0.3))
    assert cell_counts(world, (0.1, 0.1, 0.1)) == (3, 3, 3)


def test_cell_index_layout():
    grid = _grid((0, 0, 0), (20, 30, 40), (10, 10, 10))
    assert grid.counts == (2, 3, 4)
    assert grid.total_cell_count == 24
    assert grid.cell_index(0, 0, 0) == 0
    assert grid.cell_index(1, 0, 0) == 1
    assert grid.cell_index(0, 1, 0) == 2
    assert grid.cell_index(0, 0, 1) == 6
    assert grid.cell_index(1, 2, 3) == 3 * 6 + 2 * 2 + 1

    indices = sorted(grid.cell_index(*c) for c in grid.cells())
    assert indices == list(range(24))


def test_cells_iterate_x_outermost():
    grid = _grid((0, 0, 0), (20, 20, 20), (10, 10, 10))
    assert list(grid.cells())[:3] == [(0, 0, 0), (0, 0, 1), (0, 1, 0)]


def test_cell_bounds():
    grid = _grid((-10, 0, 0), (10, 10, 10), (10, 10, 10))
    cell = grid.cell_bounds(1, 0, 0)
    assert np.allclose(cell.min, (0, 0, 0))
    assert np.allclose(cell.max, (10, 10, 10))


@pytest.mark.parametrize("cell", [
    (0, 10, 10), (10, 0.05, 10), (10, 10, -0.01), (10, 10, -10), (float("nan"), 10, 10), (10, 10),
])
def test_invalid_cell_sizes_rejected(cell):
    with pytest.raises(ConfigurationError):
        validate_cell_size(cell)


def test_cell_component_at_limit_accepted():
    validate_cell_size((0.1, 0.1, 0.1))


def test_fit_world_bounds_rounds_up_and_keeps_center():
    box = Bounds.from_min_max((0, 0, 0), (12, 1, 30))
    fitted = fit_world_bounds(box, (10, 10, 10))
    assert np.allclose(fitted.size, (20, 10, 30))
    assert np.allclose(fitted.center, box.center)
    assert cell_counts(fitted, (10, 10, 10)) == (2, 1, 3)


def test_cell_containing():
    grid = _grid((0, 0, 0), (20, 10, 10), (10, 10, 10))
    assert grid.cell_containing((5, 5, 5)) == (0, 0, 0)
    assert grid.cell_containing((15, 5, 5)) == (1, 0, 0)
    assert grid.cell_containing((20, 10, 10)) == (1, 0, 0)
    assert grid.cell_containing((21, 5, 5)) is None
