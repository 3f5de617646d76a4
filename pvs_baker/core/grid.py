"""
Uniform spatial grid over the scene bounds.

The grid splits the (fitted) world bounds into countX × countY × countZ
cells of identical size. Every cell is addressed either by its integer
triple (x, y, z) or by the linear index used in the visibility store:

    cell_index = z * countX * countY + y * countX + x

Two responsibilities live here:
    fit_world_bounds()  the caller's expansion policy. Rounds the enclosing
                        box up to whole cells so no object is cropped.
    SpatialGrid         pure index arithmetic over an already fitted box.
                        Counts are truncated, never rounded up.

A grid is built once per bake run and never changes while the run is active.
"""

import math

import numpy as np

from pvs_baker.core.bounds import Bounds
from pvs_baker.core.errors import ConfigurationError
from pvs_baker.core.settings import MIN_CELL_SIZE_SQR


# Absorbs float error when a fitted size divides back into a whole number of
# cells (e.g. 30.0 / 10.0 evaluating to 2.9999999999999996).
_COUNT_TOLERANCE = 1e-6


def validate_cell_size(cell_size) -> np.ndarray:
    """
    Return cell_size as a float64 vector, rejecting degenerate components.

    Raises:
        ConfigurationError: If any component is not positive or has squared
                            magnitude below 0.01.
    """
    try:
        size = np.asarray(cell_size, dtype=np.float64).reshape(3)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Cell size must have three numeric components: {e}") from e
    if np.any(~np.isfinite(size) | (size <= 0.0) | (size * size < MIN_CELL_SIZE_SQR)):
        raise ConfigurationError(
            f"Cell size {size.tolist()} is too small or not positive. Each component must be "
            f"at least {math.sqrt(MIN_CELL_SIZE_SQR):g} world units."
        )
    return size


def cell_counts(world_bounds: Bounds, cell_size) -> tuple[int, int, int]:
    """
    Number of whole cells along each axis of world_bounds.

    Truncates: a world box that is not a whole multiple of the cell size
    loses its partial cells. Use fit_world_bounds() first to avoid that.
    """
    size = validate_cell_size(cell_size)
    counts = np.floor(world_bounds.size / size + _COUNT_TOLERANCE).astype(int)
    return int(counts[0]), int(counts[1]), int(counts[2])


def fit_world_bounds(bounds: Bounds, cell_size) -> Bounds:
    """
    Expand bounds so each axis spans a whole number of cells.

    The center is kept; sizes are rounded up (never down) and every axis gets
    at least one cell, so flat scenes still produce a usable grid.
    """
    size = validate_cell_size(cell_size)
    counts = np.maximum(1, np.ceil(bounds.size / size - _COUNT_TOLERANCE))
    return Bounds.from_center_size(bounds.center, counts * size)


class SpatialGrid:
    """
    Index arithmetic for the uniform cell lattice of one bake run.

    Attributes:
        world_bounds: Fitted world box the lattice covers.
        cell_size:    float64 (3,) edge lengths of one cell.
        counts:       (countX, countY, countZ).
        total_cell_count: countX * countY * countZ.
    """

    def __init__(self, world_bounds: Bounds, cell_size):
        self.world_bounds = world_bounds
        self.cell_size = validate_cell_size(cell_size)
        self.counts = cell_counts(world_bounds, self.cell_size)
        self.total_cell_count = self.counts[0] * self.counts[1] * self.counts[2]

    @property
    def count_x(self) -> int:
        return self.counts[0]

    @property
    def count_y(self) -> int:
        return self.counts[1]

    @property
    def count_z(self) -> int:
        return self.counts[2]

    def cell_index(self, x: int, y: int, z: int) -> int:
        return z * self.count_x * self.count_y + y * self.count_x + x

    def cell_bounds(self, x: int, y: int, z: int) -> Bounds:
        center = self.world_bounds.min + (np.array([x, y, z], dtype=np.float64) + 0.5) * self.cell_size
        return Bounds.from_center_size(center, self.cell_size)

    def cells(self):
        """Yield every (x, y, z) with x outermost, then y, then z."""
        for x in range(self.count_x):
            for y in range(self.count_y):
                for z in range(self.count_z):
                    yield x, y, z

    def cell_containing(self, point) -> tuple[int, int, int] | None:
        """Return the cell holding a world-space point, or None outside the grid."""
        p = np.asarray(point, dtype=np.float64).reshape(3)
        if not self.world_bounds.contains(p):
            return None
        index = np.floor((p - self.world_bounds.min) / self.cell_size).astype(int)
        # Points on the max face belong to the last cell.
        index = np.minimum(index, np.array(self.counts) - 1)
        return int(index[0]), int(index[1]), int(index[2])

    def __repr__(self) -> str:
        return (f"SpatialGrid(counts={self.counts}, cell_size={self.cell_size.tolist()}, "
                f"world_bounds={self.world_bounds!r})")
