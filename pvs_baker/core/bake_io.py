"""
Persisted bake output.

The packed visibility words are meaningless on their own: the bit layout
depends on the exact world bounds, cell size and object ordering used to
produce them. save_bake() therefore writes all of them together into a
single numpy .npz archive:

    words          uint32 packed visibility bits
    world_min/max  float64 (3,) fitted world bounds
    cell_size      float64 (3,)
    counts         int64 (3,) cells per axis
    ray_step       float64 (2,)
    object_names   JSON list of target names, in store order
    complete       bool, False for a resumable bake saved between batches
    format_version int

load_bake() returns a BakedVisibility. Before trusting it against a scene,
call matches(): any change in object count, ordering, cell size or world
bounds invalidates every previously baked bit.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from pvs_baker.core.bounds import Bounds
from pvs_baker.core.errors import ConfigurationError
from pvs_baker.core.grid import SpatialGrid
from pvs_baker.core.visibility_store import VisibilityStore

logger = logging.getLogger(__name__)


FORMAT_VERSION = 1


@dataclass
class BakedVisibility:
    """A loaded bake: grid parameters, object ordering and the bit store."""
    grid: SpatialGrid
    store: VisibilityStore
    object_names: list[str]
    ray_step: tuple[float, float]
    complete: bool = True

    def matches(self, grid: SpatialGrid, object_names) -> bool:
        """True if this bake was produced with the same grid and object ordering."""
        return (
            list(object_names) == self.object_names
            and grid.counts == self.grid.counts
            and np.allclose(grid.cell_size, self.grid.cell_size)
            and np.allclose(grid.world_bounds.min, self.grid.world_bounds.min)
            and np.allclose(grid.world_bounds.max, self.grid.world_bounds.max)
        )

    def object_index(self, name: str) -> int:
        try:
            return self.object_names.index(name)
        except ValueError:
            raise KeyError(f"Object {name!r} is not part of this bake") from None

    def is_visible(self, obj, cell: tuple[int, int, int]) -> bool:
        """Read one bit; obj is an object index or name, cell an (x, y, z) triple."""
        index = self.object_index(obj) if isinstance(obj, str) else int(obj)
        return self.store.get(index, self.grid.cell_index(*cell))

    def visible_from_point(self, point) -> list[str]:
        """Names of objects flagged visible from the cell containing point (empty outside the grid)."""
        cell = self.grid.cell_containing(point)
        if cell is None:
            return []
        return [name for i, name in enumerate(self.object_names) if self.is_visible(i, cell)]


def save_bake(path, grid: SpatialGrid, store: VisibilityStore, object_names, ray_step,
              complete: bool = True) -> Path:
    """
    Write a bake to an .npz archive.

    Resumable bakes save after every batch with complete=False; readers
    must not use such a file for culling.

    Returns:
        The path actually written (numpy appends .npz when missing).
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_suffix(path.suffix + ".npz")
    names = list(object_names)
    if len(names) != store.object_count:
        raise ConfigurationError(
            f"{len(names)} object names for a store with {store.object_count} objects"
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(
        path,
        words=np.asarray(store.words, dtype=np.uint32),
        world_min=grid.world_bounds.min,
        world_max=grid.world_bounds.max,
        cell_size=grid.cell_size,
        counts=np.asarray(grid.counts, dtype=np.int64),
        ray_step=np.asarray(ray_step, dtype=np.float64),
        object_names=np.array(json.dumps(names)),
        complete=np.array(bool(complete)),
        format_version=np.array(FORMAT_VERSION),
    )
    logger.info("Saved bake for %d objects to %s", len(names), path)
    return path


def load_bake(path) -> BakedVisibility:
    """
    Read a bake written by save_bake().

    Raises:
        ConfigurationError: If the file is missing, from another format
                            version, or internally inconsistent.
    """
    path = Path(path)
    try:
        with np.load(path, allow_pickle=False) as data:
            version = int(data["format_version"])
            if version != FORMAT_VERSION:
                raise ConfigurationError(
                    f"{path.name} has bake format {version}; expected {FORMAT_VERSION}"
                )
            names = json.loads(str(data["object_names"]))
            world = Bounds.from_min_max(data["world_min"], data["world_max"])
            grid = SpatialGrid(world, data["cell_size"])
            saved_counts = tuple(int(c) for c in data["counts"])
            words = data["words"].copy()
            ray_step = tuple(float(v) for v in data["ray_step"])
            complete = bool(data["complete"])
    except (OSError, KeyError, ValueError) as e:
        raise ConfigurationError(f"Cannot read bake file {path}: {e}") from e

    if saved_counts != grid.counts:
        raise ConfigurationError(
            f"{path.name}: stored cell counts {saved_counts} do not match grid {grid.counts}"
        )
    store = VisibilityStore.from_words(len(names), grid.total_cell_count, words)
    return BakedVisibility(grid=grid, store=store, object_names=names, ray_step=ray_step,
                           complete=complete)
