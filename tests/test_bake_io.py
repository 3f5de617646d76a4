# tests/test_bake_io.py

import numpy as np
import pytest

from pvs_baker.core.bake_io import load_bake, save_bake
from pvs_baker.core.bounds import Bounds
from pvs_baker.core.errors import ConfigurationError
from pvs_baker.core.grid import SpatialGrid
from pvs_baker.core.visibility_store import VisibilityStore


def _bake():
    grid = SpatialGrid(Bounds.from_min_max((-10, 0, 0), (10, 10, 30)), (10, 10, 10))
    store = VisibilityStore(2, grid.total_cell_count)
    store.set(0, grid.cell_index(0, 0, 2), True)
    store.set(1, grid.cell_index(1, 0, 1), True)
    return grid, store, ["crate", "statue"]


def test_saved_bake_reads_back(tmp_path):
    grid, store, names = _bake()
    path = save_bake(tmp_path / "level", grid, store, names, (0.25, 0.25))
    assert path.suffix == ".npz"

    baked = load_bake(path)
    assert baked.object_names == names
    assert baked.complete
    assert baked.ray_step == (0.25, 0.25)
    assert baked.matches(grid, names)
    assert np.array_equal(baked.store.words, store.words)
    assert baked.is_visible("crate", (0, 0, 2))
    assert not baked.is_visible("statue", (0, 0, 2))


def test_visible_from_point(tmp_path):
    grid, store, names = _bake()
    baked = load_bake(save_bake(tmp_path / "level.npz", grid, store, names, (1, 1)))
    assert baked.visible_from_point((-5, 5, 25)) == ["crate"]
    assert baked.visible_from_point((5, 5, 15)) == ["statue"]
    assert baked.visible_from_point((5, 5, 5)) == []
    assert baked.visible_from_point((50, 5, 5)) == []


def test_matches_detects_reordered_objects(tmp_path):
    grid, store, names = _bake()
    baked = load_bake(save_bake(tmp_path / "level.npz", grid, store, names, (1, 1)))
    assert not baked.matches(grid, list(reversed(names)))
    other = SpatialGrid(Bounds.from_min_max((-10, 0, 0), (10, 10, 30)), (5, 10, 10))
    assert not baked.matches(other, names)


def test_partial_flag(tmp_path):
    grid, store, names = _bake()
    baked = load_bake(save_bake(tmp_path / "level.npz", grid, store, names, (1, 1), complete=False))
    assert not baked.complete


def test_unknown_object_name(tmp_path):
    grid, store, names = _bake()
    baked = load_bake(save_bake(tmp_path / "level.npz", grid, store, names, (1, 1)))
    with pytest.raises(KeyError):
        baked.is_visible("tree", (0, 0, 0))


def test_name_count_must_match_store(tmp_path):
    grid, store, _ = _bake()
    with pytest.raises(ConfigurationError):
        save_bake(tmp_path / "level.npz", grid, store, ["only"], (1, 1))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_bake(tmp_path / "nope.npz")
