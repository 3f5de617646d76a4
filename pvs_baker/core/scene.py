"""
Scene supplier: the ordered object list a bake runs over.

The host scene graph is not modelled. A scene is a flat, ordered list of
SceneObject entries; the order is the object index used in the visibility
store, so it must stay stable between a bake and whoever reads its output.

Two lists are derived from it (collect_bake_inputs):
    targets    static objects carrying the PVS tag. One store row each.
    colliders  every static object. All of them occlude rays.
Non-static objects are ignored entirely.

Scene files are JSON:

    {
      "settings": {"cell_size": [10, 10, 10], "ray_step": [0.25, 0.25],
                   "backend": "gpu", "batch_size": 3, "tag": "PVS"},
      "objects": [
        {"name": "crate", "min": [0, 0, 0], "max": [1, 1, 1]},
        {"name": "wall", "min": [12, -10, -10], "max": [13, 20, 20], "tag": ""},
        {"name": "statue", "mesh": "meshes/statue.obj"}
      ]
    }

Objects with a "mesh" path are loaded with trimesh (relative to the scene
file) and take their bounds from the mesh unless min/max are given.
Objects without a mesh occlude as solid boxes.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import trimesh

from pvs_baker.core.bounds import Bounds
from pvs_baker.core.errors import ConfigurationError
from pvs_baker.core.settings import BakeSettings, PVS_TAG

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class SceneObject:
    """
    One renderable in the scene.

    Attributes:
        name:      Stable identifier, saved with the bake output.
        bounds:    World-space bounding box.
        is_static: Only static objects are baked or occlude.
        tag:       Objects tagged with the PVS tag become bake targets.
        mesh:      Optional trimesh.Trimesh used as occluder geometry.
    """
    name: str
    bounds: Bounds
    is_static: bool = True
    tag: str = PVS_TAG
    mesh: trimesh.Trimesh | None = None

    def geometry(self) -> trimesh.Trimesh:
        """Occluder geometry: the mesh if present, otherwise a solid box of the bounds."""
        if self.mesh is not None:
            return self.mesh
        return trimesh.creation.box(bounds=np.stack([self.bounds.min, self.bounds.max]))


def collect_bake_inputs(objects, tag: str = PVS_TAG) -> tuple[list[SceneObject], list[SceneObject]]:
    """
    Split a scene into bake targets and colliders, preserving input order.

    Returns:
        (targets, colliders): static objects with the tag, and all static objects.
    """
    colliders = [obj for obj in objects if obj.is_static]
    targets = [obj for obj in colliders if obj.tag == tag]
    return targets, colliders


def load_scene(path) -> tuple[list[SceneObject], BakeSettings]:
    """
    Read a JSON scene file.

    Returns:
        (objects, settings) with settings defaults filled in for any key the
        file leaves out.

    Raises:
        ConfigurationError: If the file is unreadable or an object is malformed.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read scene file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Scene file {path} must contain a JSON object")
    entries = data.get("objects", [])
    if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
        raise ConfigurationError(f"Scene file {path}: \"objects\" must be a list of objects")
    raw_settings = data.get("settings", {})
    if not isinstance(raw_settings, dict):
        raise ConfigurationError(f"Scene file {path}: \"settings\" must be an object")

    settings = _parse_settings(raw_settings)
    objects = [_parse_object(entry, i, path.parent) for i, entry in enumerate(entries)]

    logger.info("Loaded scene %s: %d objects", path.name, len(objects))
    return objects, settings


def _parse_settings(raw: dict) -> BakeSettings:
    settings = BakeSettings()
    try:
        if "cell_size" in raw:
            settings.cell_size = tuple(float(v) for v in raw["cell_size"])
        if "ray_step" in raw:
            settings.ray_step = tuple(float(v) for v in raw["ray_step"])
        if "backend" in raw:
            settings.backend = str(raw["backend"])
        if "batch_size" in raw:
            settings.batch_size = int(raw["batch_size"])
        if "tag" in raw:
            settings.tag = str(raw["tag"])
        if "world_min" in raw and "world_max" in raw:
            settings.world_bounds = Bounds.from_min_max(raw["world_min"], raw["world_max"])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid scene settings: {e}") from e

    if len(settings.cell_size) != 3 or len(settings.ray_step) != 2:
        raise ConfigurationError("cell_size needs 3 components and ray_step needs 2")
    return settings


def _parse_object(entry: dict, index: int, base_dir: Path) -> SceneObject:
    name = str(entry.get("name", f"object_{index}"))
    mesh = None

    try:
        if "mesh" in entry:
            mesh_path = base_dir / entry["mesh"]
            mesh = trimesh.load(mesh_path, force="mesh")

        if "min" in entry and "max" in entry:
            bounds = Bounds.from_min_max(entry["min"], entry["max"])
        elif mesh is not None:
            bounds = Bounds.from_min_max(mesh.bounds[0], mesh.bounds[1])
        else:
            raise ConfigurationError(f"Object {name!r} needs min/max bounds or a mesh")
    except (OSError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid object {name!r}: {e}") from e

    return SceneObject(
        name=name,
        bounds=bounds,
        is_static=bool(entry.get("static", True)),
        tag=str(entry.get("tag", PVS_TAG)),
        mesh=mesh,
    )
