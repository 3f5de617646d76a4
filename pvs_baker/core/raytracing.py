"""
Ray tracing service backed by Open3D's RaycastingScene.

The occlusion backends never talk to Open3D directly. They go through this
service, which owns the acceleration structure for one bake batch:

    build_from(objects) → AccelerationStructure
        Concatenates the geometry of every collider (trimesh) and uploads it
        into an Open3D RaycastingScene (Embree BVH in C++).
    dispose(handle)
        Drops the scene and any pooled mask buffers. Safe to call twice.
    raycast(handle, origins, directions, max_distances) → bool array
        Batched "does this ray hit anything before max_distance" query.
        Used by the CPU occlusion backend.
    dispatch(handle, view_face, target_face, step) → uint8 mask
        One evaluation of every sample pair between two faces, producing a
        hit/miss mask shaped like the view face's tile grid. Used by the GPU
        occlusion backend, which then reduces the mask to a single flag.

Self-intersection: sample points lie exactly on box faces, and colliders
may share those faces. Every ray therefore starts RAY_EPSILON along its
direction and stops RAY_EPSILON short of its end so it cannot hit the
surface it starts or ends on.

Open3D is imported lazily so the rest of the package (and the tests that
inject a fake service) load without it.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import trimesh

from pvs_baker.core.errors import ResourceExhaustionError
from pvs_baker.core.faces import Face, sample_grid

logger = logging.getLogger(__name__)


# Rays start this far past their origin and end this far before their target.
RAY_EPSILON = 1e-4

# Upper bound on rays submitted to Open3D in one call. Face pairs with more
# sample pairs than this are processed in consecutive chunks.
MAX_RAYS_PER_DISPATCH = 1 << 20


@dataclass
class AccelerationStructure:
    """
    Handle for the ray tracing scene of one bake batch.

    scene is None when the batch has no collider triangles and every ray
    then misses.
    """
    scene: object | None
    object_count: int
    triangle_count: int
    mask_cache: dict = field(default_factory=dict)
    disposed: bool = False


class RayTracingService:
    """
    Builds acceleration structures and answers ray queries against them.

    Args:
        max_rays_per_dispatch: Chunk size for batched ray submission.
        nthreads: Worker threads for Open3D ray casting (0 = all cores).
    """

    def __init__(self, max_rays_per_dispatch: int = MAX_RAYS_PER_DISPATCH, nthreads: int = 0):
        self.max_rays_per_dispatch = max(2, int(max_rays_per_dispatch))
        self.nthreads = int(nthreads)

    # -- lifecycle ---------------------------------------------------------

    def build_from(self, objects) -> AccelerationStructure:
        """
        Build a raycasting scene from every object's geometry.

        Args:
            objects: Sequence of SceneObject; each contributes geometry().

        Raises:
            ResourceExhaustionError: If Open3D cannot allocate or build the BVH.
        """
        import open3d as o3d

        meshes = [obj.geometry() for obj in objects]
        meshes = [m for m in meshes if len(m.faces) > 0]
        if not meshes:
            logger.info("Acceleration structure is empty (no collider triangles)")
            return AccelerationStructure(scene=None, object_count=len(objects), triangle_count=0)

        try:
            combined = trimesh.util.concatenate(meshes)
            vertices = np.asarray(combined.vertices, dtype=np.float32)
            triangles = np.asarray(combined.faces, dtype=np.uint32)

            scene = o3d.t.geometry.RaycastingScene()
            scene.add_triangles(
                o3d.core.Tensor(vertices, dtype=o3d.core.Dtype.Float32),
                o3d.core.Tensor(triangles, dtype=o3d.core.Dtype.UInt32),
            )
        except (MemoryError, RuntimeError) as e:
            raise ResourceExhaustionError(
                f"Failed to build acceleration structure for {len(objects)} objects: {e}"
            ) from e

        logger.info(
            "Built acceleration structure: %d objects, %d triangles",
            len(objects), len(triangles),
        )
        return AccelerationStructure(
            scene=scene, object_count=len(objects), triangle_count=len(triangles),
        )

    def dispose(self, handle: AccelerationStructure) -> None:
        if handle is None or handle.disposed:
            return
        handle.scene = None
        handle.mask_cache.clear()
        handle.disposed = True
        logger.debug("Disposed acceleration structure (%d objects)", handle.object_count)

    # -- queries -----------------------------------------------------------

    def raycast(self, handle: AccelerationStructure, origins, directions, max_distances) -> np.ndarray:
        """
        Test a batch of rays for a hit closer than each ray's max distance.

        Args:
            handle:        Acceleration structure from build_from().
            origins:       (N, 3) ray origins.
            directions:    (N, 3) ray directions; need not be normalized.
            max_distances: (N,) or scalar maximum hit distance.

        Returns:
            (N,) bool array, True where the ray is blocked.
        """
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        max_distances = np.broadcast_to(
            np.asarray(max_distances, dtype=np.float64), (len(origins),)
        )

        hits = np.zeros(len(origins), dtype=bool)
        if handle.scene is None or len(origins) == 0:
            return hits

        lengths = np.linalg.norm(directions, axis=1)
        unit = directions / np.where(lengths > 0.0, lengths, 1.0)[:, None]
        reach = max_distances - 2.0 * RAY_EPSILON
        active = (lengths > 0.0) & (reach > 0.0)
        if not active.any():
            return hits

        starts = origins[active] + unit[active] * RAY_EPSILON
        rays = np.concatenate([starts, unit[active]], axis=1).astype(np.float32)
        t_hit = self._cast(handle, rays)
        hits[active] = t_hit < reach[active]
        return hits

    def dispatch(self, handle: AccelerationStructure, view_face: Face, target_face: Face,
                 step) -> np.ndarray:
        """
        Evaluate every sample pair between two faces in one pass.

        Returns:
            (rows, cols) uint8 mask over the view face's tiles. A cell is 1
            when that view sample reaches at least one target sample with
            neither the forward nor the backward ray blocked. The buffer is
            pooled per shape and is only valid until the next dispatch of the
            same shape on this handle.

        Raises:
            ResourceExhaustionError: If Open3D fails while casting.
        """
        view = sample_grid(view_face, step)
        targets = sample_grid(target_face, step).reshape(-1, 3)
        rows, cols = view.shape[:2]

        mask = self._mask_buffer(handle, (rows, cols))
        mask[:] = 0
        if rows * cols == 0 or len(targets) == 0:
            return mask

        sources = view.reshape(-1, 3)
        flat_mask = mask.reshape(-1)
        # Two rays (forward + backward) per sample pair.
        sources_per_chunk = max(1, self.max_rays_per_dispatch // (2 * len(targets)))

        try:
            for start in range(0, len(sources), sources_per_chunk):
                chunk = sources[start:start + sources_per_chunk]
                origins = np.repeat(chunk, len(targets), axis=0)
                ends = np.tile(targets, (len(chunk), 1))
                segments = ends - origins
                lengths = np.linalg.norm(segments, axis=1)

                forward = self.raycast(handle, origins, segments, lengths)
                backward = self.raycast(handle, ends, -segments, lengths)
                clear = ~(forward | backward)
                flat_mask[start:start + len(chunk)] = clear.reshape(len(chunk), len(targets)).any(axis=1)
        except (MemoryError, RuntimeError) as e:
            raise ResourceExhaustionError(f"Ray tracing dispatch failed: {e}") from e

        return mask

    # -- internals ---------------------------------------------------------

    def _cast(self, handle: AccelerationStructure, rays: np.ndarray) -> np.ndarray:
        import open3d as o3d

        t_hit = np.empty(len(rays), dtype=np.float64)
        for start in range(0, len(rays), self.max_rays_per_dispatch):
            chunk = rays[start:start + self.max_rays_per_dispatch]
            ans = handle.scene.cast_rays(
                o3d.core.Tensor(chunk, dtype=o3d.core.Dtype.Float32),
                nthreads=self.nthreads,
            )
            t_hit[start:start + len(chunk)] = ans["t_hit"].numpy()
        return t_hit

    def _mask_buffer(self, handle: AccelerationStructure, shape: tuple[int, int]) -> np.ndarray:
        """Reuse one mask buffer per tile shape for the lifetime of the handle."""
        buffer = handle.mask_cache.get(shape)
        if buffer is None:
            buffer = np.zeros(shape, dtype=np.uint8)
            handle.mask_cache[shape] = buffer
        return buffer
