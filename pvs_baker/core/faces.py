"""
Face extraction and the facing test.

A Face is one oriented rectangle on the surface of a bounding box. Faces
are the sampling surfaces of the occlusion query: a cell can see an object
if a sample point on one of the cell's faces has an unobstructed line to a
sample point on one of the object's faces.

faces_of() always returns the six faces in the same order with the same
corner and axis choices, so bakes are reproducible bit for bit:

    index  side  corner                 size      right  up
    0      -Z    (min.x, min.y, min.z)  (sx, sy)  +X     +Y
    1      +Z    (max.x, min.y, max.z)  (sx, sy)  -X     +Y
    2      -Y    (min.x, min.y, max.z)  (sx, sz)  +X     -Z
    3      +Y    (min.x, max.y, min.z)  (sx, sz)  +X     +Z
    4      -X    (min.x, min.y, max.z)  (sz, sy)  -Z     +Y
    5      +X    (max.x, min.y, min.z)  (sz, sy)  +Z     +Y

With these axes the outward normal of every face is up × right.

is_facing() is the cheap prune run before any ray work. It only looks at
the 16 corner pairs of the two faces, so it can pass face pairs that only
partially face each other. It never rejects a pair that has a facing
corner pair; the sampled occlusion query makes the final call.
"""

import math
from dataclasses import dataclass

import numpy as np

from pvs_baker.core.bounds import Bounds


# Both dot products must exceed this for a corner pair to count as facing.
FACING_EPSILON = 1e-5

# Sample tiles stop this far short of a face edge.
SAMPLE_EPSILON = 1e-5

_X = np.array([1.0, 0.0, 0.0])
_Y = np.array([0.0, 1.0, 0.0])
_Z = np.array([0.0, 0.0, 1.0])


@dataclass(frozen=True, eq=False)
class Face:
    """
    Oriented rectangle: corner + size[0] * right + size[1] * up spans it.

    right and up are unit vectors; size holds the extent along each.
    """
    corner: np.ndarray
    right: np.ndarray
    up: np.ndarray
    size: np.ndarray

    @property
    def corners(self) -> np.ndarray:
        """(4, 3) corners: corner, +right, +right+up, +up."""
        r = self.size[0] * self.right
        u = self.size[1] * self.up
        return np.stack([self.corner, self.corner + r, self.corner + r + u, self.corner + u])

    @property
    def center(self) -> np.ndarray:
        return self.corner + 0.5 * (self.size[0] * self.right + self.size[1] * self.up)

    @property
    def normal(self) -> np.ndarray:
        return np.cross(self.up, self.right)

    @property
    def area(self) -> float:
        return float(self.size[0] * self.size[1])


def _face(corner, size, right, up) -> Face:
    return Face(
        corner=np.asarray(corner, dtype=np.float64),
        right=np.asarray(right, dtype=np.float64),
        up=np.asarray(up, dtype=np.float64),
        size=np.asarray(size, dtype=np.float64),
    )


def faces_of(bounds: Bounds) -> tuple[Face, ...]:
    """Return the six outward-facing faces of a box in fixed order (-Z, +Z, -Y, +Y, -X, +X)."""
    lo, hi = bounds.min, bounds.max
    sx, sy, sz = bounds.size
    return (
        _face((lo[0], lo[1], lo[2]), (sx, sy), _X, _Y),
        _face((hi[0], lo[1], hi[2]), (sx, sy), -_X, _Y),
        _face((lo[0], lo[1], hi[2]), (sx, sz), _X, -_Z),
        _face((lo[0], hi[1], lo[2]), (sx, sz), _X, _Z),
        _face((lo[0], lo[1], hi[2]), (sz, sy), -_Z, _Y),
        _face((hi[0], lo[1], lo[2]), (sz, sy), _Z, _Y),
    )


def tile_count(extent: float, step: float) -> int:
    """
    Number of sample tiles of width step along one face axis.

    Tiles start at offset 0 and keep coming while the offset is below
    extent - SAMPLE_EPSILON, so a degenerate axis yields zero tiles.
    """
    usable = float(extent) - SAMPLE_EPSILON
    if usable <= 0.0:
        return 0
    # Rounding first keeps 1.0 / 0.5 from landing on 2.0000000000000004.
    return int(math.ceil(round(usable / float(step), 6)))


def sample_grid(face: Face, step) -> np.ndarray:
    """
    Tile-centered sample points of a face as a (rows, cols, 3) array.

    Columns run along face.right with step[0]; rows run along face.up with
    step[1]. Sample (row, col) sits at corner + (col + 0.5) * step[0] * right
    + (row + 0.5) * step[1] * up. Either dimension may be zero.
    """
    cols = tile_count(face.size[0], step[0])
    rows = tile_count(face.size[1], step[1])
    u = (np.arange(cols, dtype=np.float64) + 0.5) * float(step[0])
    v = (np.arange(rows, dtype=np.float64) + 0.5) * float(step[1])
    return (face.corner[None, None, :]
            + u[None, :, None] * face.right[None, None, :]
            + v[:, None, None] * face.up[None, None, :])


def facing_corner_pairs(face_a: Face, face_b: Face) -> np.ndarray:
    """
    Boolean (4, 4) matrix of the corner pairs that satisfy the facing condition.

    Entry [i, j] is True when the unit direction from corner i of face_a to
    corner j of face_b has a dot product above FACING_EPSILON with face_a's
    normal, and the reverse direction does too with face_b's normal.
    Coincident corners have no direction and never qualify.
    """
    diff = face_b.corners[None, :, :] - face_a.corners[:, None, :]
    length = np.linalg.norm(diff, axis=2)
    safe = np.where(length > 0.0, length, 1.0)
    direction = diff / safe[:, :, None]

    toward_b = direction @ face_a.normal
    toward_a = -direction @ face_b.normal
    return (length > 0.0) & (toward_b > FACING_EPSILON) & (toward_a > FACING_EPSILON)


def is_facing(face_a: Face, face_b: Face) -> bool:
    """True if any of the 16 corner pairs of the two faces face each other."""
    return bool(facing_corner_pairs(face_a, face_b).any())
