"""
Axis-aligned bounding box value type.

Bounds is the one geometric primitive shared by the grid, the face
extractor and the scene supplier. Coordinates are stored as float64 numpy
arrays; instances are never mutated in place; every operation returns a
new box.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, eq=False)
class Bounds:
    """
    Axis-aligned box described by its min and max corners.

    Invariant: min <= max componentwise. Construct through from_min_max()
    or from_center_size() to get validated float64 arrays.
    """
    min: np.ndarray
    max: np.ndarray

    @classmethod
    def from_min_max(cls, min_corner, max_corner) -> "Bounds":
        lo = np.asarray(min_corner, dtype=np.float64).reshape(3)
        hi = np.asarray(max_corner, dtype=np.float64).reshape(3)
        if np.any(lo > hi):
            raise ValueError(f"Bounds min {lo.tolist()} exceeds max {hi.tolist()}")
        return cls(lo.copy(), hi.copy())

    @classmethod
    def from_center_size(cls, center, size) -> "Bounds":
        c = np.asarray(center, dtype=np.float64).reshape(3)
        half = 0.5 * np.asarray(size, dtype=np.float64).reshape(3)
        return cls.from_min_max(c - half, c + half)

    @property
    def size(self) -> np.ndarray:
        return self.max - self.min

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.min + self.max)

    def intersects(self, other: "Bounds") -> bool:
        """Inclusive overlap test: boxes that only touch still intersect."""
        return bool(np.all(self.min <= other.max) and np.all(other.min <= self.max))

    def contains(self, point) -> bool:
        p = np.asarray(point, dtype=np.float64)
        return bool(np.all(self.min <= p) and np.all(p <= self.max))

    def expanded(self, amount: float) -> "Bounds":
        """Grow the size by amount on every axis (half per side), keeping the center."""
        return Bounds.from_min_max(self.min - 0.5 * amount, self.max + 0.5 * amount)

    def encapsulate(self, other: "Bounds") -> "Bounds":
        return Bounds.from_min_max(np.minimum(self.min, other.min),
                                   np.maximum(self.max, other.max))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Bounds):
            return NotImplemented
        return bool(np.array_equal(self.min, other.min) and np.array_equal(self.max, other.max))

    def __repr__(self) -> str:
        return f"Bounds(min={self.min.tolist()}, max={self.max.tolist()})"


def enclose(boxes) -> Bounds | None:
    """Return the smallest box containing every box in the iterable, or None if empty."""
    result = None
    for box in boxes:
        result = box if result is None else result.encapsulate(box)
    return result
