"""
Occlusion queries between two faces.

Both backends answer the same question: is there at least one pair of
sample points (one on face_a, one on face_b) whose connecting segment is
not blocked by scene geometry?

    CpuOcclusionQuery
        Walks face_a's samples in order. For each one it casts rays to all of
        face_b's samples in a single batch, in both directions, and returns
        as soon as one pair is clear. Blocking in either direction counts as
        obstructed, which catches single-sided collider geometry.

    GpuOcclusionQuery
        Issues one dispatch per face pair through the ray tracing service.
        The dispatch writes a hit/miss mask over face_a's tile grid; a
        reduction over the mask gives the final flag.

The backends share nothing but the OcclusionQuery protocol. The factory in
backend_factory.py picks one from the bake settings; the orchestrator only
ever calls any_unobstructed_sample().

Faces with zero area on either side produce no sample pairs, so the answer
is simply False.
"""

from typing import Protocol

import numpy as np

from pvs_baker.core.faces import Face, sample_grid
from pvs_baker.core.settings import MIN_RAY_STEP


class OcclusionQuery(Protocol):
    def any_unobstructed_sample(self, face_a: Face, face_b: Face, step) -> bool:
        ...


def clamp_step(step) -> tuple[float, float]:
    """Raise each step component to at least MIN_RAY_STEP (0.01)."""
    return max(MIN_RAY_STEP, float(step[0])), max(MIN_RAY_STEP, float(step[1]))


class CpuOcclusionQuery:
    """
    Sampled ray casting, one source sample at a time.

    Args:
        service: Ray tracing service exposing raycast().
        handle:  Acceleration structure built by that service.
    """

    def __init__(self, service, handle):
        self._service = service
        self._handle = handle

    def any_unobstructed_sample(self, face_a: Face, face_b: Face, step) -> bool:
        step = clamp_step(step)
        sources = sample_grid(face_a, step).reshape(-1, 3)
        targets = sample_grid(face_b, step).reshape(-1, 3)
        if len(sources) == 0 or len(targets) == 0:
            return False

        for source in sources:
            segments = targets - source
            lengths = np.linalg.norm(segments, axis=1)
            origins = np.broadcast_to(source, targets.shape)

            forward = self._service.raycast(self._handle, origins, segments, lengths)
            backward = self._service.raycast(self._handle, targets, -segments, lengths)
            if np.any(~forward & ~backward):
                return True

        return False


class GpuOcclusionQuery:
    """
    Single dispatch + reduction per face pair.

    Args:
        service: Ray tracing service exposing dispatch().
        handle:  Acceleration structure built by that service.
    """

    def __init__(self, service, handle):
        self._service = service
        self._handle = handle

    def any_unobstructed_sample(self, face_a: Face, face_b: Face, step) -> bool:
        step = clamp_step(step)
        mask = self._service.dispatch(self._handle, face_a, face_b, step)
        return reduce_any_miss(mask)


def reduce_any_miss(mask: np.ndarray) -> bool:
    """Collapse a dispatch mask to one flag: True if any view tile saw through."""
    return bool(np.count_nonzero(mask) > 0)
