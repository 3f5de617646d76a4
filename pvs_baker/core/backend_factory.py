"""
Occlusion backend selection.

The bake settings name the backend ("cpu" or "gpu"); this factory turns
that name into a query object bound to the current batch's acceleration
structure. The orchestrator calls the factory once per batch, so every
batch gets a query tied to the structure it just built:

    gpu  → GpuOcclusionQuery (default): one dispatch + reduction per face
           pair; the fast path for large scenes.
    cpu  → CpuOcclusionQuery: per-sample batched ray casting with an early
           exit; useful for debugging and as a cross-check.

Both return identical accept/reject decisions for the same scene and step.
"""

from pvs_baker.core.errors import ConfigurationError
from pvs_baker.core.occlusion import CpuOcclusionQuery, GpuOcclusionQuery, OcclusionQuery


OCCLUSION_BACKENDS = {
    "cpu": CpuOcclusionQuery,
    "gpu": GpuOcclusionQuery,
}

BACKEND_DISPLAY_NAMES = {
    "cpu": "CPU ray casting",
    "gpu": "GPU dispatch + reduction",
}


def create_occlusion_query(backend: str, service, handle) -> OcclusionQuery:
    """
    Build the occlusion query for one bake batch.

    Args:
        backend: Backend name from BakeSettings.backend.
        service: Ray tracing service that built handle.
        handle:  Acceleration structure for the batch.

    Raises:
        ConfigurationError: If backend is not a known name.
    """
    try:
        query_class = OCCLUSION_BACKENDS[backend.lower()]
    except (KeyError, AttributeError):
        raise ConfigurationError(
            f"Unknown occlusion backend {backend!r}. "
            f"Choose one of: {', '.join(sorted(OCCLUSION_BACKENDS))}."
        )
    return query_class(service, handle)
