"""
Error types raised by the PVS baking engine.

Every error derives from PVSBakeError so callers (the CLI, the background
worker, a host editor) can catch the whole family in one place and still
tell the individual failure kinds apart:

    ConfigurationError:      bad settings (cell size too small, unknown
                             backend, malformed scene file). Raised before
                             any bake work starts.
    BakeCancelled:           the progress sink asked the bake to stop.
    ResourceExhaustionError: the acceleration structure or a dispatch could
                             not be built or run. Fatal for the current batch;
                             resumable mode retries with fewer objects.
    BakeInProgressError:     a second bake was started on an orchestrator
                             that is already running one.

Degenerate query geometry (a face with zero area) is not an error. The
occlusion query finds no sample pairs and reports the face pair as not
visible.
"""


class PVSBakeError(Exception):
    """Base class for all errors raised by the baking engine."""
    pass


class ConfigurationError(PVSBakeError):
    """
    Raised when bake settings or scene input cannot produce a valid grid.

    The orchestrator never swallows this error. A bake with a degenerate
    cell size would either divide by zero or allocate an absurd number of
    cells, so it aborts before touching the visibility store.
    """
    pass


class BakeCancelled(PVSBakeError):
    """
    Raised inside the bake loop when the progress sink requests a stop.

    The orchestrator catches it and reports the run as cancelled; the
    visibility store is left partially written and must not be consumed.
    """
    pass


class ResourceExhaustionError(PVSBakeError):
    """
    Raised when the ray tracing service runs out of memory or fails to build.

    Wraps the underlying error (MemoryError, Open3D RuntimeError, etc.) with
    a message naming the object range that was being baked.
    """
    pass


class BakeInProgressError(PVSBakeError):
    """Raised when a bake is requested while another one is still running."""
    pass
