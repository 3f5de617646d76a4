"""
Bake settings, run states and sampling presets.

This module holds the configuration surface of the baker: the defaults used
when a scene file leaves a value out, the BakeSettings container handed to
the orchestrator, and the string constants naming each state of a bake run.

Defaults:
    cell size   10 x 10 x 10 world units
    ray step    0.1 x 0.1 (sample spacing on each face)
    backend     "gpu" (single dispatch + reduction per face pair)
    batch size  3 objects per resumable batch
"""

from dataclasses import dataclass, field

from pvs_baker.core.bounds import Bounds


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_CELL_SIZE = (10.0, 10.0, 10.0)
DEFAULT_RAY_STEP = (0.1, 0.1)
DEFAULT_BACKEND = "gpu"
DEFAULT_BATCH_SIZE = 3

# Only static objects carrying this tag become bake targets. Every other
# static object still occludes.
PVS_TAG = "PVS"

# Lower bound for each component of the ray step. Keeps the sample loops
# finite when a scene file asks for a zero step.
MIN_RAY_STEP = 0.01

# Cell size components whose squared magnitude is below this are rejected.
MIN_CELL_SIZE_SQR = 0.01

# Object bounds are grown by this amount before baking so that sample points
# on the object's faces sit just outside its own geometry.
TARGET_BOUNDS_PADDING = 1e-5

# Sampling presets shown to users of the CLI and the worker. Keys are
# human-readable labels; values are the ray step on each face axis.
SAMPLING_PRESETS = {
    "Draft (1.0 step)": (1.0, 1.0),
    "Standard (0.25 step)": (0.25, 0.25),
    "Precise (0.1 step)": (0.1, 0.1),
}


class BakeState:
    """
    String constants identifying each state of a bake run.

    Transitions: idle → initializing → baking → completed | cancelled | failed.
    Plain strings rather than an enum; they go straight into Qt signals and
    log lines.
    """
    IDLE = "idle"
    INITIALIZING = "initializing"
    BAKING = "baking"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


STATE_DISPLAY_NAMES = {
    BakeState.IDLE: "Idle",
    BakeState.INITIALIZING: "Initializing",
    BakeState.BAKING: "Baking",
    BakeState.COMPLETED: "Completed",
    BakeState.CANCELLED: "Cancelled by user",
    BakeState.FAILED: "Failed",
}


@dataclass
class BakeSettings:
    """
    Parameters for one bake run.

    world_bounds is optional: when None the orchestrator encloses every
    static collider. Either way the box is fitted to whole cells before
    the grid is built.
    """
    cell_size: tuple[float, float, float] = DEFAULT_CELL_SIZE
    ray_step: tuple[float, float] = DEFAULT_RAY_STEP
    backend: str = DEFAULT_BACKEND
    batch_size: int = DEFAULT_BATCH_SIZE
    tag: str = PVS_TAG
    world_bounds: Bounds | None = field(default=None)

    def clamped_ray_step(self) -> tuple[float, float]:
        """Return the ray step with each axis raised to MIN_RAY_STEP."""
        return (max(MIN_RAY_STEP, float(self.ray_step[0])),
                max(MIN_RAY_STEP, float(self.ray_step[1])))
