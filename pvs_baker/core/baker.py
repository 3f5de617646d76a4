"""
Bake orchestration: the object × cell loop that fills the visibility store.

A bake run moves through these states (see settings.BakeState):

    idle → initializing → baking → completed | cancelled | failed

Initializing:
    Validates the cell size, encloses every static collider (or takes the
    explicit world bounds from the settings), fits the box to whole cells,
    builds the SpatialGrid and allocates a zeroed VisibilityStore.

Baking (per object, per cell; x outermost, then y, then z):
    1. If the cell's box overlaps the object's (padded) box, the object is
       visible and no face or ray work happens.
    2. Otherwise every (cell face, object face) pair that passes the facing
       test is handed to the occlusion query. The first pair with an
       unobstructed sample makes the object visible.
    3. The result is written once into the store at (object, cell).

Progress is reported before every X-axis sweep. The progress sink returns
True to cancel; the run then stops at that checkpoint, reports "cancelled"
and leaves the store partially written.

Execution modes:
    bake()             whole scene as one batch.
    bake_batch(a, b)   one object range on an already initialized store.
    bake_in_batches(n) resumable mode: initialize once, then bake n
                         objects at a time. A batch that runs out of ray
                         tracing resources is retried with half as many
                         objects.
Every batch builds its own acceleration structure and disposes it on every
exit path (completion, cancellation, failure).
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable

import numpy as np

from pvs_baker.core.backend_factory import create_occlusion_query
from pvs_baker.core.bounds import Bounds, enclose
from pvs_baker.core.errors import (
    BakeCancelled,
    BakeInProgressError,
    ConfigurationError,
    ResourceExhaustionError,
)
from pvs_baker.core.faces import faces_of, is_facing
from pvs_baker.core.grid import SpatialGrid, fit_world_bounds, validate_cell_size
from pvs_baker.core.raytracing import RayTracingService
from pvs_baker.core.scene import collect_bake_inputs
from pvs_baker.core.settings import BakeSettings, BakeState, TARGET_BOUNDS_PADDING
from pvs_baker.core.visibility_store import VisibilityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BakeProgress:
    """Progress tuple handed to the progress sink before each X-axis sweep."""
    current_object: int
    total_objects: int
    current_cell: int
    total_cells: int

    @property
    def fraction(self) -> float:
        if self.total_objects == 0 or self.total_cells == 0:
            return 1.0
        return (self.current_object + self.current_cell / self.total_cells) / self.total_objects


@dataclass
class BakeReport:
    """
    Outcome of a bake call.

    first_object/stop_object delimit the object range that was requested;
    objects_completed counts the objects whose every cell was written.
    """
    state: str
    first_object: int
    stop_object: int
    objects_completed: int
    visible_count: int
    elapsed: float


ProgressSink = Callable[[BakeProgress], bool]


def cell_sees_object(cell_bounds: Bounds, target_bounds: Bounds, target_faces, query, step) -> bool:
    """
    Decide whether an object may be visible from anywhere inside a cell.

    Args:
        cell_bounds:   World box of the cell.
        target_bounds: Padded world box of the object.
        target_faces:  faces_of(target_bounds), computed once per object.
        query:         OcclusionQuery for the current batch.
        step:          Ray step (already clamped).
    """
    if cell_bounds.intersects(target_bounds):
        return True

    for cell_face in faces_of(cell_bounds):
        for target_face in target_faces:
            if not is_facing(cell_face, target_face):
                continue
            if query.any_unobstructed_sample(cell_face, target_face, step):
                return True
    return False


class BakeOrchestrator:
    """
    Drives a PVS bake over an ordered list of target objects.

    Args:
        targets:       Objects that get a row in the visibility store, in order.
        colliders:     Objects that block rays. Defaults to the targets.
        settings:      BakeSettings; defaults used when None.
        service:       Ray tracing service (build_from / dispose / raycast /
                       dispatch). Defaults to the Open3D RayTracingService.
        query_factory: Callable(backend, service, handle) → OcclusionQuery.

    Only one bake may run on an orchestrator at a time; the grid and store
    it produces stay available (orchestrator.grid / orchestrator.store)
    until the next initialize.
    """

    def __init__(self, targets, colliders=None, settings: BakeSettings | None = None,
                 service=None, query_factory=create_occlusion_query):
        self.targets = tuple(targets)
        self.colliders = tuple(colliders) if colliders is not None else self.targets
        self.settings = settings if settings is not None else BakeSettings()
        self.service = service if service is not None else RayTracingService()
        self._query_factory = query_factory

        self.state = BakeState.IDLE
        self.grid: SpatialGrid | None = None
        self.store: VisibilityStore | None = None
        self._baked = np.zeros(len(self.targets), dtype=bool)
        self._lock = threading.Lock()
        self._state_listeners: list[Callable[[str], None]] = []

    @classmethod
    def from_scene(cls, objects, settings: BakeSettings | None = None, **kwargs) -> "BakeOrchestrator":
        """Build an orchestrator from a full scene list using the settings' PVS tag."""
        settings = settings if settings is not None else BakeSettings()
        targets, colliders = collect_bake_inputs(objects, settings.tag)
        return cls(targets, colliders, settings, **kwargs)

    # -- public API --------------------------------------------------------

    @property
    def object_names(self) -> list[str]:
        return [obj.name for obj in self.targets]

    @property
    def is_complete(self) -> bool:
        """True once every object has been baked since the last initialize."""
        return self.store is not None and bool(self._baked.all())

    def add_state_listener(self, listener: Callable[[str], None]) -> None:
        self._state_listeners.append(listener)

    def initialize(self) -> None:
        """Build the grid and allocate a fresh store. See module docstring."""
        with self._exclusive():
            self._initialize()

    def bake(self, on_progress: ProgressSink | None = None) -> BakeReport:
        """Initialize, then bake every object in one batch."""
        with self._exclusive():
            started = time.perf_counter()
            self._initialize()
            report = self._run_batch(0, len(self.targets), on_progress)
            report.elapsed = time.perf_counter() - started
            logger.info("Bake %s in %.2fs", report.state, report.elapsed)
            return report

    def bake_batch(self, start: int, stop: int, on_progress: ProgressSink | None = None) -> BakeReport:
        """
        Bake objects [start, stop) into the current store.

        Initializes first if no store exists yet. Objects outside the range
        keep whatever bits they already have.
        """
        with self._exclusive():
            if self.store is None:
                self._initialize()
            start = max(0, start)
            stop = min(len(self.targets), stop)
            if start >= stop:
                raise ConfigurationError(f"Empty object range [{start}, {stop})")
            return self._run_batch(start, stop, on_progress)

    def bake_in_batches(self, batch_size: int | None = None, on_progress: ProgressSink | None = None,
                        on_batch_done: Callable[[int, int], None] | None = None) -> BakeReport:
        """
        Resumable bake: initialize once, then bake batch_size objects at a time.

        The state stays "baking" from the first batch until the last one
        finishes; a batch that is retried after running out of resources
        does not fail the run.

        Args:
            batch_size:    Objects per batch; defaults to settings.batch_size.
            on_progress:   Progress sink (return True to cancel).
            on_batch_done: Called with (start, stop) after each finished batch.

        Raises:
            ResourceExhaustionError: If a single-object batch still fails.
        """
        size = int(batch_size if batch_size is not None else self.settings.batch_size)
        if size <= 0:
            raise ConfigurationError(f"Batch size must be positive, got {size}")

        with self._exclusive():
            started = time.perf_counter()
            self._initialize()
            total = len(self.targets)
            start = 0
            while start < total:
                stop = min(total, start + size)
                try:
                    report = self._run_batch(start, stop, on_progress, resumable=True)
                except ResourceExhaustionError as e:
                    if stop - start == 1:
                        raise
                    size = max(1, (stop - start) // 2)
                    logger.warning(
                        "Batch %d-%d ran out of resources (%s); retrying with %d objects per batch",
                        start, stop, e, size,
                    )
                    continue

                if report.state == BakeState.CANCELLED:
                    return BakeReport(
                        state=BakeState.CANCELLED,
                        first_object=0,
                        stop_object=total,
                        objects_completed=int(self._baked.sum()),
                        visible_count=self.store.count_visible(),
                        elapsed=time.perf_counter() - started,
                    )
                if on_batch_done is not None:
                    on_batch_done(start, stop)
                start = stop

            self._set_state(BakeState.COMPLETED)
            elapsed = time.perf_counter() - started
            logger.info("Resumable bake completed in %.2fs", elapsed)
            return BakeReport(
                state=BakeState.COMPLETED,
                first_object=0,
                stop_object=total,
                objects_completed=int(self._baked.sum()),
                visible_count=self.store.count_visible(),
                elapsed=elapsed,
            )

    # -- internals ---------------------------------------------------------

    @contextmanager
    def _exclusive(self):
        if not self._lock.acquire(blocking=False):
            raise BakeInProgressError("A bake is already running on this orchestrator")
        try:
            yield
        finally:
            self._lock.release()

    def _set_state(self, state: str) -> None:
        if state == self.state:
            return
        self.state = state
        for listener in self._state_listeners:
            listener(state)

    def _initialize(self) -> None:
        self._set_state(BakeState.INITIALIZING)
        try:
            cell_size = validate_cell_size(self.settings.cell_size)
            if not self.targets:
                raise ConfigurationError(
                    f"No static objects tagged {self.settings.tag!r}; nothing to bake"
                )

            world = self.settings.world_bounds
            if world is None:
                world = enclose(obj.bounds for obj in (self.colliders or self.targets))
            world = fit_world_bounds(world, cell_size)

            self.grid = SpatialGrid(world, cell_size)
            self.store = VisibilityStore(len(self.targets), self.grid.total_cell_count)
            self._baked[:] = False
        except Exception as e:
            logger.error("Bake initialization failed: %s", e)
            self._set_state(BakeState.FAILED)
            raise

        logger.info(
            "Grid %d x %d x %d (%d cells) over %s; %d targets, %d colliders",
            *self.grid.counts, self.grid.total_cell_count, self.grid.world_bounds,
            len(self.targets), len(self.colliders),
        )
        logger.info("%d bytes were allocated for visible flags", self.store.nbytes)

    def _run_batch(self, start: int, stop: int, on_progress: ProgressSink | None,
                   resumable: bool = False) -> BakeReport:
        """
        Bake objects [start, stop) with a fresh acceleration structure.

        In resumable mode the state stays "baking" after the batch, and a
        ResourceExhaustionError on a multi-object batch propagates without
        failing the run so the caller can retry with a smaller range.
        """
        started = time.perf_counter()
        self._set_state(BakeState.BAKING)
        logger.info("Baking objects %d-%d of %d", start, stop - 1, len(self.targets))

        handle = None
        completed = 0
        try:
            handle = self.service.build_from(self.colliders)
            query = self._query_factory(self.settings.backend, self.service, handle)
            for index in range(start, stop):
                self._bake_object(index, query, on_progress)
                self._baked[index] = True
                completed += 1
        except BakeCancelled:
            self._set_state(BakeState.CANCELLED)
            logger.warning("Cancelled by user after %d of %d objects", completed, stop - start)
            return self._report(BakeState.CANCELLED, start, stop, completed, started)
        except Exception as e:
            if resumable and stop - start > 1 and isinstance(e, ResourceExhaustionError):
                raise
            self._set_state(BakeState.FAILED)
            logger.error("Bake of objects %d-%d failed: %s", start, stop - 1, e)
            raise
        finally:
            if handle is not None:
                self.service.dispose(handle)

        if not resumable:
            self._set_state(BakeState.COMPLETED if self.is_complete else BakeState.IDLE)
        return self._report(BakeState.COMPLETED, start, stop, completed, started)

    def _bake_object(self, index: int, query, on_progress: ProgressSink | None) -> None:
        grid = self.grid
        target = self.targets[index]
        target_bounds = target.bounds.expanded(TARGET_BOUNDS_PADDING)
        target_faces = faces_of(target_bounds)
        step = self.settings.clamped_ray_step()
        cells_per_sweep = grid.count_y * grid.count_z

        logger.debug("Baking object %d (%s)", index, target.name)
        for x in range(grid.count_x):
            self._poll(on_progress, index, x * cells_per_sweep)
            for y in range(grid.count_y):
                for z in range(grid.count_z):
                    visible = cell_sees_object(grid.cell_bounds(x, y, z), target_bounds,
                                               target_faces, query, step)
                    self.store.set(index, grid.cell_index(x, y, z), visible)

    def _poll(self, on_progress: ProgressSink | None, index: int, current_cell: int) -> None:
        if on_progress is None:
            return
        progress = BakeProgress(index, len(self.targets), current_cell, self.grid.total_cell_count)
        if on_progress(progress):
            raise BakeCancelled(f"Cancelled at object {index}, cell {current_cell}")

    def _report(self, state: str, start: int, stop: int, completed: int, started: float) -> BakeReport:
        visible = self.store.count_visible(start, stop)
        return BakeReport(
            state=state,
            first_object=start,
            stop_object=stop,
            objects_completed=completed,
            visible_count=visible,
            elapsed=time.perf_counter() - started,
        )
