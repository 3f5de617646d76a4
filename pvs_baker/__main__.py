"""
Command-line entry point for the PVS baker.

Invoked as:
    python -m pvs_baker bake scene.json -o scene_pvs.npz
    python -m pvs_baker inspect scene_pvs.npz --point 5 5 5

bake     Loads a JSON scene, bakes every static PVS-tagged object and writes
         the packed visibility store. With --batch-size the bake runs in
         resumable mode and the output is rewritten after every batch.
inspect  Prints the objects flagged visible from the cell containing a point.

Ctrl+C during a bake requests cancellation at the next sweep checkpoint;
the output of a cancelled full bake is not written.

Exit codes: 0 completed, 1 failed, 2 cancelled.
"""

import argparse
import logging
import signal
import sys

from pvs_baker import __version__
from pvs_baker.core.backend_factory import BACKEND_DISPLAY_NAMES, OCCLUSION_BACKENDS
from pvs_baker.core.bake_io import load_bake, save_bake
from pvs_baker.core.baker import BakeOrchestrator
from pvs_baker.core.errors import PVSBakeError
from pvs_baker.core.scene import load_scene
from pvs_baker.core.settings import SAMPLING_PRESETS, STATE_DISPLAY_NAMES, BakeState

logger = logging.getLogger("pvs_baker")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pvs_baker", description="Bake potential visibility sets.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Log debug output")

    bake = sub.add_parser("bake", parents=[common], help="Bake a scene file")
    bake.add_argument("scene", help="JSON scene file")
    bake.add_argument("-o", "--output", required=True, help="Output .npz file")
    bake.add_argument("--backend", choices=sorted(OCCLUSION_BACKENDS), help="Occlusion backend")
    bake.add_argument("--cell-size", nargs=3, type=float, metavar=("X", "Y", "Z"))
    bake.add_argument("--step", nargs=2, type=float, metavar=("SX", "SY"), help="Ray step on each face axis")
    bake.add_argument("--preset", choices=list(SAMPLING_PRESETS), help="Named ray step preset")
    bake.add_argument("--batch-size", type=int, help="Bake N objects per batch, saving after each")

    inspect = sub.add_parser("inspect", parents=[common], help="List objects visible from a point")
    inspect.add_argument("bake_file", help="Baked .npz file")
    inspect.add_argument("--point", nargs=3, type=float, required=True, metavar=("X", "Y", "Z"))
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "bake":
            return _run_bake(args)
        return _run_inspect(args)
    except PVSBakeError as e:
        logger.error("%s", e)
        return EXIT_FAILED


def _run_bake(args) -> int:
    objects, settings = load_scene(args.scene)
    if args.backend:
        settings.backend = args.backend
    if args.cell_size:
        settings.cell_size = tuple(args.cell_size)
    if args.preset:
        settings.ray_step = SAMPLING_PRESETS[args.preset]
    if args.step:
        settings.ray_step = tuple(args.step)

    orchestrator = BakeOrchestrator.from_scene(objects, settings)
    logger.info("Baking %d objects with %s", len(orchestrator.targets),
                BACKEND_DISPLAY_NAMES.get(settings.backend.lower(), settings.backend))
    cancel_requested = False
    last_object = -1

    def on_progress(progress) -> bool:
        nonlocal last_object
        if progress.current_object != last_object:
            last_object = progress.current_object
            logger.info("Object %d/%d (%.0f%%)", progress.current_object + 1,
                        progress.total_objects, progress.fraction * 100)
        return cancel_requested

    def on_sigint(signum, frame):
        nonlocal cancel_requested
        cancel_requested = True
        logger.warning("Cancellation requested; stopping at the next checkpoint")

    def on_batch_done(start, stop):
        save_bake(args.output, orchestrator.grid, orchestrator.store, orchestrator.object_names,
                  settings.clamped_ray_step(), complete=orchestrator.is_complete)

    previous_handler = signal.signal(signal.SIGINT, on_sigint)
    try:
        if args.batch_size is not None:
            report = orchestrator.bake_in_batches(args.batch_size, on_progress=on_progress,
                                                  on_batch_done=on_batch_done)
        else:
            report = orchestrator.bake(on_progress=on_progress)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    logger.info("%s: %d of %d objects, %d visible flags, %.2fs",
                STATE_DISPLAY_NAMES[report.state], report.objects_completed,
                report.stop_object - report.first_object, report.visible_count, report.elapsed)

    if report.state == BakeState.CANCELLED:
        return EXIT_CANCELLED
    if args.batch_size is None:
        save_bake(args.output, orchestrator.grid, orchestrator.store, orchestrator.object_names,
                  settings.clamped_ray_step())
    return EXIT_OK


def _run_inspect(args) -> int:
    baked = load_bake(args.bake_file)
    if not baked.complete:
        logger.warning("%s is a partial bake; unbaked objects read as hidden", args.bake_file)

    cell = baked.grid.cell_containing(args.point)
    if cell is None:
        print("Point is outside the baked grid")
        return EXIT_OK

    print(f"Cell {cell} (index {baked.grid.cell_index(*cell)})")
    for name in baked.visible_from_point(args.point):
        print(f"  {name}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
