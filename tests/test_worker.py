# tests/test_worker.py

import pytest

pytest.importorskip("PySide6")

from pvs_baker.core.settings import BakeState
from pvs_baker.core.worker import BakeWorker

from conftest import FakeService, box, make_orchestrator as _orchestrator


def _connect(worker):
    events = {"states": [], "progress": [], "batches": [], "errors": [], "finished": []}
    worker.state_changed.connect(events["states"].append)
    worker.progress.connect(lambda *args: events["progress"].append(args))
    worker.batch_finished.connect(lambda a, b: events["batches"].append((a, b)))
    worker.error.connect(events["errors"].append)
    worker.bake_finished.connect(events["finished"].append)
    return events


def test_run_emits_progress_and_report(qt_app, open_scene):
    orch, _ = _orchestrator(open_scene)
    worker = BakeWorker(orch)
    events = _connect(worker)

    worker.run()

    assert events["states"] == [BakeState.INITIALIZING, BakeState.BAKING, BakeState.COMPLETED]
    assert events["progress"][0] == (0, 2, 0, 2)
    assert len(events["progress"]) == 4
    assert events["errors"] == []
    assert events["finished"][0].state == BakeState.COMPLETED


def test_resumable_run_emits_batches(qt_app, open_scene):
    orch, _ = _orchestrator(open_scene)
    worker = BakeWorker(orch, batch_size=1)
    events = _connect(worker)

    worker.run()

    assert events["batches"] == [(0, 1), (1, 2)]
    assert events["finished"][0].state == BakeState.COMPLETED


def test_cancel_before_run(qt_app, open_scene):
    orch, _ = _orchestrator(open_scene)
    worker = BakeWorker(orch)
    events = _connect(worker)

    worker.cancel()
    worker.run()

    assert events["finished"][0].state == BakeState.CANCELLED
    assert events["finished"][0].objects_completed == 0


def test_failure_emits_error(qt_app, open_scene):
    orch, _ = _orchestrator(open_scene, cell_size=(0, 0, 0))
    worker = BakeWorker(orch)
    events = _connect(worker)

    worker.run()

    assert len(events["errors"]) == 1
    assert "too small" in events["errors"][0]
    assert events["finished"] == []
    assert events["states"][-1] == BakeState.FAILED


def test_threaded_run(qt_app, open_scene):
    orch, _ = _orchestrator(open_scene)
    worker = BakeWorker(orch)
    worker.start()
    assert worker.wait(10000)
    assert orch.is_complete


def test_retried_batch_does_not_report_failure(qt_app):
    objects = [box(f"o{i}", (i * 10, 0, 0), (i * 10 + 1, 1, 1)) for i in range(4)]
    orch, _ = _orchestrator(objects, service=FakeService(failures=1))
    worker = BakeWorker(orch, batch_size=4)
    events = _connect(worker)

    worker.run()

    assert BakeState.FAILED not in events["states"]
    assert events["states"][-1] == BakeState.COMPLETED
    assert events["batches"] == [(0, 2), (2, 4)]
    assert events["errors"] == []
