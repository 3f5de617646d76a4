# tests/conftest.py

import json

import pytest

from pvs_baker.core.baker import BakeOrchestrator
from pvs_baker.core.bounds import Bounds
from pvs_baker.core.errors import ResourceExhaustionError
from pvs_baker.core.scene import SceneObject
from pvs_baker.core.settings import BakeSettings


def box(name, lo, hi, tag="PVS", static=True):
    return SceneObject(name=name, bounds=Bounds.from_min_max(lo, hi), is_static=static, tag=tag)


@pytest.fixture
def wall_scene():
    """
    Two targets separated by a wall that spans the whole grid in y and z.

    With a 10-unit cell the world is (0,-10,-10)-(20,20,20): a 2 x 3 x 3 grid.
    "near" sits in the x=0 column, "far" in the x=1 column, and the wall
    sits between them at x 12-13.
    """
    return [
        box("near", (0, 0, 0), (1, 1, 1)),
        box("far", (19, 0, 0), (20, 1, 1)),
        box("wall", (12, -10, -10), (13, 20, 20), tag=""),
    ]


@pytest.fixture
def open_scene():
    return [
        box("a", (0, 0, 0), (1, 1, 1)),
        box("b", (11, 0, 0), (12, 1, 1)),
    ]


@pytest.fixture
def qt_app():
    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def scene_file(tmp_path):
    """Write a scene dict to scene.json and return its path."""
    def write(data):
        path = tmp_path / "scene.json"
        path.write_text(json.dumps(data))
        return path
    return write


class FakeService:
    """Counts acceleration structure builds and disposals; optionally fails builds."""

    def __init__(self, failures=0):
        self.built = 0
        self.disposed = 0
        self.failures = failures

    def build_from(self, objects):
        if self.failures:
            self.failures -= 1
            raise ResourceExhaustionError("out of memory")
        self.built += 1
        return object()

    def dispose(self, handle):
        self.disposed += 1


class ConstantQuery:
    def __init__(self, answer):
        self.answer = answer
        self.calls = 0

    def any_unobstructed_sample(self, face_a, face_b, step):
        self.calls += 1
        return self.answer


def make_orchestrator(objects, answer=False, service=None, **settings):
    """Orchestrator over objects whose occlusion query always returns answer."""
    query = ConstantQuery(answer)
    orch = BakeOrchestrator.from_scene(
        objects,
        BakeSettings(**settings),
        service=service or FakeService(),
        query_factory=lambda backend, service, handle: query,
    )
    return orch, query
