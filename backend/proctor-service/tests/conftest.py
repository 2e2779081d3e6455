"""
Pytest Configuration for Proctor Service Tests
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


T0 = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Deterministic clock; time only moves when advanced"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture(scope='function')
def clock():
    return ManualClock()


@pytest.fixture(scope='function')
def store():
    """Fresh in-memory store"""
    from proctor_service.proctor.storage import InMemoryStore
    return InMemoryStore()


@pytest.fixture(scope='function')
def sql_store():
    """SQL store on in-memory SQLite"""
    from proctor_service.proctor.storage.sql import SqlStore
    sql = SqlStore("sqlite://")
    yield sql
    sql.close()


@pytest.fixture(scope='function')
def service(store, clock):
    """Service wired to the in-memory store and the manual clock"""
    from proctor_service.proctor.service import ProctorService
    return ProctorService(store, clock=clock)


@pytest.fixture(scope='function')
def make_frame():
    """Factory for detection frames at T0 + offset seconds"""
    from proctor_service.proctor.schemas import DetectionFrame, FaceDetection, ObjectDetection

    def _make(offset=0.0, faces=1, gaze_away=False, eyes_closed=False, objects=()):
        return DetectionFrame(
            timestamp=T0 + timedelta(seconds=offset),
            faces=[FaceDetection(confidence=0.9) for _ in range(faces)],
            objects=[ObjectDetection(object_class=name, confidence=conf) for name, conf in objects],
            gaze_away=gaze_away,
            eyes_closed=eyes_closed
        )

    return _make


@pytest.fixture(scope='function')
def app(service):
    """FastAPI app with the service dependency overridden"""
    from proctor_service.main import app
    from proctor_service.proctor.api import get_service

    app.dependency_overrides[get_service] = lambda: service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture(scope='function')
def client(app):
    """FastAPI test client"""
    return TestClient(app)


# ============================================================================
# Vision fakes
# ============================================================================

LANDMARK_COUNT = 478


def make_landmarks(iris_shift=0.0, eyes_closed=False, count=LANDMARK_COUNT):
    """
    FaceMesh-style landmarks with open eyes and centred irises.

    Coordinates are normalized; lids sit 0.01 above and below the eye line
    unless eyes_closed flattens them.
    """
    points = [SimpleNamespace(x=0.5, y=0.5) for _ in range(count)]
    lid = 0.0 if eyes_closed else 0.01

    def put(idx, x, y):
        if idx < count:
            points[idx] = SimpleNamespace(x=x, y=y)

    # Left eye: outer, inner, upper and lower lids
    put(33, 0.40, 0.50)
    put(133, 0.46, 0.50)
    put(159, 0.42, 0.50 - lid)
    put(158, 0.44, 0.50 - lid)
    put(145, 0.42, 0.50 + lid)
    put(153, 0.44, 0.50 + lid)

    # Right eye
    put(263, 0.60, 0.50)
    put(362, 0.54, 0.50)
    put(386, 0.58, 0.50 - lid)
    put(385, 0.56, 0.50 - lid)
    put(374, 0.58, 0.50 + lid)
    put(380, 0.56, 0.50 + lid)

    for idx in range(468, 472):
        put(idx, 0.43 + iris_shift, 0.50)
    for idx in range(473, 477):
        put(idx, 0.57 + iris_shift, 0.50)

    return points


class FakeFaceMesh:
    """Returns the configured faces for every image"""

    def __init__(self, faces=()):
        self.faces = list(faces)
        self.images = []

    def process(self, rgb):
        self.images.append(rgb)
        return SimpleNamespace(
            multi_face_landmarks=[SimpleNamespace(landmark=lms) for lms in self.faces] or None
        )


class FakeYolo:
    """Ultralytics-shaped detector returning fixed boxes"""

    names = {0: "person", 67: "cell phone", 73: "book"}

    def __init__(self, detections=((67, 0.91),)):
        self.detections = list(detections)
        self.calls = []

    def predict(self, image, conf=0.5, verbose=False):
        self.calls.append(conf)
        boxes = [
            SimpleNamespace(cls=[cls_id], conf=[score], xyxy=[[10.0, 20.0, 50.0, 100.0]])
            for cls_id, score in self.detections
        ]
        return [SimpleNamespace(boxes=boxes)]
