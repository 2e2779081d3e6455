"""
Tests for signal samplers and landmark geometry
"""

from unittest.mock import patch

import numpy as np
import pytest

from conftest import T0, FakeFaceMesh, FakeYolo, make_landmarks


@pytest.fixture
def image():
    return np.zeros((100, 100, 3), dtype=np.uint8)


class TestGeometry:
    """Tests for EAR and gaze offset helpers"""

    def test_open_eyes_ear(self):
        from proctor_service.proctor.sampling.sampler import eye_aspect_ratio

        landmarks = make_landmarks()
        assert eye_aspect_ratio(landmarks, 100, 100, left=True) == pytest.approx(1 / 3)
        assert eye_aspect_ratio(landmarks, 100, 100, left=False) == pytest.approx(1 / 3)

    def test_closed_eyes_ear(self):
        from proctor_service.proctor.sampling.sampler import eye_aspect_ratio

        assert eye_aspect_ratio(make_landmarks(eyes_closed=True), 100, 100) == pytest.approx(0.0)

    def test_centred_iris(self):
        from proctor_service.proctor.sampling.sampler import gaze_offset

        gx, gy = gaze_offset(make_landmarks(), 100, 100, left=True)
        assert gx == pytest.approx(0.0, abs=1e-9)
        assert gy == pytest.approx(0.0, abs=1e-9)

    def test_shifted_iris(self):
        from proctor_service.proctor.sampling.sampler import gaze_offset

        gx, _ = gaze_offset(make_landmarks(iris_shift=0.03), 100, 100, left=False)
        assert gx == pytest.approx(0.5)

    def test_landmark_box(self):
        from proctor_service.proctor.sampling.sampler import landmark_box

        box = landmark_box(make_landmarks(), 100, 100)
        assert box.x == pytest.approx(40.0)
        assert box.width == pytest.approx(20.0)
        assert box.y == pytest.approx(49.0)
        assert box.height == pytest.approx(2.0)


class TestScriptedSampler:

    def test_replays_then_exhausts(self, make_frame):
        from proctor_service.proctor.sampling import ScriptedSampler, SignalSampler

        frames = [make_frame(0), make_frame(1)]
        sampler = ScriptedSampler(frames)

        assert isinstance(sampler, SignalSampler)
        assert sampler.next_frame() is frames[0]
        assert sampler.next_frame() is frames[1]
        assert sampler.next_frame() is None


class TestVisionSampler:
    """Tests for VisionSampler with injected models"""

    def test_attentive_face_with_phone(self, image):
        from proctor_service.proctor.sampling import VisionSampler

        yolo = FakeYolo()
        sampler = VisionSampler(face_mesh=FakeFaceMesh([make_landmarks()]), object_model=yolo)
        frame = sampler.analyze(image, T0)

        assert frame.timestamp == T0
        assert frame.face_count == 1
        assert frame.gaze_away is False
        assert frame.eyes_closed is False
        assert len(frame.objects) == 1
        obj = frame.objects[0]
        assert obj.object_class == "cell phone"
        assert obj.confidence == pytest.approx(0.91)
        assert (obj.box.x, obj.box.y, obj.box.width, obj.box.height) == (10.0, 20.0, 40.0, 80.0)
        assert yolo.calls == [0.5]

    def test_gaze_away(self, image):
        from proctor_service.proctor.sampling import VisionSampler

        sampler = VisionSampler(
            face_mesh=FakeFaceMesh([make_landmarks(iris_shift=0.03)]),
            object_model=FakeYolo([])
        )
        frame = sampler.analyze(image, T0)

        assert frame.gaze_away is True
        assert frame.objects == []

    def test_closed_eyes_skip_gaze(self, image):
        from proctor_service.proctor.sampling import VisionSampler

        sampler = VisionSampler(
            face_mesh=FakeFaceMesh([make_landmarks(iris_shift=0.03, eyes_closed=True)]),
            object_model=FakeYolo([])
        )
        frame = sampler.analyze(image, T0)

        assert frame.eyes_closed is True
        assert frame.gaze_away is False

    def test_no_iris_landmarks(self, image):
        """Without refined landmarks gaze cannot be judged"""
        from proctor_service.proctor.sampling import VisionSampler

        sampler = VisionSampler(
            face_mesh=FakeFaceMesh([make_landmarks(iris_shift=0.03, count=468)]),
            object_model=FakeYolo([])
        )
        assert sampler.analyze(image, T0).gaze_away is False

    def test_no_and_multiple_faces(self, image):
        from proctor_service.proctor.sampling import VisionSampler

        empty = VisionSampler(face_mesh=FakeFaceMesh([]), object_model=FakeYolo([]))
        assert empty.analyze(image, T0).face_count == 0

        crowd = VisionSampler(
            face_mesh=FakeFaceMesh([make_landmarks(), make_landmarks()]),
            object_model=FakeYolo([])
        )
        assert crowd.analyze(image, T0).face_count == 2

    def test_face_mesh_gets_rgb(self):
        from proctor_service.proctor.sampling import VisionSampler

        bgr = np.zeros((10, 10, 3), dtype=np.uint8)
        bgr[:, :, 0] = 255
        mesh = FakeFaceMesh([])
        VisionSampler(face_mesh=mesh, object_model=FakeYolo([])).analyze(bgr, T0)

        assert mesh.images[0][0, 0].tolist() == [0, 0, 255]

    def test_unknown_class_id(self, image):
        from proctor_service.proctor.sampling import VisionSampler

        sampler = VisionSampler(face_mesh=FakeFaceMesh([]), object_model=FakeYolo([(99, 0.8)]))
        assert sampler.analyze(image, T0).objects[0].object_class == "class_99"

    def test_submit_and_next_frame(self, image, clock):
        from proctor_service.proctor.sampling import VisionSampler

        sampler = VisionSampler(face_mesh=FakeFaceMesh([]), object_model=FakeYolo([]), clock=clock)
        sampler.submit(image)
        clock.advance(2)
        sampler.submit(image)

        assert sampler.next_frame().timestamp == T0
        assert sampler.next_frame().timestamp == clock()
        assert sampler.next_frame() is None

    @pytest.mark.parametrize("bad", [
        np.zeros((0, 0, 3), dtype=np.uint8),
        np.zeros((10, 10), dtype=np.uint8),
    ])
    def test_malformed_image(self, bad):
        from proctor_service.proctor.errors import ProctorValidationError
        from proctor_service.proctor.sampling import VisionSampler

        sampler = VisionSampler(face_mesh=FakeFaceMesh([]), object_model=FakeYolo([]))
        with pytest.raises(ProctorValidationError):
            sampler.analyze(bad, T0)

    def test_missing_vision_dependencies(self, image):
        from proctor_service.proctor.errors import ProctorError
        from proctor_service.proctor.sampling import VisionSampler

        sampler = VisionSampler(object_model=FakeYolo([]))
        with patch(
            "proctor_service.proctor.sampling.models.get_face_mesh",
            side_effect=ImportError("No module named 'mediapipe'")
        ):
            with pytest.raises(ProctorError):
                sampler.analyze(image, T0)

    def test_decode_image(self):
        cv2 = pytest.importorskip("cv2")
        import base64

        from proctor_service.proctor.errors import ProctorValidationError
        from proctor_service.proctor.sampling import VisionSampler

        ok, encoded = cv2.imencode(".png", np.full((8, 12, 3), 127, dtype=np.uint8))
        assert ok
        payload = "data:image/png;base64," + base64.b64encode(encoded.tobytes()).decode()

        assert VisionSampler.decode_image(payload).shape == (8, 12, 3)
        with pytest.raises(ProctorValidationError):
            VisionSampler.decode_image("not base64!!")
        with pytest.raises(ProctorValidationError):
            VisionSampler.decode_image(base64.b64encode(b"garbage").decode())

    def test_concurrent_analyze_is_serialized(self, image):
        """One sampler shared by many sessions runs the models one image at a time"""
        import threading
        import time

        from proctor_service.proctor.sampling import VisionSampler

        class SlowFaceMesh(FakeFaceMesh):
            def __init__(self):
                super().__init__([make_landmarks()])
                self.active = 0
                self.max_active = 0
                self.guard = threading.Lock()

            def process(self, rgb):
                with self.guard:
                    self.active += 1
                    self.max_active = max(self.max_active, self.active)
                time.sleep(0.01)
                with self.guard:
                    self.active -= 1
                return super().process(rgb)

        mesh = SlowFaceMesh()
        sampler = VisionSampler(face_mesh=mesh, object_model=FakeYolo([]))
        threads = [threading.Thread(target=sampler.analyze, args=(image, T0)) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(mesh.images) == 4
        assert mesh.max_active == 1


def test_face_mesh_uses_static_image_mode():
    """Frames from different sessions must not share landmark tracking"""
    import sys
    from types import SimpleNamespace
    from unittest.mock import MagicMock

    from proctor_service.proctor.sampling.models import get_face_mesh

    mp = SimpleNamespace(solutions=SimpleNamespace(face_mesh=SimpleNamespace(FaceMesh=MagicMock())))
    get_face_mesh.cache_clear()
    try:
        with patch.dict(sys.modules, {"mediapipe": mp}):
            get_face_mesh()
    finally:
        get_face_mesh.cache_clear()

    kwargs = mp.solutions.face_mesh.FaceMesh.call_args.kwargs
    assert kwargs["static_image_mode"] is True
    assert kwargs["refine_landmarks"] is True
