"""
Signal Samplers - Produce Detection Frames for the event state machine

- ScriptedSampler: replays a fixed frame sequence (tests, offline replays)
- VisionSampler: runs MediaPipe FaceMesh and YOLO on webcam images

Eye and gaze geometry uses MediaPipe FaceMesh landmark indices
(468 points plus 10 iris points when refine_landmarks is on).
"""

import base64
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Deque, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

import numpy as np

from ..errors import ProctorError, ProctorValidationError
from ..schemas import BoundingBox, DetectionFrame, FaceDetection, ObjectDetection, ensure_utc, utcnow

logger = logging.getLogger(__name__)


@runtime_checkable
class SignalSampler(Protocol):
    """Anything that can produce the next Detection Frame."""

    def next_frame(self) -> Optional[DetectionFrame]:
        """Return the next frame, or None when no frame is available."""
        ...


class ScriptedSampler:
    """Replays a fixed sequence of frames, then returns None."""

    def __init__(self, frames: Iterable[DetectionFrame]):
        self._frames: Deque[DetectionFrame] = deque(frames)

    def next_frame(self) -> Optional[DetectionFrame]:
        if not self._frames:
            return None
        return self._frames.popleft()

    def __len__(self) -> int:
        return len(self._frames)


# ============================================================================
# Landmark geometry
# ============================================================================

LEFT_EYE = {"outer": 33, "inner": 133, "up1": 159, "up2": 158, "dn1": 145, "dn2": 153}
RIGHT_EYE = {"outer": 263, "inner": 362, "up1": 386, "up2": 385, "dn1": 374, "dn2": 380}
LEFT_IRIS = [468, 469, 470, 471]
RIGHT_IRIS = [473, 474, 475, 476]
IRIS_LANDMARK_COUNT = 478


def _point(landmarks, idx: int, width: int, height: int) -> np.ndarray:
    p = landmarks[idx]
    return np.array([p.x * width, p.y * height], dtype=np.float64)


def eye_aspect_ratio(landmarks, width: int, height: int, left: bool = True) -> float:
    """
    Eye Aspect Ratio (EAR).

    EAR = (||up1-dn1|| + ||up2-dn2||) / (2 * ||outer-inner||)
    """
    eye = LEFT_EYE if left else RIGHT_EYE
    outer = _point(landmarks, eye["outer"], width, height)
    inner = _point(landmarks, eye["inner"], width, height)
    up1 = _point(landmarks, eye["up1"], width, height)
    dn1 = _point(landmarks, eye["dn1"], width, height)
    up2 = _point(landmarks, eye["up2"], width, height)
    dn2 = _point(landmarks, eye["dn2"], width, height)

    num = np.linalg.norm(up1 - dn1) + np.linalg.norm(up2 - dn2)
    den = max(1e-5, 2 * np.linalg.norm(outer - inner))
    return float(num / den)


def gaze_offset(landmarks, width: int, height: int, left: bool = True) -> Tuple[float, float]:
    """
    Iris offset from the eye centre, normalized by eye width and height.

    Returns:
        (horizontal, vertical) offsets; 0 means looking straight ahead
    """
    eye = LEFT_EYE if left else RIGHT_EYE
    outer = _point(landmarks, eye["outer"], width, height)
    inner = _point(landmarks, eye["inner"], width, height)
    up = _point(landmarks, eye["up1"], width, height)
    dn = _point(landmarks, eye["dn1"], width, height)

    iris_idx = LEFT_IRIS if left else RIGHT_IRIS
    iris = np.mean([_point(landmarks, i, width, height) for i in iris_idx], axis=0)

    center = (outer + inner) / 2.0
    eye_width = max(1e-5, np.linalg.norm(outer - inner))
    eye_height = max(1e-5, np.linalg.norm(up - dn))
    offset = (iris - center) / np.array([eye_width, eye_height])
    return float(offset[0]), float(offset[1])


def landmark_box(landmarks, width: int, height: int) -> BoundingBox:
    xs = [p.x * width for p in landmarks]
    ys = [p.y * height for p in landmarks]
    x_min, y_min = min(xs), min(ys)
    return BoundingBox(x=x_min, y=y_min, width=max(xs) - x_min, height=max(ys) - y_min)


def _class_name(names: Any, cls_id: int) -> str:
    if isinstance(names, dict):
        return names.get(cls_id, f"class_{cls_id}")
    if 0 <= cls_id < len(names):
        return names[cls_id]
    return f"class_{cls_id}"


# ============================================================================
# Vision sampler
# ============================================================================

class VisionSampler:
    """
    Turns webcam images into Detection Frames.

    Images are BGR arrays (OpenCV convention). Models are loaded lazily on
    first use unless injected.
    """

    DEFAULT_EAR_THRESHOLD = 0.21
    DEFAULT_GAZE_OFFSET_X = 0.35
    DEFAULT_GAZE_OFFSET_Y = 0.28
    DEFAULT_OBJECT_CONFIDENCE = 0.5

    def __init__(
        self,
        face_mesh: Any = None,
        object_model: Any = None,
        model_path: Optional[str] = None,
        ear_threshold: float = DEFAULT_EAR_THRESHOLD,
        gaze_offset_x: float = DEFAULT_GAZE_OFFSET_X,
        gaze_offset_y: float = DEFAULT_GAZE_OFFSET_Y,
        object_confidence: float = DEFAULT_OBJECT_CONFIDENCE,
        clock=utcnow
    ):
        """
        Args:
            face_mesh: Object with process(rgb_image) like mediapipe FaceMesh
            object_model: Object with predict(image, conf, verbose) and names like YOLO
            model_path: YOLO weights path used when object_model is not given
            ear_threshold: Mean EAR below which eyes count as closed
            gaze_offset_x: Horizontal iris offset beyond which gaze is away
            gaze_offset_y: Vertical iris offset beyond which gaze is away
            object_confidence: Minimum detector confidence passed to YOLO
            clock: Timestamp source for frames submitted without one
        """
        self.face_mesh = face_mesh
        self.object_model = object_model
        self.model_path = model_path
        self.ear_threshold = ear_threshold
        self.gaze_offset_x = gaze_offset_x
        self.gaze_offset_y = gaze_offset_y
        self.object_confidence = object_confidence
        self.clock = clock
        self._pending: Deque[Tuple[np.ndarray, datetime]] = deque()
        # FaceMesh and YOLO are not safe for concurrent calls
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # SignalSampler
    # ------------------------------------------------------------------

    def submit(self, image: np.ndarray, timestamp: Optional[datetime] = None):
        """Queue an image for the next call to next_frame()"""
        self._pending.append((image, ensure_utc(timestamp) if timestamp else self.clock()))

    def next_frame(self) -> Optional[DetectionFrame]:
        if not self._pending:
            return None
        image, timestamp = self._pending.popleft()
        return self.analyze(image, timestamp)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    @staticmethod
    def decode_image(image_base64: str) -> np.ndarray:
        """
        Decode a base64 JPEG/PNG (optionally a data URL) into a BGR array.

        Raises:
            ProctorValidationError: if the payload is not a decodable image
        """
        try:
            import cv2
        except ImportError as e:
            raise ProctorError("OpenCV unavailable; install the 'vision' extra") from e

        try:
            frame_bytes = base64.b64decode(image_base64.split(",")[-1], validate=True)
        except (ValueError, TypeError) as e:
            raise ProctorValidationError("Invalid base64 frame data") from e

        frame_array = np.frombuffer(frame_bytes, dtype=np.uint8)
        frame = cv2.imdecode(frame_array, cv2.IMREAD_COLOR) if frame_array.size else None
        if frame is None:
            raise ProctorValidationError("Invalid frame data")
        return frame

    def analyze(self, image: np.ndarray, timestamp: Optional[datetime] = None) -> DetectionFrame:
        """
        Run face mesh and object detection on one image.

        Args:
            image: BGR image
            timestamp: Capture time; defaults to the sampler clock

        Returns:
            DetectionFrame with faces, objects, gaze and eyes-closed flags
        """
        if image is None or getattr(image, "size", 0) == 0 or image.ndim != 3:
            raise ProctorValidationError("Empty or malformed image")

        height, width = image.shape[:2]
        timestamp = ensure_utc(timestamp) if timestamp else self.clock()

        with self._lock:
            self._ensure_models()
            faces, gaze_away, eyes_closed = self._detect_faces(image, width, height)
            objects = self._detect_objects(image)

        return DetectionFrame(
            timestamp=timestamp,
            faces=faces,
            objects=objects,
            gaze_away=gaze_away,
            eyes_closed=eyes_closed
        )

    def _ensure_models(self):
        """Lazy load FaceMesh and YOLO"""
        if self.face_mesh is not None and self.object_model is not None:
            return

        from .models import get_face_mesh, get_yolo_model

        try:
            if self.face_mesh is None:
                self.face_mesh = get_face_mesh()
            if self.object_model is None:
                self.object_model = get_yolo_model(self.model_path)
        except ImportError as e:
            logger.error(f"Vision dependencies missing: {e}")
            raise ProctorError("Vision models unavailable; install the 'vision' extra") from e

    def _detect_faces(self, image: np.ndarray, width: int, height: int) -> Tuple[List[FaceDetection], bool, bool]:
        # FaceMesh expects RGB
        rgb = np.ascontiguousarray(image[:, :, ::-1])
        result = self.face_mesh.process(rgb)
        face_landmarks = getattr(result, "multi_face_landmarks", None) or []

        faces = [
            FaceDetection(box=landmark_box(face.landmark, width, height))
            for face in face_landmarks
        ]
        if not face_landmarks:
            return faces, False, False

        # Gaze and eyes are judged on the primary face
        landmarks = face_landmarks[0].landmark
        ear = (
            eye_aspect_ratio(landmarks, width, height, True)
            + eye_aspect_ratio(landmarks, width, height, False)
        ) / 2.0
        eyes_closed = ear < self.ear_threshold

        gaze_away = False
        if len(landmarks) >= IRIS_LANDMARK_COUNT and not eyes_closed:
            gx_l, gy_l = gaze_offset(landmarks, width, height, True)
            gx_r, gy_r = gaze_offset(landmarks, width, height, False)
            gx = (gx_l + gx_r) / 2.0
            gy = (gy_l + gy_r) / 2.0
            gaze_away = abs(gx) > self.gaze_offset_x or abs(gy) > self.gaze_offset_y

        return faces, gaze_away, eyes_closed

    def _detect_objects(self, image: np.ndarray) -> List[ObjectDetection]:
        results = self.object_model.predict(image, conf=self.object_confidence, verbose=False)
        names = self.object_model.names

        objects = []
        for result in results:
            if result.boxes is None:
                continue
            for box in result.boxes:
                cls_id = int(box.cls[0])
                x1, y1, x2, y2 = [float(v) for v in box.xyxy[0]]
                objects.append(ObjectDetection(
                    object_class=_class_name(names, cls_id),
                    confidence=float(box.conf[0]),
                    box=BoundingBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1)
                ))
        return objects
