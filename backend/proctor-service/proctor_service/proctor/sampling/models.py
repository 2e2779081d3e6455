"""
Model Loader - Lazy loading and caching of perception models
"""

import os
import logging
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

# Default weights directory (relative to this file's directory)
MODELS_DIR = os.path.join(os.path.dirname(__file__), "weights")

DEFAULT_YOLO_WEIGHTS = "yolov8n.pt"


@lru_cache(maxsize=1)
def get_face_mesh(max_faces: int = 4):
    """
    Get a MediaPipe FaceMesh instance.

    Iris landmarks (refine_landmarks) are required for gaze estimation.
    Static image mode: consecutive calls may come from different sessions,
    so no landmarks are tracked between frames.
    """
    import mediapipe as mp

    face_mesh = mp.solutions.face_mesh.FaceMesh(
        static_image_mode=True,
        max_num_faces=max_faces,
        refine_landmarks=True,
        min_detection_confidence=0.5,
        min_tracking_confidence=0.5
    )
    logger.info("MediaPipe FaceMesh initialized")
    return face_mesh


@lru_cache(maxsize=2)
def get_yolo_model(model_path: Optional[str] = None):
    """
    Get a YOLO model for object detection.

    Args:
        model_path: Explicit weights path. Falls back to weights/ and then
                    to the stock COCO model, whose classes include
                    "cell phone", "book" and "laptop".
    """
    from ultralytics import YOLO

    possible_paths = [p for p in (
        model_path,
        os.path.join(MODELS_DIR, DEFAULT_YOLO_WEIGHTS),
    ) if p]

    for path in possible_paths:
        if os.path.exists(path):
            logger.info(f"Loading YOLO model from: {path}")
            return YOLO(path)

    logger.warning(f"YOLO weights not found locally, using {DEFAULT_YOLO_WEIGHTS}")
    return YOLO(DEFAULT_YOLO_WEIGHTS)


def check_models() -> dict:
    """
    Check which perception libraries are importable.

    Returns:
        Dict with availability per library
    """
    status = {
        "opencv": False,
        "mediapipe": False,
        "ultralytics": False,
    }

    try:
        import cv2  # noqa: F401
        status["opencv"] = True
    except ImportError:
        pass

    try:
        import mediapipe  # noqa: F401
        status["mediapipe"] = True
    except ImportError:
        pass

    try:
        import ultralytics  # noqa: F401
        status["ultralytics"] = True
    except ImportError:
        pass

    return status
