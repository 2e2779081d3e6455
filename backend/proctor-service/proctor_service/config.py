"""
Proctor Service Configuration Settings

Detection thresholds, store backend and logging options.
All values can be overridden from the environment or a .env file.
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Configuration for the proctoring integrity service."""

    # API Settings
    APP_NAME: str = "Proctor Integrity Service"
    DEBUG: bool = True
    PORT: int = 8002

    # Store Settings ("memory" or "sql")
    STORE_BACKEND: str = "memory"
    DATABASE_URL: str = "sqlite:///./proctor.db"

    # Event State Machine thresholds
    FOCUS_LOSS_SECONDS: float = 5.0   # continuous gaze-away before focus_lost
    NO_FACE_SECONDS: float = 10.0     # continuous absence before no_face
    SUSPICIOUS_CONFIDENCE: float = 0.7
    SUSPICIOUS_OBJECT_CLASSES: List[str] = [
        "cell phone",
        "mobile phone",
        "smartphone",
        "book",
        "notebook",
        "paper",
        "laptop",
        "tablet",
        "monitor",
        "screen",
    ]
    COMMUNICATION_DEVICE_CLASSES: List[str] = ["phone"]

    # Event queries
    DEFAULT_EVENT_LIMIT: int = 50

    # Vision sampler
    YOLO_MODEL_PATH: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
