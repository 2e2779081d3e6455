"""Storage backends for sessions, events and statistics"""

import logging

from .base import ProctorStore
from .memory import InMemoryStore

logger = logging.getLogger(__name__)


def create_store(settings) -> ProctorStore:
    """
    Build the store selected by STORE_BACKEND ("memory" or "sql").

    Raises:
        ValueError: for an unknown backend
    """
    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        logger.info("[STORE] Using in-memory store")
        return InMemoryStore()
    if backend == "sql":
        from .sql import SqlStore
        return SqlStore(settings.DATABASE_URL, echo=False)
    raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")


__all__ = ["ProctorStore", "InMemoryStore", "create_store"]
