"""Logging utilities"""

from .logging import Colors, log_error, log_request, log_startup
from .logging_config import setup_logging

__all__ = ["Colors", "log_error", "log_request", "log_startup", "setup_logging"]
