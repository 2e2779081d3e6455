"""
Terminal Logging Helpers

Colored console formatter, startup banner and request/error lines used
by the application middleware.
"""
import logging
from datetime import datetime
from typing import Optional


# ============================================================================
# ANSI Colors for Terminal
# ============================================================================

class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BG_RED = "\033[41m"


class ColoredFormatter(logging.Formatter):
    """Colored formatter for terminal output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DIM + Colors.WHITE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BG_RED + Colors.WHITE,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]

        level_str = f"{color}{record.levelname:8}{Colors.RESET}"
        time_str = f"{Colors.DIM}{timestamp}{Colors.RESET}"
        name_str = f"{Colors.CYAN}{record.name}{Colors.RESET}"

        message = f"{time_str} {level_str} [{name_str}] {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


api_logger = logging.getLogger("API")


def log_request(method: str, path: str, status: int, duration_ms: int):
    """Log a completed request."""
    color = Colors.GREEN if status < 400 else Colors.RED
    api_logger.info(f"{method} {path} -> {color}{status}{Colors.RESET} in {duration_ms}ms")


def log_error(error_type: str, message: str, request_id: Optional[str] = None):
    """Log error."""
    api_logger.error(f"{error_type}: {message}")
    if request_id:
        api_logger.error(f"  Request ID: {request_id}")


def log_startup(service_name: str, port: int):
    """Log service startup."""
    print(f"\n{Colors.BOLD}{Colors.GREEN}{'='*60}{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.GREEN}  {service_name} STARTED{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.GREEN}{'='*60}{Colors.RESET}")
    print(f"  Running on: {Colors.CYAN}http://localhost:{port}{Colors.RESET}")
    print(f"  Docs: {Colors.CYAN}http://localhost:{port}/docs{Colors.RESET}")
    print(f"\n{Colors.DIM}Waiting for requests...{Colors.RESET}\n")
