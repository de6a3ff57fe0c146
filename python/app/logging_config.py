"""
Centralized logging configuration for the entity advisor.

Features:
- Colored console output for development
- Structured JSON output for production
- Log levels configurable via environment
- Component prefixes ([THINK], [BREAKER], [GUARD], ...) highlighted
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional


# ANSI color codes for terminal output
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"

    # Log levels
    DEBUG = "\033[36m"      # Cyan
    INFO = "\033[32m"       # Green
    WARNING = "\033[33m"    # Yellow
    ERROR = "\033[31m"      # Red
    CRITICAL = "\033[35m"   # Magenta

    # Component prefixes
    THINK = "\033[94m"      # Light blue
    ACT = "\033[96m"        # Light cyan
    OBSERVE = "\033[95m"    # Light magenta
    REFLECT = "\033[90m"    # Grey
    RECOMMEND = "\033[92m"  # Light green
    BREAKER = "\033[93m"    # Light yellow
    GUARD = "\033[91m"      # Light red
    API = "\033[97m"        # White


PREFIX_COLORS = {
    "[THINK]": Colors.THINK,
    "[ACT]": Colors.ACT,
    "[OBSERVE]": Colors.OBSERVE,
    "[REFLECT]": Colors.REFLECT,
    "[RECOMMEND]": Colors.RECOMMEND,
    "[BREAKER]": Colors.BREAKER,
    "[GUARD]": Colors.GUARD,
    "[ERROR]": Colors.ERROR,
    "[API]": Colors.API,
}


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DEBUG,
        logging.INFO: Colors.INFO,
        logging.WARNING: Colors.WARNING,
        logging.ERROR: Colors.ERROR,
        logging.CRITICAL: Colors.CRITICAL,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
        timestamp = self.formatTime(record, "%H:%M:%S")
        level = f"{color}{record.levelname:8}{Colors.RESET}"

        message = record.getMessage()
        for prefix, prefix_color in PREFIX_COLORS.items():
            if message.startswith(prefix):
                message = f"{prefix_color}{Colors.BOLD}{prefix}{Colors.RESET}" + \
                          message[len(prefix):]
                break

        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        # Format: TIME LEVEL MODULE MESSAGE
        module = record.name.split(".")[-1][:15]
        return f"{timestamp} {level} {module:15} {message}"


class JsonFormatter(logging.Formatter):
    """JSON formatter for production logging."""

    EXTRA_KEYS = ("session_id", "event_kind", "breaker", "violation")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in self.EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data)


def setup_logging(
    level: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var.
        json_format: Use JSON format (for production). Defaults to LOG_FORMAT env var.
    """
    log_level = level or os.getenv("LOG_LEVEL", "INFO")
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    use_json = json_format or os.getenv("LOG_FORMAT", "").lower() == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if use_json else ColoredFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers = []
    root_logger.addHandler(handler)

    # Set levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured: level={log_level}, format={'json' if use_json else 'colored'}")
