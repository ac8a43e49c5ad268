from __future__ import annotations
import logging
import sys
import json
from typing import Optional
from datetime import datetime, timezone
from pathlib import Path

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRIBUTES = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message'
}

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = "gov-standards"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        message = f"{timestamp} | {record.levelname:8} | {record.name} | {record.getMessage()}"

        if self.use_colors and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            message = f"{color}{message}{self.RESET}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message

def setup_logging(
    level: str = "INFO",
    service_name: str = "gov-standards",
    log_file: Optional[str] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Setup logging configuration.

    Console output goes to stderr so that stdout stays free for command
    output (the CLI prints JSON there).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Name of the service for structured logging
        log_file: Optional file path for file logging
        use_json: Whether to use JSON formatting
        use_colors: Whether to use colored output for console
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)

    if use_json:
        console_formatter = JSONFormatter(service_name)
    else:
        console_formatter = ColoredFormatter(use_colors and sys.stderr.isatty())

    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)

        # Always use JSON for file logging
        file_handler.setFormatter(JSONFormatter(service_name))
        root_logger.addHandler(file_handler)

    # Model downloads are noisy at INFO
    logging.getLogger("sentence_transformers").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)

def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
