"""
Centralized logging setup for meshcall processes.
"""
import logging
import datetime
import json
import os
import sys
import tempfile
from typing import Any, Optional


def _resolve_log_dir() -> str:
    """Determine a writable log directory."""
    candidates = []

    env_dir = os.environ.get("MESH_LOG_DIR")
    if env_dir:
        candidates.append(env_dir)

    candidates.append(os.path.join(tempfile.gettempdir(), "meshcall-logs"))

    for directory in candidates:
        try:
            os.makedirs(directory, exist_ok=True)
            if os.access(directory, os.W_OK):
                return directory
        except OSError:
            continue

    # Last resort: current working directory
    return os.getcwd()


def setup_logging(level: str = "INFO", log_file: str = "meshcall.log") -> logging.Logger:
    """Setup logging configuration with file output."""
    log_dir = _resolve_log_dir()
    log_path = os.path.join(log_dir, log_file)

    handlers = [logging.StreamHandler()]

    try:
        handlers.append(logging.FileHandler(log_path, mode='a', encoding='utf-8'))
    except OSError as e:
        print(f"WARNING: Cannot write to log file {log_path}: {e}", file=sys.stderr)
        print("Logging to console only", file=sys.stderr)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers
    )

    # aiortc and aioice are very chatty at DEBUG
    logging.getLogger("aioice").setLevel(logging.WARNING)

    logger = logging.getLogger("meshcall")
    logger.info(f"Logging initialized - output will be written to: {log_path if len(handlers) > 1 else 'console only'}")

    return logger


def debug_log(message: str, data: Optional[Any] = None, level: str = "INFO",
              logger: Optional[logging.Logger] = None) -> None:
    """
    Structured logging helper.

    Args:
        message: The log message
        data: Optional data to log
        level: Log level (INFO, DEBUG, WARNING, ERROR)
        logger: Logger to write to; defaults to the "meshcall" logger
    """
    logger = logger or logging.getLogger("meshcall")
    log_level = getattr(logging, level.upper())
    if not logger.isEnabledFor(log_level):
        return

    timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]

    if data:
        if isinstance(data, dict):
            data_str = json.dumps(data, indent=2, default=str)
            logger.log(log_level, f"[{timestamp}] {message}\nData: {data_str}")
        else:
            logger.log(log_level, f"[{timestamp}] {message} - {data}")
    else:
        logger.log(log_level, f"[{timestamp}] {message}")


class LoggerMixin:
    """Mixin class to add logging capabilities to other classes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def log_debug(self, message: str, data: Optional[Any] = None):
        """Log debug message."""
        debug_log(message, data, "DEBUG", self.logger)

    def log_info(self, message: str, data: Optional[Any] = None):
        """Log info message."""
        debug_log(message, data, "INFO", self.logger)

    def log_warning(self, message: str, data: Optional[Any] = None):
        """Log warning message."""
        debug_log(message, data, "WARNING", self.logger)

    def log_error(self, message: str, data: Optional[Any] = None):
        """Log error message."""
        debug_log(message, data, "ERROR", self.logger)
