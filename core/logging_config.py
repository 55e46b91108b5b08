"""
Logging configuration for Scoutarr.
Handles log setup and rotation.
"""

import logging
import os
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Global lock for thread-safe console output
_console_lock = threading.RLock()

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(threadName)s] %(name)s - %(message)s'

LEVEL_MAPPING = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = (
    "urllib3",
    "urllib3.connectionpool",
    "requests",
    "apscheduler",
    "apscheduler.scheduler",
    "apscheduler.executors.default",
)


class ThreadSafeStreamHandler(logging.StreamHandler):
    """A StreamHandler that serializes writes across scheduler and request threads."""

    def emit(self, record):
        with _console_lock:
            super().emit(record)


def parse_log_level(level: str) -> int:
    """Map a config level name to a logging level, defaulting to INFO."""
    if not level:
        return logging.INFO
    mapped = LEVEL_MAPPING.get(level.lower())
    if mapped is None:
        logging.warning(f"Invalid log_level: {level}. Using default level: INFO")
        return logging.INFO
    return mapped


def suppress_noisy_loggers() -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class LoggingManager:
    """Manages logging configuration and setup."""

    def __init__(self, logs_folder: str, log_level: str = "", max_log_files: int = 5):
        self.logs_folder = Path(logs_folder)
        self.log_level = log_level
        self.max_log_files = max_log_files
        self.log_file_pattern = "scoutarr_log_*.log"
        self.logger = logging.getLogger()
        self._handlers = []

    def setup_logging(self) -> None:
        """Set up logging configuration."""
        self._ensure_logs_folder()
        self._setup_handlers()
        self.set_level(self.log_level)
        self._clean_old_log_files()
        suppress_noisy_loggers()

    def _ensure_logs_folder(self) -> None:
        if not self.logs_folder.exists():
            try:
                self.logs_folder.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                raise PermissionError(f"{self.logs_folder} not writable, please fix the variable accordingly.")

    def _setup_handlers(self) -> None:
        """Add the rotating file handler and console handler."""
        current_time = datetime.now().strftime("%Y%m%d_%H%M")
        log_file = self.logs_folder / f"scoutarr_log_{current_time}.log"
        latest_log_file = self.logs_folder / "scoutarr_log_latest.log"

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=20*1024*1024,
            backupCount=self.max_log_files
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(file_handler)
        self._handlers.append(file_handler)

        console_handler = ThreadSafeStreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(console_handler)
        self._handlers.append(console_handler)

        try:
            if latest_log_file.exists() or latest_log_file.is_symlink():
                latest_log_file.unlink()
            latest_log_file.symlink_to(log_file)
        except OSError as e:
            logging.debug(f"Could not update latest log symlink: {e}")

    def set_level(self, level: str) -> None:
        self.log_level = level
        self.logger.setLevel(parse_log_level(level))

    def _clean_old_log_files(self) -> None:
        """Clean old log files to maintain the maximum count."""
        existing_log_files = list(self.logs_folder.glob(self.log_file_pattern))
        existing_log_files = [f for f in existing_log_files if not f.is_symlink()]
        existing_log_files.sort(key=lambda x: x.stat().st_mtime)

        while len(existing_log_files) > self.max_log_files:
            os.remove(existing_log_files.pop(0))

    def shutdown(self) -> None:
        """Detach the handlers added by setup_logging."""
        for handler in self._handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers = []
