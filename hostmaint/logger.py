"""
Logging configuration for hostmaint.

This module provides the logging setup shared by all jobs:
- Console output with optional colors
- Rotating application log file
- Per-run job log with one ISO-8601 timestamped line per event
- Optional syslog integration and JSON formatting

File handlers are best-effort: a full or read-only disk must never make a
job fail, so write errors are reported once on stderr and otherwise ignored.
"""

import sys
import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Union

APP_LOGGER = "hostmaint"
JOB_LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
ISO_DATE_FORMAT = '%Y-%m-%dT%H:%M:%S%z'

# ANSI color codes for console output
COLORS = {
    'DEBUG': '\033[36m',     # Cyan
    'INFO': '\033[32m',      # Green
    'WARNING': '\033[33m',   # Yellow
    'ERROR': '\033[31m',     # Red
    'CRITICAL': '\033[41m',  # Red background
    'RESET': '\033[0m'       # Reset
}

class ColoredFormatter(logging.Formatter):
    """Custom formatter for colored console output."""

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, use_colors: bool = True):
        """
        Initialize the colored formatter.

        Args:
            fmt: Log message format string
            datefmt: Date format string
            use_colors: Whether to enable colored output
        """
        super().__init__(fmt, datefmt)
        # Only use colors if output is to a terminal
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with optional color."""
        message = super().format(record)
        if self.use_colors and record.levelname in COLORS:
            return f"{COLORS[record.levelname]}{message}{COLORS['RESET']}"
        return message

class JsonFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Convert log record to JSON string."""
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).astimezone().isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'process': record.process
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)

class BestEffortMixin:
    """Handler mixin that reports write errors once instead of raising."""

    _reported = False

    def handleError(self, record: logging.LogRecord) -> None:
        if not self._reported:
            self._reported = True
            exc = sys.exc_info()[1]
            try:
                sys.stderr.write(
                    f"Warning: could not write log to {getattr(self, 'baseFilename', '?')}: {exc}\n"
                )
            except Exception:
                pass

class BestEffortFileHandler(BestEffortMixin, logging.FileHandler):
    """Append-only file handler tolerant of write errors."""
    pass

class BestEffortRotatingFileHandler(BestEffortMixin, logging.handlers.RotatingFileHandler):
    """Rotating file handler tolerant of write errors."""
    pass

class LogManager:
    """Manages logging configuration and setup."""

    def __init__(
        self,
        config: Dict[str, Any],
        app_name: str = APP_LOGGER
    ):
        """
        Initialize the log manager.

        Args:
            config: Configuration dictionary with logging settings
            app_name: Name of the logger all package loggers propagate to
        """
        self.config = config
        self.app_name = app_name
        self.logger = logging.getLogger(app_name)

        self.log_level = getattr(logging, str(config.get('LOG_LEVEL', 'INFO')).upper())
        self.log_dir = Path(config.get('LOG_DIR', f"/var/log/{app_name}"))
        self.log_file = config.get('LOG_FILE', str(self.log_dir / f"{app_name}.log"))
        self.max_bytes = config.get('MAX_LOG_SIZE', 10 * 1024 * 1024)  # 10MB default
        self.backup_count = config.get('LOG_BACKUP_COUNT', 5)
        self.use_json = config.get('LOG_JSON', False)
        self.use_syslog = config.get('USE_SYSLOG', False)
        self.use_colors = config.get('LOG_COLORS', True)

    def setup(self) -> None:
        """Set up logging configuration with all configured handlers."""
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False

        # Remove any existing handlers
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self._setup_console_handler()
        if self.log_file:
            self._setup_file_handler()

        if self.use_syslog:
            self._setup_syslog_handler()

    def _setup_console_handler(self) -> None:
        """Set up console (stderr) logging handler."""
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(self.log_level)

        formatter = ColoredFormatter(
            fmt='%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            use_colors=self.use_colors
        )
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

    def _setup_file_handler(self) -> None:
        """Set up file logging handler with rotation."""
        try:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = BestEffortRotatingFileHandler(
                self.log_file,
                maxBytes=self.max_bytes,
                backupCount=self.backup_count
            )
        except OSError as e:
            sys.stderr.write(f"Warning: Could not open log file {self.log_file}: {e}\n")
            return

        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(self._file_formatter(
            '%(asctime)s - [%(process)d] - %(name)s - %(levelname)s - %(message)s'
        ))
        self.logger.addHandler(file_handler)

    def _setup_syslog_handler(self) -> None:
        """Set up syslog logging handler."""
        try:
            syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
        except OSError as e:
            sys.stderr.write(f"Warning: Could not set up syslog handler: {e}\n")
            return

        syslog_handler.setLevel(self.log_level)
        syslog_handler.setFormatter(logging.Formatter(
            fmt='%(name)s[%(process)d]: %(levelname)s - %(message)s'
        ))
        self.logger.addHandler(syslog_handler)

    def _file_formatter(self, fmt: str) -> logging.Formatter:
        if self.use_json:
            return JsonFormatter()
        return logging.Formatter(fmt=fmt, datefmt=ISO_DATE_FORMAT)

    def add_job_log(self, category: str, level: Union[str, int] = 'DEBUG') -> Optional[Path]:
        """
        Add a per-run job log file.

        The file is named <LOG_DIR>/<category>_<YYYYmmdd_HHMMSS>.log and gets
        one line per event: ISO-8601 timestamp, level and message.

        Args:
            category: Job category key
            level: Logging level (name or number)

        Returns:
            Path of the job log, or None if it could not be opened
        """
        path = self.log_dir / f"{category}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handler = BestEffortFileHandler(str(path))
        except OSError as e:
            sys.stderr.write(f"Warning: Could not open job log {path}: {e}\n")
            return None

        handler.setLevel(level if isinstance(level, int) else getattr(logging, level))
        handler.setFormatter(self._file_formatter(JOB_LOG_FORMAT))
        self.logger.addHandler(handler)
        if self.logger.level > handler.level:
            self.logger.setLevel(handler.level)
        return path

def setup_logging(
    config: Dict[str, Any],
    app_name: str = APP_LOGGER
) -> LogManager:
    """
    Set up logging configuration.

    Args:
        config: Configuration dictionary
        app_name: Application logger name

    Returns:
        The configured LogManager
    """
    manager = LogManager(config, app_name)
    manager.setup()
    return manager
