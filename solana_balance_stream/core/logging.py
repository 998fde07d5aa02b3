"""
Structured logging with optional sampling and Sentry integration.

The CLI installs a rich console handler itself; this module adds the
handlers enabled under the ``logging`` configuration section: a plain or
JSON console handler, a rotating JSON file handler and Sentry error
reporting.
"""

import json
import logging
import logging.handlers
import random
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName',
}


class StructuredFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON.

    Attributes passed through ``extra=`` are included under ``"extra"``.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            extra_fields = {}
            for key, value in record.__dict__.items():
                if key in _RESERVED_ATTRS:
                    continue
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class SamplingFilter(logging.Filter):
    """Lets through only ``sample_rate`` of DEBUG records."""

    def __init__(self, sample_rate: float = 0.01):
        super().__init__()
        self.sample_rate = sample_rate

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.DEBUG:
            return True
        return random.random() < self.sample_rate


class LoggingManager:
    """Installs and removes the handlers described by the logging config."""

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.handlers: List[logging.Handler] = []
        self.sentry_initialized = False

    def setup_logging(self, level: Optional[int] = None) -> None:
        """Set up the configured handlers on the root logger.

        Args:
            level: Package log level; overrides ``logging.level`` when given
        """
        log_config = self.config.get('logging', {})

        if level is None:
            level = getattr(logging, str(log_config.get('level', 'INFO')).upper())
        root_logger = logging.getLogger()

        # Only handlers installed by a previous call are replaced.
        for handler in self.handlers:
            root_logger.removeHandler(handler)
        self.handlers = []

        self._setup_console_handler(log_config)
        self._setup_file_handler(log_config)
        self._setup_sentry(log_config)

        sampling_rate = log_config.get('sampling_rate', 1.0)
        if sampling_rate < 1.0:
            sampling_filter = SamplingFilter(sampling_rate)
            for handler in self.handlers:
                if handler.level <= logging.DEBUG:
                    handler.addFilter(sampling_filter)

        for handler in self.handlers:
            root_logger.addHandler(handler)

        logging.getLogger('solana_balance_stream').setLevel(level)
        logging.getLogger('websockets').setLevel(logging.WARNING)
        logging.getLogger('aiohttp').setLevel(logging.WARNING)

    def _setup_console_handler(self, log_config: Dict[str, Any]) -> None:
        console_config = log_config.get('handlers', {}).get('console', {})

        if not console_config.get('enabled', False):
            return

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, console_config.get('level', 'INFO').upper()))

        if log_config.get('structured', False):
            formatter = StructuredFormatter()
        else:
            format_str = log_config.get('format',
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            formatter = logging.Formatter(format_str)

        handler.setFormatter(formatter)
        self.handlers.append(handler)

    def _setup_file_handler(self, log_config: Dict[str, Any]) -> None:
        """Set up file logging handler with rotation."""
        file_config = log_config.get('handlers', {}).get('file', {})

        if not file_config.get('enabled', False):
            return

        log_file = Path(file_config.get('filename', 'logs/solana_balance_stream.log'))
        log_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=file_config.get('max_bytes', 10 * 1024 * 1024),
            backupCount=file_config.get('backup_count', 5)
        )
        handler.setLevel(getattr(logging, file_config.get('level', 'DEBUG').upper()))
        handler.setFormatter(StructuredFormatter())

        self.handlers.append(handler)

    def _setup_sentry(self, log_config: Dict[str, Any]) -> None:
        sentry_config = log_config.get('handlers', {}).get('sentry', {})

        if not sentry_config.get('enabled', False):
            return

        dsn = sentry_config.get('dsn')
        if not dsn:
            logging.getLogger(__name__).warning("Sentry enabled but no DSN configured")
            return

        sentry_logging = LoggingIntegration(
            level=getattr(logging, sentry_config.get('level', 'ERROR').upper()),
            event_level=logging.ERROR
        )

        sentry_sdk.init(
            dsn=dsn,
            environment=sentry_config.get('environment', 'development'),
            integrations=[sentry_logging],
            traces_sample_rate=sentry_config.get('traces_sample_rate', 0.0),
            attach_stacktrace=True,
            send_default_pii=False,
        )

        self.sentry_initialized = True
        logging.getLogger(__name__).info("Sentry error reporting initialized")

    def capture_exception(self, exception: Exception, extra: Dict[str, Any] = None) -> None:
        """Capture an exception with Sentry."""
        if not self.sentry_initialized:
            return

        with sentry_sdk.new_scope() as scope:
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)


_logging_manager: Optional[LoggingManager] = None


def get_logging_manager() -> LoggingManager:
    """Get the global logging manager instance."""
    global _logging_manager
    if _logging_manager is None:
        _logging_manager = LoggingManager()
    return _logging_manager


def setup_logging(config: Dict[str, Any] = None, level: Optional[int] = None) -> None:
    """Set up the global logging system."""
    manager = get_logging_manager()
    if config:
        manager.config = config
    manager.setup_logging(level)


def capture_exception(exception: Exception, extra: Dict[str, Any] = None) -> None:
    """Capture an exception for error reporting."""
    get_logging_manager().capture_exception(exception, extra)
