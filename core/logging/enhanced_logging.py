# Structured logging setup: console + rotating file, routed through structlog
import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional, Any
import structlog

from core.config.settings import Settings
from .correlation import CorrelationIdManager

# Global logger manager instance
_logger_manager: Optional['LoggerManager'] = None

DEFAULT_REDACT_KEYS = (
    'authorization', 'access_token', 'access-token', 'api_key', 'api_secret',
    'password', 'secret', 'token',
)


def add_correlation_id(logger, name, event_dict):
    """Attach the active correlation id and context to every event."""
    correlation_id = CorrelationIdManager.get_correlation_id()
    if correlation_id:
        event_dict.setdefault('correlation_id', correlation_id)
        correlation_context = CorrelationIdManager.get_correlation_context()
        if correlation_context:
            event_dict.setdefault('correlation_context', correlation_context)
    return event_dict


def make_redactor(keys):
    """Build a processor that masks sensitive keys recursively."""
    keys_to_redact = {k.lower() for k in (keys or DEFAULT_REDACT_KEYS)}

    def _redact(obj):
        if isinstance(obj, dict):
            out = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in keys_to_redact:
                    out[k] = '[REDACTED]'
                else:
                    out[k] = _redact(v)
            return out
        if isinstance(obj, list):
            return [_redact(v) for v in obj]
        return obj

    def redact_sensitive(logger, name, event_dict):
        return _redact(event_dict)

    return redact_sensitive


class LoggerManager:
    """Configures stdlib handlers and structlog once per process."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.configured_loggers: Dict[str, structlog.BoundLogger] = {}
        self._setup_logging()

    def _level(self) -> int:
        return getattr(logging, self.settings.logging.level.upper(), logging.INFO)

    def _foreign_chain(self):
        return [
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
        ]

    def _setup_logging(self) -> None:
        root_logger = logging.getLogger()
        root_logger.setLevel(self._level())

        if self.settings.logging.console_enabled:
            self._setup_console_logging(root_logger)
        if self.settings.logging.file_enabled:
            self._setup_file_logging(root_logger)

        self._configure_structlog()

    def _setup_console_logging(self, root_logger: logging.Logger) -> None:
        """Setup console logging with configurable format."""
        for handler in root_logger.handlers:
            if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) == sys.stdout:
                return

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self._level())
        console_processor = (
            structlog.processors.JSONRenderer()
            if self.settings.logging.console_json_format
            else structlog.dev.ConsoleRenderer()
        )
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=console_processor,
                foreign_pre_chain=self._foreign_chain(),
            )
        )
        root_logger.addHandler(console_handler)

    def _setup_file_logging(self, root_logger: logging.Logger) -> None:
        """Setup rotating JSON file logging."""
        logs_dir = Path(self.settings.logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_file = logs_dir / "signal_relay.log"

        for handler in root_logger.handlers:
            if (isinstance(handler, logging.handlers.RotatingFileHandler) and
                    Path(handler.baseFilename) == log_file.resolve()):
                return

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=self._parse_size(self.settings.logging.file_max_size),
            backupCount=self.settings.logging.file_backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(self._level())
        file_processor = (
            structlog.processors.JSONRenderer()
            if self.settings.logging.json_format
            else structlog.processors.KeyValueRenderer(key_order=["event", "level", "timestamp"])
        )
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=file_processor,
                foreign_pre_chain=self._foreign_chain(),
            )
        )
        root_logger.addHandler(file_handler)

    def _configure_structlog(self) -> None:
        settings = self.settings

        def add_standard_context(logger, name, event_dict):
            """Bind standard context fields once from settings."""
            event_dict.setdefault('env', settings.environment.value)
            event_dict.setdefault('service', settings.app_name)
            event_dict.setdefault('version', settings.version)
            return event_dict

        processors = [
            structlog.contextvars.merge_contextvars,
            add_correlation_id,
            add_standard_context,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            make_redactor(settings.logging.redact_keys),
            # Defer final rendering to handlers via ProcessorFormatter
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]

        structlog.configure(
            processors=processors,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    @staticmethod
    def _parse_size(size_str: str) -> int:
        """Parse size string like '50MB' to bytes."""
        size_str = size_str.strip().upper()
        for suffix, factor in (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
            if size_str.endswith(suffix):
                return int(float(size_str[:-len(suffix)]) * factor)
        return int(size_str)

    def get_logger(self, name: str, component: Optional[str] = None) -> structlog.BoundLogger:
        """Get a structured logger for a component."""
        key = f"{name}:{component}" if component else name
        if key not in self.configured_loggers:
            logger = structlog.get_logger(name)
            if component:
                logger = logger.bind(component=component)
            self.configured_loggers[key] = logger
        return self.configured_loggers[key]

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "total_loggers": len(self.configured_loggers),
            "file_logging_enabled": self.settings.logging.file_enabled,
            "console_logging_enabled": self.settings.logging.console_enabled,
            "json_format": self.settings.logging.json_format,
            "logs_directory": self.settings.logs_dir,
        }


def configure_enhanced_logging(settings: Settings) -> LoggerManager:
    """Configure logging once; later calls return the existing manager."""
    global _logger_manager
    if _logger_manager is None:
        _logger_manager = LoggerManager(settings)
    return _logger_manager


def get_enhanced_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a logger, falling back to an unconfigured structlog logger."""
    if _logger_manager is not None:
        return _logger_manager.get_logger(name, component)
    logger = structlog.get_logger(name)
    return logger.bind(component=component) if component else logger


def get_logging_statistics() -> Dict[str, Any]:
    if _logger_manager is None:
        return {"configured": False}
    return {"configured": True, **_logger_manager.get_statistics()}
