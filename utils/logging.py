"""
Structured logging utilities for the resilience and security monitoring layer.
Provides JSON/text formatting, security and audit log levels, category routing
to dedicated log files and context-local correlation IDs.
"""

import logging
import logging.handlers
import os
import sys
import json
import contextvars
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pathlib import Path
from dataclasses import dataclass, field
from enum import Enum


class LogLevel(Enum):
    """Log levels including the monitoring-specific ones."""
    TRACE = 5        # Detailed execution traces
    DEBUG = 10       # Debug information
    INFO = 20        # General information
    AUDIT = 25       # Audit trail entries
    SECURITY = 27    # Security events
    WARNING = 30     # Warning messages
    ERROR = 40       # Error conditions
    CRITICAL = 50    # Critical failures


class LogCategory(Enum):
    """Log categories for classification."""
    SECURITY = "security"
    AUDIT = "audit"
    ERROR = "error"
    HEALTH = "health"
    PERFORMANCE = "performance"
    ALERT = "alert"
    SYSTEM = "system"


@dataclass
class LogConfig:
    """Configuration for the logging system."""
    level: str = "INFO"
    format_type: str = "json"
    log_dir: Optional[Path] = field(default_factory=lambda: Path("logs"))
    max_file_size: int = 10_000_000  # 10MB
    backup_count: int = 5
    enable_security_logging: bool = True
    enable_audit_logging: bool = True
    console_output: bool = True
    structured_metadata: bool = True
    correlation_id_enabled: bool = True


_log_config: Optional[LogConfig] = None
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def setup_logging(
    config: Optional[LogConfig] = None,
    level: str = "INFO",
    format_type: str = "json"
) -> None:
    """
    Setup logging for the application.

    Args:
        config: LogConfig object for advanced configuration
        level: Logging level when no config is given
        format_type: Format type ('json' or 'text') when no config is given
    """
    if config is None:
        config = LogConfig(level=level, format_type=format_type)

    for log_level in LogLevel:
        logging.addLevelName(log_level.value, log_level.name)

    if config.format_type == "json":
        formatter = EnhancedJsonFormatter(config)
    else:
        formatter = EnhancedTextFormatter()

    level_value = getattr(logging, config.level.upper(), logging.INFO)
    handlers = []

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level_value)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    # File handlers are skipped when no log directory is configured
    if config.log_dir is not None:
        config.log_dir.mkdir(parents=True, exist_ok=True)

        main_handler = _rotating_handler(config, "resilience.log", level_value, formatter)
        handlers.append(main_handler)

        if config.enable_security_logging:
            # Low severity security events (logins, logouts) are logged at INFO
            security_handler = _rotating_handler(
                config, "security.log", LogLevel.INFO.value, formatter
            )
            security_handler.addFilter(CategoryFilter(LogCategory.SECURITY))
            handlers.append(security_handler)

        if config.enable_audit_logging:
            audit_handler = _rotating_handler(
                config, "audit.log", LogLevel.AUDIT.value, formatter
            )
            audit_handler.addFilter(CategoryFilter(LogCategory.AUDIT))
            handlers.append(audit_handler)

        error_handler = _rotating_handler(config, "errors.log", logging.ERROR, formatter)
        handlers.append(error_handler)

    # Handlers do the filtering, the root logger passes everything through
    logging.basicConfig(level=LogLevel.TRACE.value, handlers=handlers, force=True)

    global _log_config
    _log_config = config


def _rotating_handler(
    config: LogConfig,
    filename: str,
    level: int,
    formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        config.log_dir / filename,
        maxBytes=config.max_file_size,
        backupCount=config.backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


class CategoryFilter(logging.Filter):
    """Filter logs by category."""

    def __init__(self, category: LogCategory):
        super().__init__()
        self.category = category.value

    def filter(self, record):
        return getattr(record, 'category', None) == self.category


class EnhancedJsonFormatter(logging.Formatter):
    """JSON formatter with structured metadata."""

    def __init__(self, config: LogConfig):
        super().__init__()
        self.config = config

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'process_id': os.getpid()
        }

        if self.config.correlation_id_enabled:
            correlation_id = _correlation_id.get()
            if correlation_id:
                log_entry['correlation_id'] = correlation_id

        if self.config.structured_metadata:
            if hasattr(record, 'category'):
                log_entry['category'] = record.category

            if hasattr(record, 'security_context'):
                log_entry['security'] = record.security_context

            if hasattr(record, 'error_context'):
                log_entry['error'] = record.error_context

            if hasattr(record, 'performance_metrics'):
                log_entry['performance'] = record.performance_metrics

            if hasattr(record, 'extra_fields'):
                log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        if record.pathname:
            log_entry['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_entry, default=str)


class EnhancedTextFormatter(logging.Formatter):
    """Text formatter with category and correlation prefixes."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record):
        formatted = super().format(record)

        if hasattr(record, 'category'):
            formatted = f"[{record.category}] {formatted}"

        correlation_id = _correlation_id.get()
        if correlation_id:
            formatted = f"[{correlation_id[:8]}] {formatted}"

        return formatted


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger
    """
    return logging.getLogger(name)


def get_enhanced_logger(name: str, category: Optional[LogCategory] = None) -> 'EnhancedLogger':
    """
    Get an enhanced logger instance with structured context support.

    Args:
        name: Logger name (typically __name__)
        category: Default log category

    Returns:
        Enhanced logger instance
    """
    return EnhancedLogger(name, category)


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for the current context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID of the current context."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear correlation ID for the current context."""
    _correlation_id.set(None)


class EnhancedLogger:
    """Logger wrapper attaching categories and structured context to records."""

    def __init__(self, name: str, default_category: Optional[LogCategory] = None):
        self.logger = logging.getLogger(name)
        self.default_category = default_category

    def _log(
        self,
        level: int,
        message: str,
        category: Optional[LogCategory] = None,
        security_context: Optional[Dict[str, Any]] = None,
        error_context: Optional[Dict[str, Any]] = None,
        performance_metrics: Optional[Dict[str, Any]] = None,
        **extra_fields
    ):
        """Internal logging method with structured data."""
        if not self.logger.isEnabledFor(level):
            return

        record = self.logger.makeRecord(
            name=self.logger.name,
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None
        )

        if category or self.default_category:
            record.category = (category or self.default_category).value

        if security_context:
            record.security_context = security_context

        if error_context:
            record.error_context = error_context

        if performance_metrics:
            record.performance_metrics = performance_metrics

        if extra_fields:
            record.extra_fields = extra_fields

        self.logger.handle(record)

    def debug(self, message: str, **kwargs):
        self._log(LogLevel.DEBUG.value, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(LogLevel.INFO.value, message, **kwargs)

    def audit(self, message: str, **kwargs):
        """Log audit level message."""
        kwargs.setdefault("category", LogCategory.AUDIT)
        self._log(LogLevel.AUDIT.value, message, **kwargs)

    def security(self, message: str, **kwargs):
        """Log security level message."""
        kwargs.setdefault("category", LogCategory.SECURITY)
        self._log(LogLevel.SECURITY.value, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(LogLevel.WARNING.value, message, **kwargs)

    def error(self, message: str, **kwargs):
        kwargs.setdefault("category", LogCategory.ERROR)
        self._log(LogLevel.ERROR.value, message, **kwargs)

    def critical(self, message: str, **kwargs):
        kwargs.setdefault("category", LogCategory.ERROR)
        self._log(LogLevel.CRITICAL.value, message, **kwargs)

    def log_at_severity(self, severity: str, message: str, **kwargs):
        """Log using a low/medium/high/critical severity name."""
        level_map = {
            'low': LogLevel.INFO.value,
            'medium': LogLevel.WARNING.value,
            'high': LogLevel.ERROR.value,
            'critical': LogLevel.CRITICAL.value
        }
        self._log(level_map.get(severity, LogLevel.WARNING.value), message, **kwargs)
