"""
Logging Configuration - Structured logging setup for the search engine

Part of the Hybrid Search Engine.

Production uses a structlog JSON pipeline on top of stdlib dictConfig;
development uses plain, detailed or JSON stdlib formatters. Library code
only ever calls logging.getLogger(__name__); configuring handlers is left to
the application (the CLI calls setup_logging()).

License: MIT
"""

import logging
import logging.config
import sys
import os
import json
from typing import Optional
from datetime import datetime

import structlog

from ..config import LoggingConfig

# LogRecord attributes that are not caller-supplied extras
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'getMessage', 'taskName', 'message',
])


def setup_logging(
    config: Optional[LoggingConfig] = None,
    environment: Optional[str] = None,
) -> None:
    """
    Setup logging for the search engine.

    Environment variables LOG_LEVEL, LOG_FORMAT, LOG_FILE and ENVIRONMENT
    override the values in ``config``.

    Args:
        config: Logging configuration (defaults when omitted)
        environment: 'production' selects structured JSON logging
    """
    config = config or LoggingConfig()

    log_level = os.getenv("LOG_LEVEL", config.level).upper()
    log_format = os.getenv("LOG_FORMAT", config.format_type).lower()
    log_file_path = os.getenv("LOG_FILE", config.log_file)
    env = os.getenv("ENVIRONMENT", environment or "development")

    if env == "production":
        setup_production_logging(
            log_level, log_file_path, config.max_file_size, config.backup_count
        )
    else:
        setup_development_logging(log_level, log_format)

    configure_external_loggers()


def setup_production_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_file_size: int = 10485760,
    backup_count: int = 5,
) -> None:
    """
    Setup production logging with structured JSON format.

    Args:
        level: Logging level
        log_file: Optional log file path
        max_file_size: Rotation size of the log file in bytes
        backup_count: Number of rotated files to keep
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging_config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'json': {
                '()': JSONFormatter
            }
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': level,
                'formatter': 'json',
                'stream': sys.stdout
            }
        },
        'loggers': {
            '': {
                'handlers': ['console'],
                'level': level,
                'propagate': False
            }
        }
    }

    if log_file:
        logging_config['handlers']['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': level,
            'formatter': 'json',
            'filename': log_file,
            'maxBytes': max_file_size,
            'backupCount': backup_count
        }
        logging_config['loggers']['']['handlers'].append('file')

    logging.config.dictConfig(logging_config)

    logger = logging.getLogger(__name__)
    logger.info("Production logging configured", extra={
        'log_level': level,
        'file_logging': log_file is not None
    })


def setup_development_logging(level: str = "DEBUG", format_type: str = "simple") -> None:
    """
    Setup development logging with readable format.

    Args:
        level: Logging level
        format_type: Format type ('simple', 'detailed', 'json'); 'structured'
            is treated as 'json'
    """
    if format_type in ("json", "structured"):
        format_type = "json"
    elif format_type != "detailed":
        format_type = "simple"

    setup_standard_logging(level, format_type)

    logger = logging.getLogger(__name__)
    logger.debug(f"Development logging configured: level={level}, format={format_type}")


def setup_standard_logging(
    level: str = "INFO",
    format_type: str = "simple",
    log_file: Optional[str] = None
) -> None:
    """
    Setup standard Python logging.

    Args:
        level: Logging level
        format_type: Format type
        log_file: Optional log file path
    """
    formatters = {
        'simple': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        },
        'detailed': {
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(funcName)s - %(message)s'
        },
        'json': {
            '()': JSONFormatter
        }
    }

    handlers = {
        'console': {
            'class': 'logging.StreamHandler',
            'level': level,
            'formatter': format_type,
            'stream': sys.stderr
        }
    }

    if log_file:
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'level': level,
            'formatter': format_type,
            'filename': log_file,
            'maxBytes': 10485760,  # 10MB
            'backupCount': 5
        }

    logging_config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': formatters,
        'handlers': handlers,
        'root': {
            'level': level,
            'handlers': list(handlers.keys())
        }
    }

    logging.config.dictConfig(logging_config)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Extra fields passed through ``extra=`` (query_id, tier, processing_time,
    ...) are emitted as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def configure_external_loggers() -> None:
    """
    Configure logging levels for external libraries.
    """
    external_loggers = {
        'urllib3.connectionpool': 'WARNING',
        'openai': 'WARNING',
        'httpx': 'WARNING',
        'httpcore': 'WARNING'
    }

    for logger_name, level in external_loggers.items():
        logging.getLogger(logger_name).setLevel(getattr(logging, level))
