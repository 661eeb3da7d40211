import logging
import logging.config
import structlog
from datetime import datetime
import uuid
from typing import Optional
import sys
import os

def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure structured logging for the sync service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path. If None, logs to stdout only.
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

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "json": {
                "()": "structlog.stdlib.ProcessorFormatter",
                "processor": structlog.processors.JSONRenderer()
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "detailed",
                "stream": sys.stdout
            }
        },
        "loggers": {
            "": {  # Root logger
                "level": log_level,
                "handlers": ["console"],
                "propagate": False
            },
            "okrhub": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False
            },
            # APScheduler is chatty at INFO on every job run
            "apscheduler": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            }
        }
    }

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        log_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        log_config["loggers"][""]["handlers"].append("file")
        log_config["loggers"]["okrhub"]["handlers"].append("file")

    logging.config.dictConfig(log_config)

    logger = structlog.get_logger("okrhub")
    logger.info("Logging configured", level=log_level, file=log_file)

    return logger

def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)

class SyncContext:
    """
    Context manager for a drain run, binding a correlation id to every
    log line emitted through ``self.logger``.

    Callers fill ``self.summary`` before the block exits so the completion
    line carries the run's counts.
    """

    def __init__(self, operation_type: str, operation_id: Optional[str] = None):
        self.operation_type = operation_type
        self.operation_id = operation_id or str(uuid.uuid4())[:8]
        self.logger = get_logger("okrhub.sync").bind(
            operation_type=self.operation_type,
            operation_id=self.operation_id,
        )
        self.start_time = None
        self.summary = {}

    def __enter__(self):
        self.start_time = datetime.utcnow()
        self.logger.info("Sync run started", start_time=self.start_time.isoformat())
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.utcnow() - self.start_time).total_seconds()

        if exc_type is None:
            self.logger.info(
                "Sync run completed",
                duration_seconds=duration,
                status="success",
                **self.summary
            )
        else:
            self.logger.error(
                "Sync run aborted",
                duration_seconds=duration,
                status="error",
                error_type=exc_type.__name__,
                error_message=str(exc_val)
            )

        return False  # Don't suppress exceptions

def log_sync_operation(operation_type: str, **kwargs):
    """Log a one-off sync event (config change, resubmission) with structured data."""
    logger = get_logger("okrhub.sync")
    logger.info("Sync operation", operation_type=operation_type, **kwargs)
