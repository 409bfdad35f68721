# logging_config.py
import logging
import logging.handlers
import os
from pathlib import Path
import json
from logging.handlers import RotatingFileHandler
from typing import Optional, Any, Dict
import sys
from datetime import datetime, timezone

import psutil

# Get the project root directory
project_root = Path(__file__).parent.parent.parent

# Attributes present on every LogRecord; anything else came in through `extra=`
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class SensitiveDataFilter(logging.Filter):
    """Filter to remove sensitive data from log records."""

    def __init__(self, sensitive_keys=None):
        super().__init__()
        self.sensitive_keys = sensitive_keys or [
            "password", "token", "api_key", "secret", "signing_key", "signature",
        ]

    def filter(self, record):
        for key in list(record.__dict__):
            if key in _RESERVED_ATTRS:
                continue
            if any(pattern in key.lower() for pattern in self.sensitive_keys):
                setattr(record, key, "****REDACTED****")
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        # Add extra fields if present
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(name: str, level: Optional[str] = None) -> logging.Logger:
    """Set up logging configuration."""
    # Get log level from environment variable or use default
    log_level = level or os.getenv("LOG_LEVEL", "INFO")

    # Get log directory from environment variable or use default
    log_dir = os.getenv("LOG_DIR", str(project_root / "logs"))

    # Create logs directory if it doesn't exist
    os.makedirs(log_dir, exist_ok=True)

    # Create logger
    logger = logging.getLogger(name)
    logger.setLevel(log_level.upper())

    # Remove existing handlers
    logger.handlers = []

    formatter = JSONFormatter()
    sensitive_filter = SensitiveDataFilter()

    # Create file handler
    log_file = os.path.join(log_dir, f"{name}.log")
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10485760,  # 10MB
        backupCount=5
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(sensitive_filter)
    logger.addHandler(file_handler)

    # Create console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(sensitive_filter)
    logger.addHandler(console_handler)

    # Log debug message if debug logging is enabled
    if log_level.upper() == "DEBUG":
        logger.debug("Debug logging enabled")

    return logger


class MetricsLogger:
    """Emits host and process resource usage alongside service logs."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._process = psutil.Process(os.getpid())

    def log_system_metrics(self) -> Dict[str, float]:
        metrics = {
            "cpu_percent": psutil.cpu_percent(),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_usage_percent": psutil.disk_usage("/").percent,
        }
        self.logger.info("System metrics", extra=metrics)
        return metrics

    def log_process_metrics(self) -> Dict[str, float]:
        with self._process.oneshot():
            metrics = {
                "process_cpu_percent": self._process.cpu_percent(),
                "process_rss_mb": round(self._process.memory_info().rss / 1048576, 2),
                "process_threads": self._process.num_threads(),
            }
        self.logger.info("Process metrics", extra=metrics)
        return metrics


def get_metrics_logger(name: str) -> MetricsLogger:
    """Return a metrics logger writing to `<name>.metrics`."""
    return MetricsLogger(setup_logging(f"{name}.metrics"))


# Utility functions for logging structured data
def log_structured(logger, level, message, data=None, **kwargs):
    """Log a message with structured data."""
    if data is not None:
        if isinstance(data, (dict, list)):
            try:
                message = f"{message} {json.dumps(data, default=str)}"
            except (TypeError, ValueError):
                message = f"{message} {str(data)}"
        else:
            message = f"{message} {data}"

    # Add any additional kwargs to the message
    if kwargs:
        message = f"{message} {json.dumps(kwargs, default=str)}"

    log_method = getattr(logger, level, None)
    if log_method is None:
        raise ValueError(f"Unknown log level: {level}")
    log_method(message)
