"""
Standardized logging configuration for check-service-certs.
"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from check_service_certs.config import Config

# Context fields copied from ``extra=`` into structured output
STRUCTURED_FIELDS = (
    "service",
    "cert_path",
    "error_type",
    "expiration",
    "days_remaining",
    "min_cert_lifetime",
    "sink",
    "template_path",
)


class CustomFormatter(logging.Formatter):
    """Custom formatter with colored output for console."""

    # Color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",  # Reset
    }

    def __init__(self, use_color: bool = True) -> None:
        self.use_color = use_color
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with optional colors and context fields."""
        if self.use_color and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            reset = self.COLORS["RESET"]
            level_name = f"{color}{record.levelname:<8}{reset}"
        else:
            level_name = f"{record.levelname:<8}"

        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")

        message = record.getMessage()

        context = " ".join(
            f"{field}={getattr(record, field)}"
            for field in STRUCTURED_FIELDS
            if hasattr(record, field)
        )
        if context:
            message = f"{message} [{context}]"

        if record.exc_info:
            if not message.endswith("\n"):
                message += "\n"
            message += self.formatException(record.exc_info)

        return f"{timestamp} | {level_name} | {record.name:<32} | {message}"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        import json

        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(config: Config, log_level: Optional[str] = None) -> None:
    """
    Setup logging configuration.

    Args:
        config: Configuration object
        log_level: Overrides the configured level when given
    """
    level_name = (log_level or config.global_settings.log_level).upper()
    level = getattr(logging, level_name)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    # Use colored formatter for console if output is a TTY
    use_color = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
    console_handler.setFormatter(CustomFormatter(use_color=use_color))
    root_logger.addHandler(console_handler)

    log_file = config.global_settings.logfile
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Rotating file handler (10MB max, 5 backups); debug chatter stays on the console
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setLevel(max(level, logging.INFO))
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    app_logger = logging.getLogger("check_service_certs")
    app_logger.info(f"Logging initialized - Level: {level_name}")

    if log_file:
        app_logger.info(f"Log file: {log_file}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return logging.getLogger(f"check_service_certs.{name}")


# Logging helpers for certificate checks
def log_cert_error(
    logger: logging.Logger, service: str, cert_path: str, error: Exception, error_type: str
) -> None:
    """Log a certificate that could not be read or parsed."""
    logger.error(
        f"Certificate check failed: {error}",
        extra={"service": service, "cert_path": cert_path, "error_type": error_type},
    )


def log_cert_verdict(
    logger: logging.Logger,
    service: str,
    cert_path: str,
    expiration: datetime,
    min_cert_lifetime: str,
    expiring: bool,
) -> None:
    """Log the expiry decision for one certificate; min_cert_lifetime is a duration string."""
    extra = {
        "service": service,
        "cert_path": cert_path,
        "expiration": expiration.isoformat(),
        "min_cert_lifetime": min_cert_lifetime,
    }
    if expiring:
        logger.warning(
            f"Service certificate will expire within {min_cert_lifetime}", extra=extra
        )
    else:
        logger.info(
            f"Service certificate will not expire within {min_cert_lifetime}", extra=extra
        )


def log_notification_outcome(
    logger: logging.Logger, service: str, sink: str, error: Optional[BaseException] = None
) -> None:
    """Log the result of one notification attempt."""
    extra = {"service": service, "sink": sink}
    if error is None:
        logger.info("Notification sent", extra=extra)
    else:
        logger.error(f"Error sending notification: {error}", extra=extra)
