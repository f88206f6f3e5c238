import logging
import sys
import time

# Custom logging levels
PROGRESS_LEVEL = 22
SUCCESS_LEVEL = 25
SECURITY_LEVEL = 42

logging.addLevelName(PROGRESS_LEVEL, "PROGRESS")
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")
logging.addLevelName(SECURITY_LEVEL, "SECURITY")

LOG_PREFIX = "Site Exporter"


def resolve_level(level) -> int:
    """
    Turn a configured level (``"info"``, ``"SECURITY"``, ``20``) into a number.

    Raises:
        ValueError: If the name is not a registered level
    """
    if isinstance(level, int):
        return level

    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


class ColoredFormatter(logging.Formatter):
    """Formats records as ``[time] [Site Exporter] LEVEL: message`` with level colours."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "PROGRESS": "\033[94m",  # Bright Blue
        "SUCCESS": "\033[92m",  # Bright Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "SECURITY": "\033[95m",  # Bright Magenta
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    # Timestamps are always GMT so log lines line up across hosts
    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        if sys.stderr.isatty():
            level_color = self.COLORS.get(record.levelname, "")
            reset_color = self.COLORS["RESET"]
            return f"{level_color}{message}{reset_color}"

        return message


def setup_colored_logging(level: int = logging.INFO) -> None:
    """
    Configure colored logging for the application.

    Args:
        level: Logging level (default: logging.INFO)
    """
    formatter = ColoredFormatter(
        fmt=f"[%(asctime)s] [{LOG_PREFIX}] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


class EnhancedLogger:
    """Logger wrapper exposing the exporter's custom levels as methods."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def debug(self, msg, *args, **kwargs):
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self._logger.info(msg, *args, **kwargs)

    def progress(self, msg, *args, **kwargs):
        """Log with PROGRESS level (bright blue) - traversal progress."""
        self._logger.log(PROGRESS_LEVEL, msg, *args, **kwargs)

    def success(self, msg, *args, **kwargs):
        """Log with SUCCESS level (bright green) - completed operations."""
        self._logger.log(SUCCESS_LEVEL, msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self._logger.error(msg, *args, **kwargs)

    def security(self, msg, *args, **kwargs):
        """Log with SECURITY level (bright magenta) - rejected or suspicious requests."""
        self._logger.log(SECURITY_LEVEL, msg, *args, **kwargs)

    def critical(self, msg, *args, **kwargs):
        self._logger.critical(msg, *args, **kwargs)

    # Delegate other logger methods
    def __getattr__(self, name):
        return getattr(self._logger, name)


def get_colored_logger(name: str) -> EnhancedLogger:
    """
    Get an enhanced logger instance with the custom level methods.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Enhanced logger instance
    """
    return EnhancedLogger(logging.getLogger(name))
