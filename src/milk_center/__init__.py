import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_FILE_NAME = "milk_center.log"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _configure_logging() -> logging.Logger:
    """Configure the package logger with a console handler.

    The rotating log file is attached later by :func:`configure_file_logging`
    once the configured log directory is known.
    """

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(_FORMATTER)
    logger.addHandler(console_handler)

    return logger


def configure_file_logging(log_dir: Path) -> Optional[Path]:
    """Write the package log to ``log_dir``, replacing any earlier log file.

    Returns:
        Path | None: The log file path, or ``None`` when the directory is not
            writable.
    """

    log_file = Path(log_dir) / LOG_FILE_NAME
    for handler in list(log.handlers):
        if isinstance(handler, RotatingFileHandler):
            if Path(handler.baseFilename).resolve() == log_file.resolve():
                return log_file
            log.removeHandler(handler)
            handler.close()

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}",
            file=sys.stderr,
        )
        return None

    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(_FORMATTER)
    log.addHandler(file_handler)
    return log_file


log = _configure_logging()
log.info("Logger initialized for the 'milk_center' package.")
