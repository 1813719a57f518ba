"""
Logging service for the SketchForge drawing engine.

The engine is a library: its modules log under the "sketchforge" logger and
stay silent until the hosting application calls setup_logging(). The engine
logger can run at its own level, so per-stroke debug output can be enabled
without turning the whole host to DEBUG.

Log files are stored in ~/.local/share/sketchforge/logs/ by default.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# Default log directory following XDG Base Directory Specification
DEFAULT_LOG_DIR = Path.home() / ".local" / "share" / "sketchforge" / "logs"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Parent of every engine module logger
ENGINE_LOGGER = "sketchforge"

logging.getLogger(ENGINE_LOGGER).addHandler(logging.NullHandler())

# Module-level flag to track if logging has been set up
_logging_initialized = False

LogLevel = Union[int, str]


def resolve_level(level: LogLevel) -> int:
    """
    Turn a level number or name ("debug", "WARNING") into a level number.

    Raises:
        ValueError: If the name is not a known logging level.
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logging(
    log_level: LogLevel = logging.INFO,
    log_to_file: bool = True,
    log_dir: Optional[Path] = None,
    engine_level: Optional[LogLevel] = None,
) -> None:
    """
    Configure the logging system for the engine host.

    Args:
        log_level: Level for the root logger, as a number or a name.
        log_to_file: Whether to also log to a file.
        log_dir: Directory for log files. Defaults to ~/.local/share/sketchforge/logs/
        engine_level: Optional level for the sketchforge loggers only.
            Inherits log_level when None.

    This function should be called once by the hosting application.
    Library modules never call it themselves.

    Usage:
        config = ConfigService()
        setup_logging(config.log_level, config.log_to_file, engine_level=config.engine_log_level)
    """
    global _logging_initialized

    if _logging_initialized:
        return

    root_level = resolve_level(log_level)
    engine_logger = logging.getLogger(ENGINE_LOGGER)
    if engine_level is None:
        engine_logger.setLevel(logging.NOTSET)
        handler_level = root_level
    else:
        engine_logger.setLevel(resolve_level(engine_level))
        handler_level = min(root_level, engine_logger.level)

    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Clear any existing handlers
    root_logger.handlers.clear()

    # Console handler - always enabled
    console_handler = logging.StreamHandler()
    console_handler.setLevel(handler_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    root_logger.addHandler(console_handler)

    # File handler - optional
    if log_to_file:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)

            # One file per day
            log_filename = f"sketchforge_{datetime.now().strftime('%Y%m%d')}.log"
            log_path = log_dir / log_filename

            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(handler_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
            root_logger.addHandler(file_handler)

        except OSError as e:
            # If we can't create the log file, just log to console
            console_handler.setLevel(logging.WARNING)
            root_logger.warning(f"Could not create log file: {e}. Logging to console only.")

    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: The name for the logger, typically __name__ of the calling module.

    Returns:
        A Logger instance. Engine modules land under the "sketchforge" logger.
    """
    return logging.getLogger(name)
