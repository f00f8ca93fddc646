"""
Logger Configuration
Shared logging setup for worker, API and CLI
"""
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler
from rich.console import Console


# Shared console, stderr so CLI JSON on stdout stays clean
console = Console(stderr=True)

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_FORMAT_SIMPLE = "%(message)s"

ROOT_LOGGER_NAME = "pressclipper"

LOG_DIR = Path(__file__).parent.parent / "logs"


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_rich: bool = True,
) -> logging.Logger:
    """
    Configure a logger once.

    Args:
        name: logger name
        level: logging level
        log_file: file name under ``logs/`` (optional)
        use_rich: render console output with Rich

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    if use_rich:
        console_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE))
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_path = LOG_DIR / log_file

        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a logger, configuring it with defaults on first use."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        return setup_logger(name)

    return logger


def configure_library_logging(level: int = logging.INFO, use_rich: bool = True) -> None:
    """Route the package loggers (``orchestrator.*``, ``sources.*`` ...) to one handler set."""
    root = setup_logger(ROOT_LOGGER_NAME, level=level, use_rich=use_rich)
    for package in ("core", "config", "orchestrator", "pipeline", "sources", "storage", "webapp"):
        package_logger = logging.getLogger(package)
        package_logger.setLevel(level)
        if not package_logger.handlers:
            for handler in root.handlers:
                package_logger.addHandler(handler)
