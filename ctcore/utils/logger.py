"""
Logging for ctcore.

Everything logs under the "ctcore" namespace, one child per subsystem
(crypto, engine, prover, coordinator, acceleration). Console output is
colored and goes to stderr so CLI results on stdout stay parseable. A
plain-text file is added when a log directory is configured.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog

ROOT = "ctcore"
LOG_FILE = "ctcore.log"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LINE_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _console_handler(level: int) -> logging.Handler:
    # Bound to whatever sys.stderr is at setup time
    handler = colorlog.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s",
        datefmt=DATE_FORMAT,
        log_colors=LEVEL_COLORS,
    ))
    return handler


def _file_handler(log_dir: Path, level: int) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / LOG_FILE)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LINE_FORMAT, datefmt=DATE_FORMAT))
    return handler


class CTLogger:
    """Owns the handlers on the ctcore logger; configured once unless forced."""

    _initialized = False
    log_file: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: int = logging.INFO,
        log_dir: Optional[Union[str, Path]] = None,
        force: bool = False,
    ):
        """
        Install the console handler, plus a file handler when log_dir is set.

        The first get_logger() call does this with defaults; the CLI calls it
        again with force=True once configuration is loaded.
        """
        if cls._initialized and not force:
            return

        root = logging.getLogger(ROOT)
        for handler in root.handlers:
            handler.close()
        root.handlers.clear()
        root.setLevel(level)
        root.addHandler(_console_handler(level))

        cls.log_file = None
        if log_dir is not None:
            root.addHandler(_file_handler(Path(log_dir), level))
            cls.log_file = Path(log_dir) / LOG_FILE

        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._initialized:
            cls.setup()
        return logging.getLogger(f"{ROOT}.{name}")


def get_logger(name: str) -> logging.Logger:
    """Logger for one subsystem, e.g. get_logger("coordinator")"""
    return CTLogger.get_logger(name)


def setup_logging(level: int = logging.INFO, log_dir: Optional[Union[str, Path]] = None):
    """Reconfigure logging; a log_dir enables the file log"""
    CTLogger.setup(level=level, log_dir=log_dir, force=True)
