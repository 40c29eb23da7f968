import logging
import sys

from logging.handlers import RotatingFileHandler
from pathlib import Path

FORMATTER = logging.Formatter(
    "%(asctime)s | %(levelname)-7s | %(name)-12s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def parse_log_level(level: str) -> int:
    return _LEVELS.get(level.lower(), logging.INFO)


def setup_logging(level: str = "info", log_dir: Path | None = None) -> logging.Logger:
    """Configure the ``ark`` logger: console on stderr, plus a rotating file when ``log_dir`` exists."""
    root = logging.getLogger("ark")
    root.setLevel(logging.DEBUG)
    root.propagate = False
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(FORMATTER)
    console.setLevel(parse_log_level(level))
    root.addHandler(console)

    if log_dir is not None and log_dir.is_dir():
        file_handler = RotatingFileHandler(log_dir / "ark.log", maxBytes=1024 * 1024, backupCount=5)
        file_handler.setFormatter(FORMATTER)
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)

    return root
