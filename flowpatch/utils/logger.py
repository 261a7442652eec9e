# flowpatch/utils/logger.py
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler


ROOT_LOGGER = "flowpatch"

_FMT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# ANSI colors by minimum level, highest first
_COLORS = (
    (logging.ERROR, "\033[91m"),    # red
    (logging.WARNING, "\033[93m"),  # yellow
    (logging.INFO, "\033[92m"),     # green
)


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """Map 'debug'/'WARN'/... to a logging level; unknown names give `default`."""
    if not name:
        return default
    lvl = logging.getLevelName(name.strip().upper())
    return lvl if isinstance(lvl, int) else default


def _env_level() -> int:
    return level_from_name(os.getenv("LOG_LEVEL"), logging.INFO)


class _ColorFormatter(logging.Formatter):
    """Colorize the whole line by level when writing to a terminal."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if not sys.stdout.isatty():
            return base
        for threshold, color in _COLORS:
            if record.levelno >= threshold:
                return f"{color}{base}\033[0m"
        return base


def init_logger(
    level: int | None = None,
    log_dir: str | Path | None = None,
    file_name: str = "flowpatch.log",
    file_max_mb: int = 5,
    file_backup: int = 3,
) -> logging.Logger:
    """
    (Re)configure the project logger:
      - colored stream handler to stdout
      - optional rotating file handler under `log_dir`
    Safe to call more than once; previous handlers are replaced.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False
    logger.setLevel(level if level is not None else _env_level())

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(logger.level)
    sh.setFormatter(_ColorFormatter(fmt=_FMT, datefmt=_DATEFMT))
    logger.addHandler(sh)

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            filename=str(log_dir / file_name),
            maxBytes=file_max_mb * 1024 * 1024,
            backupCount=file_backup,
            encoding="utf-8",
        )
        fh.setLevel(logger.level)
        fh.setFormatter(logging.Formatter(fmt=_FMT, datefmt=_DATEFMT))
        logger.addHandler(fh)

    return logger


def get_logger(child: str) -> logging.Logger:
    """Child logger under the project root logger, e.g. get_logger('store')."""
    return logging.getLogger(ROOT_LOGGER).getChild(child)


log = init_logger()
