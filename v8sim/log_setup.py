"""
Logging setup for v8sim front ends.

Library modules only ever call logging.getLogger('v8sim.<module>').
The CLI calls setup_logging() once; everything below 'v8sim' then goes to
a rich console handler (stderr) and, optionally, a timestamped log file.

Log files: ``<log_dir>/<name>_YYYYMMDD_HHMMSS.log``
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
PLAIN_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"


def setup_logging(
    name: str = "v8sim",
    level: int = logging.DEBUG,
    console_level: int = logging.WARNING,
    log_dir: Optional[Path] = None,
    rich_console: bool = True,
) -> logging.Logger:
    """Configure and return the package logger. Calling it twice is a no-op."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(level)

    # ── Console handler: stderr, so stdout stays clean for program output ──
    if rich_console:
        ch = RichHandler(
            console=Console(stderr=True),
            level=console_level,
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    else:
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%H:%M:%S"))
    ch.setLevel(console_level)
    logger.addHandler(ch)

    # ── File handler: captures everything at `level` ──
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"{name}_{ts}.log"
        fh = logging.FileHandler(str(log_file), encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(fh)

        logger.info("=" * 60)
        logger.info("Logger initialized: %s", name)
        logger.info("Log file: %s", log_file)
        logger.info("Console level: %s", logging.getLevelName(console_level))
        logger.info("=" * 60)

    return logger
