"""
Engine logging.

Every engine module logs through ``setup_logger(__name__)``. Records go to
stdout and to one file per day under ``Config.LOG_DIR`` so that quota trips
and replay rejections survive a restart of the bot or the API process.
"""

import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from chessclub.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _daily_log_path(log_dir: Optional[str] = None) -> Path:
    directory = Path(log_dir or Config.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"chessclub_{date.today():%Y%m%d}.log"


def setup_logger(name: str) -> logging.Logger:
    """Return the named engine logger, attaching console and file handlers once."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = logging.DEBUG if Config.DEBUG else logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    stream = logging.StreamHandler(sys.stdout)
    stream.setLevel(level)
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    # File keeps DEBUG records even when the console is at INFO
    daily = logging.FileHandler(_daily_log_path(), encoding='utf-8')
    daily.setLevel(logging.DEBUG)
    daily.setFormatter(formatter)
    logger.addHandler(daily)

    return logger
