# spurchat/utils/logging.py

import logging
import os
from pathlib import Path

from spurchat.config.settings import BASE_DIR

LOG_DIR = Path(os.getenv("SPURCHAT_LOG_DIR", "").strip() or BASE_DIR / "spurchat" / "logs")
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = LOG_DIR / "spurchat.log"

_LEVEL_NAME = os.getenv("SPURCHAT_LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_LEVEL = getattr(logging, _LEVEL_NAME, logging.INFO)


def get_logger(name: str = "spurchat") -> logging.Logger:
    """
    Return a logger writing to spurchat.log and the console.
    Handlers are attached once per logger name.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL)
    # uvicorn configures the root logger; keep our lines single
    logger.propagate = False

    fmt = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    console_handler = logging.StreamHandler()
    for handler in (file_handler, console_handler):
        handler.setLevel(LOG_LEVEL)
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger
