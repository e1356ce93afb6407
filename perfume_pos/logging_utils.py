from __future__ import annotations

import logging
import os

import colorlog

ENV_LOG_LEVEL = "PERFUME_POS_LOG_LEVEL"

_FORMAT = "%(log_color)s[%(asctime)s] %(levelname)-8s%(reset)s %(blue)s%(name)s: %(message)s"
_LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def get_logger(name: str = "perfume_pos") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(os.getenv(ENV_LOG_LEVEL, "INFO").upper())
        ch = logging.StreamHandler()
        ch.setFormatter(colorlog.ColoredFormatter(_FORMAT, datefmt="%H:%M:%S", log_colors=_LOG_COLORS))
        logger.addHandler(ch)
        logger.propagate = False
    return logger


def set_level(level: str) -> None:
    for name, obj in logging.Logger.manager.loggerDict.items():
        if name.startswith("perfume_pos") and isinstance(obj, logging.Logger):
            obj.setLevel(str(level).upper())
