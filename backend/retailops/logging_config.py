from __future__ import annotations

import logging

from flask.logging import default_handler

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(app) -> None:
    """
    Align the package logger with LOG_LEVEL.

    app.logger is the "retailops" logger, so service modules logging through
    logging.getLogger(__name__) propagate into Flask's default handler.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    default_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    app.logger.setLevel(level)
