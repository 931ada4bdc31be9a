# giftvec/core/logging.py
import logging
import sys
from typing import Union

import colorlog

LOG_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s [%(name)s]%(reset)s %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}
# drivers and HTTP clients log every request
NOISY_LOGGERS = ("pymongo", "motor", "openai", "httpx", "httpcore")


def configure_logging(level: Union[int, str] = logging.INFO, stream=None):
    """
    Colored console logging on stderr; stdout carries the CLI's JSON output.
    Colors are disabled when the stream is not a terminal.
    """
    stream = stream or sys.stderr
    handler = colorlog.StreamHandler(stream)
    handler.setFormatter(
        colorlog.ColoredFormatter(
            LOG_FORMAT,
            datefmt="%H:%M:%S",
            log_colors=LOG_COLORS,
            no_color=not getattr(stream, "isatty", lambda: False)(),
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
