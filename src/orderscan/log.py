from __future__ import annotations
import logging
from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "orderscan"


def setup_logging(level: str | int = "INFO", console: Console | None = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    if not logger.handlers:
        handler = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.propagate = False
    return logger
