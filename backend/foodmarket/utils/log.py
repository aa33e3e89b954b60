import logging
import sys

from foodmarket.config import settings


def get_logger(name: str) -> logging.Logger:
    """
    Return the named service logger, attaching a stdout handler with a
    bracketed prefix (``[CHECKOUT] ...``) the first time it is requested.
    """
    log = logging.getLogger(f"foodmarket.{name}")
    log.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    if not log.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(f"[{name.upper()}] %(message)s"))
        log.addHandler(h)
    return log
