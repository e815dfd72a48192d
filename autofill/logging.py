"""
Process-wide logging setup. Modules call get_logger() once at import and then
use logging.getLogger(__name__) as usual.
"""

import logging

from autofill.env import LOG_LEVEL

_configured = False


def get_logger() -> logging.Logger:
    global _configured
    root = logging.getLogger()
    if _configured:
        return root

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(LOG_LEVEL).upper(), logging.INFO))
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
    return root
