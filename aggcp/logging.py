"""Logging setup helpers.

Modules in aggcp log through ``logging.getLogger(__name__)`` and never
configure handlers themselves. Applications and notebooks can call
:func:`configure_logging` to get readable output.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

_DEFAULT_FORMAT = "%(asctime)s %(name)-24s %(levelname)-8s %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

logging.getLogger("aggcp").addHandler(logging.NullHandler())


def configure_logging(
    level: str = "INFO",
    fmt: Optional[str] = None,
    file: Optional[str] = None,
) -> None:
    """Configure logging for the ``aggcp`` logger hierarchy.

    Parameters
    ----------
    level : str, default="INFO"
        Logging level name (``DEBUG``, ``INFO``, ``WARNING``, ``ERROR``).
    fmt : str, optional
        Log format string.
    file : str, optional
        Path to a file to append logs to, using the same format.
    """
    lvl = getattr(logging, str(level).upper(), logging.INFO)
    formatter = logging.Formatter(fmt or _DEFAULT_FORMAT, datefmt=_DATEFMT)

    logger = logging.getLogger("aggcp")
    for h in list(logger.handlers):
        if not isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.setLevel(lvl)
    logger.addHandler(handler)
    logger.setLevel(lvl)

    if file:
        fpath = Path(file)
        fpath.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(fpath)
        fh.setFormatter(formatter)
        fh.setLevel(lvl)
        logger.addHandler(fh)


__all__ = ["configure_logging"]
