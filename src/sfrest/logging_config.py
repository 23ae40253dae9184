from __future__ import annotations

import logging
from typing import Optional

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DEFAULT_DATEFMT = "%H:%M:%S"

# Transport loggers that only belong in -vv output.
_TRANSPORT_LOGGERS = ("urllib3.connectionpool", "urllib3.connection")


def configure_logging(level: Optional[int]) -> None:
    """Set up logging for the sfrest CLI; safe to call more than once.

    ``None`` means the default (WARNING). Library users who configure logging
    themselves keep their handlers; only the root level is changed.
    """
    lvl = level if level is not None else logging.WARNING
    root = logging.getLogger()

    if root.handlers:
        root.setLevel(lvl)
    else:
        logging.basicConfig(level=lvl, format=_DEFAULT_FMT, datefmt=_DEFAULT_DATEFMT)

    transport_level = logging.DEBUG if lvl <= logging.DEBUG else logging.WARNING
    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)
