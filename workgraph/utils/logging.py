"""Simple logging utilities for workgraph.

Standard Logger Initialization Pattern
--------------------------------------
Library modules use the standard Python pattern:

    import logging
    logger = logging.getLogger(__name__)

Configuration is handled at the application level. The CLI calls
`setup_logging()` once; `get_logger()` is for code that may run standalone.
"""

import logging
import sys
from typing import Optional

from ..config.settings import get_env_var

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _make_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name."""
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        logger.addHandler(_make_handler(logging.INFO))
        logger.setLevel(logging.INFO)

    return logger


def setup_logging(verbose: bool = False, level: Optional[str] = None) -> logging.Logger:
    """Configure the ``workgraph`` logger hierarchy for CLI use.

    ``verbose`` forces DEBUG. Otherwise the level comes from the argument or
    WORKGRAPH_LOG_LEVEL (default WARNING).
    """
    if verbose:
        resolved = logging.DEBUG
    else:
        name = (level or get_env_var("WORKGRAPH_LOG_LEVEL") or "WARNING").upper()
        resolved = getattr(logging, name, logging.WARNING)

    root = logging.getLogger("workgraph")
    root.setLevel(resolved)
    if not root.handlers:
        root.addHandler(_make_handler(resolved))
    else:
        for handler in root.handlers:
            handler.setLevel(resolved)
    return root
