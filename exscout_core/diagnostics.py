"""
Logging helpers for applications embedding exscout_core.

Library modules only call ``logging.getLogger(__name__)``. Handlers belong
to the embedding application, which either configures the root logger
itself or calls ``configure_logging`` once at start-up:

    from exscout_core import configure_logging
    configure_logging()
"""

import logging
from typing import Optional

from .config import Config, config

PACKAGE_LOGGER = "exscout_core"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
HANDLER_NAME = "exscout-console"


def configure_logging(cfg: Optional[Config] = None, level: Optional[int] = None) -> logging.Logger:
    """Attach a console handler to the package logger.

    The level is DEBUG when ``enable_debug`` is set (``EXSCOUT_DEBUG``),
    otherwise INFO, unless ``level`` is given. Calling it again only updates
    the level. Records keep propagating to the root logger.
    """
    cfg = cfg or config
    if level is None:
        level = logging.DEBUG if cfg.enable_debug else logging.INFO

    lg = logging.getLogger(PACKAGE_LOGGER)
    lg.setLevel(level)
    handler = next((h for h in lg.handlers if h.get_name() == HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        lg.addHandler(handler)
    handler.setLevel(level)
    return lg


def mask_value(value: str, keep: int = 4) -> str:
    """Shorten wallet/card values before they reach the log."""
    value = value or ""
    if len(value) <= keep * 2:
        return value[:keep] + "..."
    return f"{value[:keep]}...{value[-keep:]}"
