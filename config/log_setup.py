# Path: config/log_setup.py
# Purpose: Configure application-wide logging.
# Layer: config.
# Details: Installs a single stream handler on the root logger using the level from AppSettings.

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the root logger; repeated calls only adjust the level."""

    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(handler, "_design_search", False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._design_search = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
