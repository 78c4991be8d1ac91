from __future__ import annotations

import logging
import sys

from vanplane.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_configured = False


def configure_logging() -> None:
    # Install one stream handler on the root logger; repeated calls are no-ops.
    global _configured
    if _configured:
        return
    level = logging.getLevelName(get_settings().log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)
    _configured = True
