"""
Library API Backend — Logging Configuration
============================================

What:  One place that configures stdlib logging for the server and the
       seed command.

Format: 2024-01-15T12:00:00 [INFO] library_api.services.loan_service: ...
Handler: stdout (captured by Docker / the process manager)
"""

import logging
import sys
from typing import Optional

from library_api.config import Settings, settings as default_settings


def setup_logging(config: Optional[Settings] = None) -> None:
    config = config or default_settings

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # The access middleware replaces uvicorn's access log
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
