"""Logging setup. Call once at startup; later calls are no-ops."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_FILE = Path(__file__).resolve().parents[2] / "logs" / "lifecycle.log"


def setup_logging(*, environment: str) -> None:
    """Console logging everywhere; production also writes a rotating file at INFO."""
    root = logging.getLogger()
    if root.handlers:
        return

    production = (environment or "").strip().lower() == "production"
    root.setLevel(logging.INFO if production else logging.DEBUG)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if production:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Statement echo would drown out lifecycle events.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
