"""Application-wide logging setup."""
import logging
import sys

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once with a single stream handler."""
    root = logging.getLogger()
    log_level = (level or settings.LOG_LEVEL).upper()

    if not any(getattr(h, "_healthq_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._healthq_handler = True
        root.addHandler(handler)

    root.setLevel(log_level)
    # SQL echo is controlled by DATABASE_ECHO, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
