import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for CLI and scheduler entry points."""
    from marketplace_cod.config import settings

    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # SQL echo is controlled by DEBUG on the engine
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
