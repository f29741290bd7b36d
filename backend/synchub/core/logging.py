import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Give the root logger a stdout handler (or just the level when uvicorn already installed one).
    Celery workers and scripts call this at import time, the API calls it from main.
    """
    resolved_level = (level or DEFAULT_LEVEL).upper()
    root_logger = logging.getLogger()

    if not root_logger.handlers:
        logging.basicConfig(
            level=resolved_level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)],
        )
    else:
        root_logger.setLevel(resolved_level)

    # requests/urllib3 的连接池日志太吵
    logging.getLogger("urllib3").setLevel(max(logging.WARNING, root_logger.level))
    logging.captureWarnings(True)
    return logging.getLogger("synchub")
