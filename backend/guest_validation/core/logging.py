import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import List

from guest_validation.core.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that flood INFO
QUIET_LOGGERS = ('uvicorn', 'sqlalchemy', 'multipart')

def _handlers(level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    # Rotating file next to the process, skipped when LOG_FILE is empty
    if settings.LOG_FILE:
        try:
            handlers.append(RotatingFileHandler(settings.LOG_FILE, maxBytes=10485760, backupCount=5))
        except OSError as e:
            print(f"File logging disabled ({settings.LOG_FILE}): {e}", file=sys.stderr)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers

def setup_logging():
    """Configure application logging on the root logger"""
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in _handlers(level):
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
