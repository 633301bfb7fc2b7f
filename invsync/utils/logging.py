from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from invsync.auth import current_session_user
from invsync.config import Config

DEFAULT_LOG_PATH = Path.home() / ".invsync" / "logs" / "invsync.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] [user=%(session_user)s] %(name)s: %(message)s"


class SessionUserFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.session_user = current_session_user.get()
        return True


def _create_file_handler(path: Path) -> RotatingFileHandler | None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=5)
    except OSError:
        return None


def configure_logging(config: Config) -> Path | None:
    """Install the stream and rotating file handlers on the root logger.

    Returns the log file in use, or ``None`` when the log directory is not
    writable and only the stream handler could be installed.
    """

    log_path = config.log_path or DEFAULT_LOG_PATH
    level = logging.getLevelName(config.log_level)
    if not isinstance(level, int):
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)
    user_filter = SessionUserFilter()

    # RotatingFileHandler is a StreamHandler too; only count plain streams.
    if not any(
        isinstance(handler, logging.StreamHandler)
        and not isinstance(handler, logging.FileHandler)
        for handler in root_logger.handlers
    ):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(user_filter)
        root_logger.addHandler(stream_handler)

    if not any(
        isinstance(handler, RotatingFileHandler)
        and getattr(handler, "baseFilename", "") == os.path.abspath(log_path)
        for handler in root_logger.handlers
    ):
        file_handler = _create_file_handler(log_path)
        if file_handler is None:
            root_logger.warning(
                "Log directory %s is not writable; logging to stdout only", log_path.parent
            )
            log_path = None
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(user_filter)
            root_logger.addHandler(file_handler)

    for handler in root_logger.handlers:
        if not any(isinstance(existing, SessionUserFilter) for existing in handler.filters):
            handler.addFilter(user_filter)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return log_path
