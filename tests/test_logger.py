from logging.handlers import RotatingFileHandler
from pathlib import Path

from utils.logger import get_logger, logger


def _log_files(target):
    return {Path(h.baseFilename).name for h in target.handlers if isinstance(h, RotatingFileHandler)}


def test_module_loggers_write_their_own_file() -> None:
    module_logger = get_logger("notifications")

    assert _log_files(module_logger) == {"notifications.log"}
    assert _log_files(logger) == {"app.log"}
    assert module_logger.propagate is False


def test_get_logger_without_name_is_the_root_logger() -> None:
    assert get_logger() is logger
