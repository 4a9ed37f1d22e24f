"""
Logging setup for the CRM.
Every module logs through one of the named loggers below instead of print().
"""

import logging
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional

import config

LOG_DIR = Path(config.LOG_DIR)
LOG_DIR.mkdir(parents=True, exist_ok=True)

LOG_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}

def setup_logger(
    name: str = "field_crm",
    log_file: Optional[str] = None,
    level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Build a logger writing to a rotating file and to the console.

    Args:
        name: logger name
        log_file: file name inside LOG_DIR (default: app.log)
        level: console level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        max_bytes: size before the file is rotated
        backup_count: number of rotated files kept

    Returns:
        Logger: the configured logger
    """
    logger = logging.getLogger(name)

    # already configured
    if logger.handlers:
        return logger

    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)
    logger.setLevel(logging.DEBUG)

    log_path = LOG_DIR / (log_file or "app.log")

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    file_handler.setFormatter(detailed_formatter)
    console_handler.setFormatter(simple_formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    # child loggers write their own files, keep them out of app.log twice
    logger.propagate = name == "field_crm"

    return logger

logger = setup_logger("field_crm", level=config.LOG_LEVEL)

service_logger = setup_logger("field_crm.service", "service.log", level=config.LOG_LEVEL)
db_logger = setup_logger("field_crm.database", "database.log", level="WARNING")
web_logger = setup_logger("field_crm.web", "web.log", level=config.LOG_LEVEL)

def get_logger(module_name: str = None) -> logging.Logger:
    """
    Logger for a given module, e.g. get_logger('services.payment')
    """
    if module_name:
        # own file: app.log is rotated by the root logger alone
        return setup_logger(f"field_crm.{module_name}", f"{module_name}.log", level=config.LOG_LEVEL)
    return logger
