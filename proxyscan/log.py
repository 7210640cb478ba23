from __future__ import annotations
import logging
import os
from logging.handlers import RotatingFileHandler
from .utils import logs_dir

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
ROOT_LOGGER = "proxyscan"

_configured = False


def setup_logging(level: str | int | None = None, to_file: bool = True) -> logging.Logger:
    """
    Настраивает логгер пакета (один раз на процесс):
      - консоль
      - файл logs/proxyscan.log с ротацией по 5MB
    Уровень берётся из аргумента или PROXYSCAN_LOG_LEVEL (по умолчанию INFO).
    """
    global _configured
    logger = logging.getLogger(ROOT_LOGGER)
    if _configured:
        return logger

    lvl = level or os.environ.get("PROXYSCAN_LOG_LEVEL", "INFO")
    if isinstance(lvl, str):
        lvl = logging.getLevelName(lvl.upper())
        if not isinstance(lvl, int):
            lvl = logging.INFO
    logger.setLevel(lvl)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if to_file:
        try:
            file_handler = RotatingFileHandler(
                logs_dir() / "proxyscan.log",
                maxBytes=5 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            # без файла логирования приложение всё равно работает
            logger.warning("File logging disabled: %s", e)

    _configured = True
    logger.debug("Logging configured (level=%s)", logging.getLevelName(lvl))
    return logger
