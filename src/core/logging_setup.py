# src/core/logging_setup.py
import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

from src.core.config import _parse_int

LOG_FILE_NAME = 'memebot.log'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
JSON_FIELDS = '%(asctime)s %(levelname)s %(name)s %(module)s %(message)s'

# 这些库的调试输出过于嘈杂
NOISY_LOGGERS = ('discord', 'discord.http', 'discord.gateway', 'aiosqlite')


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    handler.setLevel(level)
    return handler


def _json_file_handler(log_dir: Path) -> logging.Handler:
    """按天轮换的 JSON 日志，extra 中的 log_context 字段会原样写入。"""
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        when='midnight',
        interval=_parse_int('LOG_ROTATION_INTERVAL_DAYS', 1),
        backupCount=_parse_int('LOG_BACKUP_COUNT', 7),
        encoding='utf-8',
    )
    handler.setFormatter(JsonFormatter(
        JSON_FIELDS,
        rename_fields={'asctime': 'ts', 'levelname': 'severity', 'name': 'logger'},
        json_ensure_ascii=False,
    ))
    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging(log_dir: str = 'logs') -> bool:
    """
    给根 logger 挂上控制台和 JSON 文件两个处理器。
    重复调用不会再次添加，返回值表示本次是否真的做了配置。
    """
    root = logging.getLogger()
    if root.handlers:
        return False

    level = logging.getLevelName(os.getenv('LOG_LEVEL', 'INFO').upper())
    if not isinstance(level, int):
        level = logging.INFO

    root.setLevel(logging.DEBUG)
    root.addHandler(_console_handler(level))
    root.addHandler(_json_file_handler(Path(log_dir)))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info("日志已就绪", extra={'log_dir': str(log_dir), 'console_level': logging.getLevelName(level)})
    return True
