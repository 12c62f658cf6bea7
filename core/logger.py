"""
TaskFlow 日志模块。

taskflow.* 日志树：
- logs/system.log: 扫描、救援、完成标记等运行记录
- logs/error.log: 单条目扫描失败等异常堆栈
- logs/corruption_dump.log: 无法解析的持久化记录 (条目、完成标记、事件行)
- stderr: 运维需要关注的警告
"""
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGS_DIR = Path(__file__).parent.parent / "logs"
ROOT_LOGGER_NAME = "taskflow"

MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _rotating_handler(filename: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        LOGS_DIR / filename,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: Optional[int] = None, console_level: int = logging.WARNING) -> logging.Logger:
    """
    初始化 taskflow 日志树，可重复调用 (会替换已有 handler)。

    Args:
        log_level: system.log 级别，默认取 TASKFLOW_LOG_LEVEL，否则 INFO
        console_level: 控制台级别
    """
    if log_level is None:
        log_level = logging.getLevelName(os.getenv("TASKFLOW_LOG_LEVEL", "INFO").upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    file_format = logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    logger.addHandler(_rotating_handler("system.log", log_level, file_format))
    logger.addHandler(_rotating_handler("error.log", logging.ERROR, file_format))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(console)
    return logger


def get_logger(name: str) -> logging.Logger:
    """模块 logger，如 get_logger("lifecycle") -> taskflow.lifecycle"""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_corruption(source: str, raw_record: str, error_msg: str) -> None:
    """
    把无法解析的记录原样写入 corruption_dump.log，调用方随后跳过该记录。

    Args:
        source: 文件名，事件日志为 "文件名:行号"
        raw_record: 原始内容 (截断到 500 字符)
        error_msg: 解析失败原因
    """
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    with open(LOGS_DIR / "corruption_dump.log", "a", encoding="utf-8") as f:
        f.write(f"[{datetime.now().isoformat()}] {source}: {error_msg}\n")
        f.write(f"  Raw: {raw_record[:500]}\n")
        f.write("-" * 50 + "\n")

    get_logger("store").warning("Skipped corrupted record in %s: %s", source, error_msg)
