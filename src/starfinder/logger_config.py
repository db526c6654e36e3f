"""starfinder 日志配置

库模块只调用 logging.getLogger(__name__)；handler 由命令行入口
通过 setup_logging 一次性挂到 root logger 上。
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

DEFAULT_LOG_FILE = Path(__file__).resolve().parents[2] / "logs" / "starfinder.log"

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level: Union[int, str]) -> int:
    """级别名 (不区分大小写) 或数值 -> 数值级别，未知名称按 INFO"""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: Union[int, str] = logging.INFO,
    console_output: bool = True,
) -> logging.Logger:
    """为 root logger 安装文件 (及控制台) handler

    重复调用会先关闭并移除已有的 handler。

    Args:
        log_file: 日志文件，默认 <项目根>/logs/starfinder.log
        log_level: 数值级别或级别名
        console_output: 是否同时输出到 stdout

    Returns:
        root logger
    """
    level = _resolve_level(log_level)
    log_file = DEFAULT_LOG_FILE if log_file is None else Path(log_file).resolve()

    root = logging.getLogger()
    root.setLevel(level)
    close_logging()

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        print(f"警告：无法写入日志文件 {log_file}: {e}", file=sys.stderr)
    else:
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(console_handler)

    root.info("日志: 文件 %s，级别 %s", log_file, logging.getLevelName(level))
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


def close_logging() -> None:
    """刷新、关闭并移除 root logger 上的全部 handler"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        handler.flush()
        handler.close()
        root.removeHandler(handler)
