import sys
from datetime import datetime
from pathlib import Path

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[app]} | {name}:{line} - {message}"


def log_file_path(root: str, name: str = "spiroreader") -> Path:
    """<root>/YYYY/MM/DD/<name>.log for today."""
    return Path(root) / datetime.now().strftime("%Y/%m/%d") / f"{name}.log"


def setup_logging(root: str, level: str = "INFO", name: str = "spiroreader", retention_days: int = 14):
    logfile = log_file_path(root, name)
    logfile.parent.mkdir(parents=True, exist_ok=True)
    logger.remove()
    logger.configure(extra={"app": name})
    logger.add(
        str(logfile),
        format=LOG_FORMAT,
        rotation="00:00",
        retention=f"{retention_days} days",
        level=level.upper(),
        encoding="utf-8",
        enqueue=True,
        backtrace=True,
        diagnose=True,
    )
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper())
    return logger
