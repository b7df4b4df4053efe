import os
import sys
from pathlib import Path

from loguru import logger


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{file.path:}:{line:}</magenta> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | "
    "{level: <8} | "
    "{extra[name]}:{function}:{line} | "
    "{file.path}:{line} - "
    "{message}"
)


class LoggerPool:
    """按服务名管理 loguru logger，每个服务独立的控制台/文件输出"""

    def __init__(self):
        self.logger_pool = {}
        self._sink_ids = {}
        self._initialized = False

    def _initialize_default(self):
        if not self._initialized:
            self._initialized = True
            self.set_logger("default", "DEBUG", "", "", "")

    def get_logger(self, name):
        self._initialize_default()
        return self.logger_pool.get(name, self.logger_pool.get("default"))

    def set_logger(self, name: str, log_level: str, log_dir: str, retention: str, rotation: str):
        self._initialize_default()

        # loguru 的 sink 是全局的，只让带有对应 name 的记录进入该服务的 sink
        for sink_id in self._sink_ids.pop(name, []):
            logger.remove(sink_id)

        def only_this(record, _name=name):
            return record["extra"].get("name") == _name

        sink_ids = [
            logger.add(
                sink=sys.stderr,
                level=log_level,
                format=CONSOLE_FORMAT,
                filter=only_this,
                colorize=True,
                enqueue=True,
            )
        ]

        if log_dir:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            file_options = {"encoding": "utf-8", "enqueue": True, "filter": only_this}
            if rotation:
                file_options["rotation"] = rotation
            if retention:
                file_options["retention"] = retention

            # 普通日志文件
            sink_ids.append(logger.add(
                sink=f"{log_dir}/{name}_{{time:YYYY-MM-DD}}.log",
                level=log_level,
                format=FILE_FORMAT,
                **file_options,
            ))

            # 错误日志文件
            sink_ids.append(logger.add(
                sink=f"{log_dir}/{name}_errors_{{time:YYYY-MM-DD}}.log",
                level="ERROR",
                format=FILE_FORMAT + "\n{exception}",
                **file_options,
            ))

        self._sink_ids[name] = sink_ids
        self.logger_pool[name] = logger.bind(name=name)
        return self.logger_pool[name]

    def set_logger_from_env(self, name: str, prefix: str):
        """按 <PREFIX>_LOG_* 环境变量配置服务 logger"""
        return self.set_logger(
            name=name,
            log_level=os.getenv(f"{prefix}_LOG_LEVEL", "INFO"),
            log_dir=os.getenv(f"{prefix}_LOG_DIR", ""),
            retention=os.getenv(f"{prefix}_LOG_RETENTION", ""),
            rotation=os.getenv(f"{prefix}_LOG_ROTATION", ""),
        )


# 移除 loguru 自带的 stderr sink，统一由 LoggerPool 管理输出
logger.remove()

logger_pool = LoggerPool()
