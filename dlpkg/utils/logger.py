"""dlpkg 日志配置

普通文本与结构化 JSON 两种输出。业务模块只使用 logging.getLogger(__name__)，
由 CLI 入口调用 setup_logging() 一次性配置根日志器。

按包记录的日志可通过 extra={"package": "owner/repo"} 附带包名，
JSON 输出会把它放进独立字段，便于 CI 按包过滤。
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

LOG_LEVEL_ENV = "DLPKG_LOG_LEVEL"
LOG_JSON_ENV = "DLPKG_LOG_JSON"


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出字段: timestamp, level, logger, message, module, function, line,
    以及可选的 package / exception。
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        package = getattr(record, "package", None)
        if package:
            log_entry["package"] = package
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器（输出到 stderr，重复调用不会叠加 handler）

    参数:
        level: DEBUG / INFO / WARNING / ERROR / CRITICAL，无法识别时回退 INFO
        json_output: True 时输出 JSON 行
    """
    reset_logging()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)-7s] %(name)s: %(message)s")
        )
    root.addHandler(handler)


def setup_logging_from_env() -> None:
    """按环境变量 DLPKG_LOG_LEVEL / DLPKG_LOG_JSON 配置日志"""
    setup_logging(
        level=os.getenv(LOG_LEVEL_ENV, "INFO"),
        json_output=os.getenv(LOG_JSON_ENV, "") == "1",
    )


def reset_logging() -> None:
    """移除根日志器上的所有 handler（测试中重新配置时使用）"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
