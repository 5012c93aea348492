"""文件统一读写工具

集中管理 manifest (YAML)、lock / 元数据 (JSON) 的读写，避免各模块重复实现。
统一 encoding="utf-8"、大小限制、目录自动创建、原子写入。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 单个配置文件最大 10MB，防止异常大文件耗尽内存
MAX_DOCUMENT_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """原子写入文件：同目录临时文件 + os.replace

    并发读者要么看到旧内容，要么看到完整的新内容，不会读到写了一半的文件。
    失败时清理临时文件并抛出原异常。
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def _check_size(p: Path) -> None:
    size = p.stat().st_size
    if size > MAX_DOCUMENT_SIZE:
        raise ValueError(
            f"文件过大: {p} ({size} 字节), 超过限制 {MAX_DOCUMENT_SIZE} 字节"
        )


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 映射文档

    返回:
        dict: 文件不存在、为空或顶层不是映射时返回空字典

    异常:
        yaml.YAMLError: 语法错误（由调用方转换为领域异常）
        OSError: 读取失败
        ValueError: 文件超过 MAX_DOCUMENT_SIZE
    """
    p = Path(path)
    if not p.exists():
        return {}
    _check_size(p)

    with open(p, encoding="utf-8") as f:
        result = yaml.safe_load(f)

    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 顶层不是映射 (实际类型: %s)，按空文档处理",
            p, type(result).__name__,
        )
        return {}
    return result


def read_json(path: str | Path) -> Any:
    """读取 JSON 文档，文件不存在时返回 None

    异常:
        json.JSONDecodeError: 内容不是合法 JSON
    """
    p = Path(path)
    if not p.exists():
        return None
    _check_size(p)
    return json.loads(p.read_text(encoding="utf-8"))


def dump_json(data: Any) -> str:
    """统一的 JSON 序列化格式（2 空格缩进，末尾换行）"""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def write_json(path: str | Path, data: Any) -> None:
    """原子写入 JSON 文档"""
    atomic_write(Path(path), dump_json(data))
