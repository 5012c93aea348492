"""集中配置管理

文件名、缓存布局、GitHub 端点、凭据环境变量、重试常量统一在此定义，
支持从 YAML 文件加载 + 编程式覆盖。重试/退避常量属于可调配置，
不是协议保证。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field

from dlpkg.utils.fileio import load_yaml

logger = logging.getLogger(__name__)

CONFIG_ENV = "DLPKG_CONFIG"


@dataclass
class Config:
    """包管理全局配置"""

    # 工作区文件
    manifest_file: str = "model.yaml"
    lock_file: str = "model.lock"
    cache_dir: str = ".dlang/packages"
    metadata_file: str = ".dlang-metadata.json"
    file_extension: str = ".dlang"
    default_entry: str = "index.dlang"

    # Git 托管
    github_host: str = "github.com"
    github_api_url: str = "https://api.github.com"
    github_api_version: str = "2022-11-28"

    # 凭据
    token_env: str = "DLANG_GITHUB_TOKEN"
    fallback_token_env: str = "GITHUB_TOKEN"
    credential_helper_timeout: float = 5.0

    # 网络重试（秒）
    max_retries: int = 2
    initial_delay: float = 1.0
    max_delay: float = 30.0
    request_timeout: float = 60.0

    # 安装
    max_workers: int = 4
    frozen_env: str = "DLANG_FROZEN"

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局配置仅供 CLI 入口使用；服务对象都接受显式 Config
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化时按 DLPKG_CONFIG 加载，否则为默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        path = os.getenv(CONFIG_ENV, "")
        _current = Config.from_file(path) if path else Config()
    return _current


def init_config(path: str) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
