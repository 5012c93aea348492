"""dlpkg 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from typing import Any

import click

from dlpkg import __version__
from dlpkg.core.config import init_config
from dlpkg.services.container import get_container
from dlpkg.utils.logger import setup_logging_from_env


def _svc(workspace: str = ".") -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container(workspace)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, envvar="DLPKG_CONFIG",
              help="配置文件路径 (YAML)")
def main(config_path: str | None) -> None:
    """dlpkg - DomainLang 依赖包管理"""
    setup_logging_from_env()
    if config_path:
        init_config(config_path)


# 注册各领域子命令
from dlpkg.cli.cmd_deps import register as _reg_deps  # noqa: E402

_reg_deps(main)
