"""CLI 依赖包管理命令"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import click

from dlpkg.cli import _svc
from dlpkg.core.exceptions import DLPkgError
from dlpkg.core.models import InstallOptions, InstallProgressEvent


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(outdated)
    group.add_command(cache_clear)
    group.add_command(resolve_import)


@contextmanager
def _friendly_errors() -> Iterator[None]:
    """业务异常转为 click 错误输出（退出码 1）"""
    try:
        yield
    except DLPkgError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


def _print_progress(event: InstallProgressEvent) -> None:
    if event.type == "start":
        click.echo(f"安装 {event.total} 个依赖...")
    elif event.type == "package-complete":
        tag = "缓存" if event.cached else "下载"
        click.echo(f"  ✓ {event.pkg} ({tag})")
    elif event.type == "package-error":
        click.echo(f"  ✗ {event.pkg}: {event.error}", err=True)


@click.command()
@click.option("--workspace", "-w", default=".", help="工作区目录")
@click.option("--frozen", is_flag=True, help="lock 与 model.yaml 不一致时失败，不更新 lock")
@click.option("--force", is_flag=True, help="忽略缓存与已锁定 commit，重新解析并下载")
def install(workspace: str, frozen: bool, force: bool) -> None:
    """安装 model.yaml 中声明的依赖并更新 model.lock"""
    with _friendly_errors():
        result = _svc(workspace).install.install(InstallOptions(
            workspace_root=workspace, frozen=frozen, force=force,
            on_progress=_print_progress,
        ))
    for warning in result.warnings:
        click.echo(f"警告: {warning}", err=True)
    lock_info = "model.lock 已更新" if result.lock_file_modified else "model.lock 未变化"
    click.echo(f"完成: {result.installed} 个下载, {result.cached} 个来自缓存 ({lock_info})")


@click.command()
@click.option("--workspace", "-w", default=".", help="工作区目录")
def outdated(workspace: str) -> None:
    """检查已锁定依赖是否有可用更新"""
    with _friendly_errors():
        result = _svc(workspace).outdated.check(workspace)
    if not result.dependencies:
        click.echo("没有已锁定的依赖。")
        return
    for dep in result.dependencies:
        click.echo(
            f"  {dep.pkg:30s} {dep.current:12s} {dep.latest or '-':12s} "
            f"[{dep.ref_type:6s}] {dep.status}"
        )
    s = result.summary
    click.echo(
        f"{s['upgrades_available']} 个可升级, {s['branches_behind']} 个分支落后, "
        f"{s['pinned_commits']} 个固定 commit, {s['up_to_date']} 个已是最新"
    )


@click.command(name="cache-clear")
@click.option("--workspace", "-w", default=".", help="工作区目录")
def cache_clear(workspace: str) -> None:
    """清空工作区包缓存 (.dlang/packages)"""
    cache = _svc(workspace).cache
    count = len(cache.list_packages())
    cache.clear()
    click.echo(f"已清理 {count} 个缓存包: {cache.packages_dir}")


@click.command(name="resolve")
@click.argument("specifier")
@click.option("--from", "base_dir", default=".", help="发起 import 的文件所在目录")
def resolve_import(specifier: str, base_dir: str) -> None:
    """把 import 说明符解析为文件路径（只读本地缓存）"""
    with _friendly_errors():
        path = _svc(base_dir).imports.resolve_from(base_dir, specifier)
    click.echo(str(path))
