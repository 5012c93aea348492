"""服务容器：统一依赖注入

同一容器内的实例共享状态（凭据缓存、manifest / lock 缓存等）。
CLI 通过 get_container() 获取服务，测试直接构造 ServiceContainer 并注入
假的 transport / executor。

依赖关系图（→ 表示依赖）:
  fetcher   → transport
  git_host  → fetcher, credentials
  install   → git_host, manifests, cache
  outdated  → git_host, manifests
  imports   → manifests

用法:
    container = ServiceContainer(workspace_root="path/to/project")
    result = container.install.install(InstallOptions(workspace_root=...))

    # 全局单例（CLI）
    from dlpkg.services.container import get_container
    svc = get_container().outdated
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dlpkg.core.config import Config
    from dlpkg.core.import_resolver import ImportResolver
    from dlpkg.core.manifest import ManifestManager
    from dlpkg.core.package_cache import PackageCache
    from dlpkg.services.credentials import CredentialProvider
    from dlpkg.services.fetcher import RetryingFetcher
    from dlpkg.services.git_host import GitHostClient
    from dlpkg.services.install_service import InstallService
    from dlpkg.services.outdated_service import OutdatedService
    from dlpkg.utils.net import HttpTransport
    from dlpkg.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器，每个实例对应一个工作区"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        workspace_root: str | Path = ".",
        transport: HttpTransport | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from dlpkg.core.config import get_config
            config = get_config()
        self._config = config
        self._workspace_root = Path(workspace_root).resolve()
        self._transport = transport
        self._executor = executor

    @property
    def config(self) -> Config:
        return self._config

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    # ---- 网络 / 凭据 ----

    @property
    def credentials(self) -> CredentialProvider:
        if "credentials" not in self._instances:
            from dlpkg.services.credentials import CredentialProvider
            self._instances["credentials"] = CredentialProvider(
                self._config, executor=self._executor,
            )
        return self._instances["credentials"]  # type: ignore[return-value]

    @property
    def fetcher(self) -> RetryingFetcher:
        if "fetcher" not in self._instances:
            from dlpkg.services.fetcher import RetryingFetcher, RetryPolicy
            transport = self._transport
            if transport is None:
                from dlpkg.utils.net import UrllibTransport
                transport = UrllibTransport(self._config.request_timeout)
            self._instances["fetcher"] = RetryingFetcher(
                transport, RetryPolicy.from_config(self._config),
                timeout=self._config.request_timeout,
            )
        return self._instances["fetcher"]  # type: ignore[return-value]

    @property
    def git_host(self) -> GitHostClient:
        if "git_host" not in self._instances:
            from dlpkg.services.git_host import GitHostClient
            self._instances["git_host"] = GitHostClient(
                self._config, self.fetcher, self.credentials,
            )
        return self._instances["git_host"]  # type: ignore[return-value]

    # ---- 工作区 ----

    @property
    def manifests(self) -> ManifestManager:
        if "manifests" not in self._instances:
            from dlpkg.core.manifest import ManifestManager
            manager = ManifestManager(self._config)
            manager.initialize(self._workspace_root)
            self._instances["manifests"] = manager
        return self._instances["manifests"]  # type: ignore[return-value]

    @property
    def cache(self) -> PackageCache:
        if "cache" not in self._instances:
            from dlpkg.core.package_cache import PackageCache
            self._instances["cache"] = PackageCache(
                self.manifests.get_workspace_root(),
                cache_subdir=self._config.cache_dir,
                metadata_file=self._config.metadata_file,
            )
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def imports(self) -> ImportResolver:
        if "imports" not in self._instances:
            from dlpkg.core.import_resolver import ImportResolver
            self._instances["imports"] = ImportResolver(self.manifests, self._config)
        return self._instances["imports"]  # type: ignore[return-value]

    # ---- 服务层 ----

    @property
    def install(self) -> InstallService:
        if "install" not in self._instances:
            from dlpkg.services.install_service import InstallService
            self._instances["install"] = InstallService(
                self._config, self.git_host,
                manifests=self.manifests, cache=self.cache,
            )
        return self._instances["install"]  # type: ignore[return-value]

    @property
    def outdated(self) -> OutdatedService:
        if "outdated" not in self._instances:
            from dlpkg.services.outdated_service import OutdatedService
            self._instances["outdated"] = OutdatedService(self.git_host, self.manifests)
        return self._instances["outdated"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container(workspace_root: str | Path = ".") -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）

    首次调用时绑定 workspace_root，之后的调用忽略该参数。
    """
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer(workspace_root=workspace_root)
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
