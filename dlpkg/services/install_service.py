"""依赖安装服务

流程:
  1. 参数校验（--frozen 与 --force 互斥；DLANG_FROZEN=1 等同 --frozen）
  2. 读取 model.yaml / model.lock
  3. frozen 模式: 对比 manifest 与 lock 的 ref，不一致立即失败（不访问网络）
  4. 并发处理每个 git 依赖: ref → commit，命中缓存则校验 integrity，
     否则下载 tarball、校验 SHA-512、写入缓存与元数据
  5. lock 内容变化时写回（frozen 模式从不写）

进度事件顺序: start → (package-start → package-progress* →
package-complete | package-error) × N → complete
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from dlpkg.core.config import Config
from dlpkg.core.exceptions import (
    FrozenDriftError,
    IntegrityError,
    ManifestError,
    ValidationError,
)
from dlpkg.core.manifest import ManifestManager
from dlpkg.core.models import (
    LOCK_FILE_VERSION,
    DependencySpec,
    InstallOptions,
    InstallProgressEvent,
    InstallResult,
    LockedDependency,
    LockFile,
    PackageMetadata,
    ProgressCallback,
)
from dlpkg.core.package_cache import PackageCache
from dlpkg.core.semver import detect_ref_type
from dlpkg.services.git_host import GitHostClient
from dlpkg.utils.fileio import read_json

logger = logging.getLogger(__name__)


@dataclass
class LockMismatches:
    """manifest 与 lock 的差异"""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    changed: list[dict[str, str]] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def detect_lock_mismatches(
    deps: list[DependencySpec], lock: LockFile | None,
) -> LockMismatches:
    """只比较 ref，不访问网络；lock 缺失时全部视为新增"""
    result = LockMismatches()
    locked = lock.dependencies if lock is not None else {}
    declared = {d.source: d for d in deps}
    for pkg, dep in declared.items():
        entry = locked.get(pkg)
        if entry is None:
            result.added.append(pkg)
        elif entry.ref != dep.ref:
            result.changed.append({
                "pkg": pkg, "manifest_ref": dep.ref, "lock_ref": entry.ref,
            })
    result.removed = sorted(pkg for pkg in locked if pkg not in declared)
    return result


@dataclass
class _Outcome:
    pkg: str
    locked: LockedDependency
    cached: bool
    warning: str = ""


class _Emitter:
    """串行化进度回调（回调在工作线程中触发）"""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self._lock = threading.Lock()

    def __call__(self, event: InstallProgressEvent) -> None:
        if self._callback is None:
            return
        with self._lock:
            self._callback(event)


class InstallService:
    """依赖安装编排"""

    def __init__(
        self,
        config: Config,
        git_host: GitHostClient,
        *,
        manifests: ManifestManager | None = None,
        cache: PackageCache | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.git_host = git_host
        self.manifests = manifests or ManifestManager(config)
        self._cache = cache
        self._env = env if env is not None else os.environ

    def _cache_for(self, root: Path) -> PackageCache:
        if self._cache is not None and self._cache.workspace_root == root:
            return self._cache
        return PackageCache(
            root, cache_subdir=self.config.cache_dir,
            metadata_file=self.config.metadata_file,
        )

    def is_frozen(self, options: InstallOptions) -> bool:
        return options.frozen or self._env.get(self.config.frozen_env, "") == "1"

    def install(self, options: InstallOptions) -> InstallResult:
        """安装 model.yaml 中声明的全部 git 依赖

        Raises:
            ValidationError: --frozen 与 --force 同时使用，或 source 格式无效
            ManifestError: model.yaml 缺失或无效
            FrozenDriftError: frozen 模式下 lock 与 manifest 不一致
            IntegrityError: 下载或缓存内容与 lock 记录的 integrity 不符
        """
        frozen = self.is_frozen(options)
        if frozen and options.force:
            raise ValidationError(
                "--frozen 与 --force 不能同时使用", details=["frozen", "force"],
            )

        root = self.manifests.initialize(Path(options.workspace_root).resolve())
        manifest = self.manifests.get_manifest(root)
        if manifest is None:
            raise ManifestError(
                f"工作区中未找到 {self.config.manifest_file}: {root}",
                hint=f"在工作区根目录创建 {self.config.manifest_file} 并声明 dependencies",
            )

        deps = manifest.git_dependencies()
        skipped = len(manifest.dependencies) - len(deps)
        if skipped:
            logger.debug("跳过 %d 个本地 path 依赖", skipped)
        if not deps:
            logger.info("model.yaml 未声明 git 依赖")
            return InstallResult()
        invalid = [dep for dep in deps if not dep.owner_repo()[0]]
        if invalid:
            raise ValidationError(
                "source 格式无效，应为 owner/repo: "
                + ", ".join(f"{d.key} ('{d.source}')" for d in invalid),
                details=[d.key for d in invalid],
            )

        lock = self.manifests.get_lock_file(root)
        if frozen:
            mismatches = detect_lock_mismatches(deps, lock)
            if lock is None:
                raise FrozenDriftError(
                    mismatches.added, [], [],
                    message="lock 文件不存在 (--frozen 模式)",
                )
            if not mismatches.empty:
                raise FrozenDriftError(
                    mismatches.added, mismatches.removed, mismatches.changed,
                )

        cache = self._cache_for(root)
        emit = _Emitter(options.on_progress)
        packages = [d.source for d in deps]
        emit(InstallProgressEvent(type="start", total=len(deps), packages=packages))

        locked_deps = lock.dependencies if lock is not None else {}
        workers = max(1, min(options.max_workers or self.config.max_workers, len(deps)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(
                    self._install_one, dep, locked_deps.get(dep.source),
                    cache, options.force, emit,
                )
                for dep in deps
            ]
        # 所有任务结束后按声明顺序抛出第一个错误
        outcomes = [f.result() for f in futures]

        result = InstallResult(
            installed=sum(1 for o in outcomes if not o.cached),
            cached=sum(1 for o in outcomes if o.cached),
            warnings=[o.warning for o in outcomes if o.warning],
            lock_data={o.pkg: o.locked for o in outcomes},
        )
        for warning in result.warnings:
            logger.warning(warning)

        if not frozen:
            new_lock = LockFile(version=LOCK_FILE_VERSION, dependencies=result.lock_data)
            result.lock_file_modified = self._write_lock_if_changed(new_lock, root)

        emit(InstallProgressEvent(
            type="complete", installed=result.installed, cached=result.cached,
        ))
        logger.info(
            "安装完成: %d 个下载, %d 个来自缓存", result.installed, result.cached,
        )
        return result

    def detect_lock_mismatches(self, workspace_root: str | Path) -> LockMismatches:
        """对比工作区 manifest 与 lock（供 CLI 诊断使用）"""
        root = self.manifests.initialize(workspace_root)
        manifest = self.manifests.get_manifest(root)
        deps = manifest.git_dependencies() if manifest else []
        return detect_lock_mismatches(deps, self.manifests.get_lock_file(root))

    # ------------------------------------------------------------------
    # 单个依赖
    # ------------------------------------------------------------------

    def _install_one(
        self,
        dep: DependencySpec,
        locked: LockedDependency | None,
        cache: PackageCache,
        force: bool,
        emit: _Emitter,
    ) -> _Outcome:
        pkg = dep.source
        try:
            return self._process(dep, locked, cache, force, emit)
        except Exception as e:
            logger.error("安装失败: %s: %s", pkg, e, extra={"package": pkg})
            emit(InstallProgressEvent(type="package-error", pkg=pkg, error=str(e)))
            raise

    def _process(
        self,
        dep: DependencySpec,
        locked: LockedDependency | None,
        cache: PackageCache,
        force: bool,
        emit: _Emitter,
    ) -> _Outcome:
        pkg = dep.source
        owner, repo = dep.owner_repo()
        emit(InstallProgressEvent(type="package-start", pkg=pkg, status="resolving"))

        if locked is not None and locked.ref == dep.ref and not force:
            commit = locked.commit
        else:
            commit = self.git_host.resolve_ref_to_commit(owner, repo, dep.ref)
        ref_type = detect_ref_type(dep.ref)
        same_commit = locked is not None and locked.commit == commit
        expected = locked.integrity if same_commit and locked is not None else ""

        if force:
            cache.remove(owner, repo, commit)
        elif (
            expected and cache.has(owner, repo, commit)
            and cache.get_metadata(owner, repo, commit) is None
        ):
            # 缓存无元数据可比对，按 lock 中的 integrity 重新下载校验
            logger.warning(
                "缓存缺少元数据，重新下载校验: %s@%s", pkg, commit[:12],
                extra={"package": pkg},
            )
            cache.remove(owner, repo, commit)

        if cache.has(owner, repo, commit):
            emit(InstallProgressEvent(type="package-start", pkg=pkg, status="verifying"))
            entry, warning = self._verify_cached(
                pkg, owner, repo, commit, dep.ref, ref_type, expected,
                locked if same_commit else None, cache,
            )
            emit(InstallProgressEvent(type="package-complete", pkg=pkg, cached=True))
            return _Outcome(pkg=pkg, locked=entry, cached=True, warning=warning)

        emit(InstallProgressEvent(type="package-start", pkg=pkg, status="downloading"))

        def on_bytes(received: int, total: int | None) -> None:
            emit(InstallProgressEvent(
                type="package-progress", pkg=pkg,
                bytes_received=received, total_bytes=total,
            ))

        download = self.git_host.download_tarball(owner, repo, commit, on_progress=on_bytes)
        try:
            emit(InstallProgressEvent(type="package-start", pkg=pkg, status="verifying"))
            if expected and download.integrity != expected:
                raise IntegrityError(pkg, expected, download.integrity)
            cache.put(owner, repo, commit, download.path)
            cache.put_metadata(owner, repo, commit, PackageMetadata(
                integrity=download.integrity, resolved=download.resolved, commit_sha=commit,
            ))
        finally:
            download.path.unlink(missing_ok=True)

        emit(InstallProgressEvent(type="package-complete", pkg=pkg, cached=False))
        return _Outcome(
            pkg=pkg,
            locked=LockedDependency(
                ref=dep.ref, ref_type=ref_type, resolved=download.resolved,
                commit=commit, integrity=download.integrity,
            ),
            cached=False,
        )

    def _verify_cached(
        self,
        pkg: str,
        owner: str,
        repo: str,
        commit: str,
        ref: str,
        ref_type: str,
        expected: str,
        locked: LockedDependency | None,
        cache: PackageCache,
    ) -> tuple[LockedDependency, str]:
        """校验缓存条目；返回 lock 条目与可选警告"""
        metadata = cache.get_metadata(owner, repo, commit)
        warning = ""
        if metadata is not None:
            if expected and metadata.integrity != expected:
                raise IntegrityError(pkg, expected, metadata.integrity)
            if not expected and locked is not None:
                logger.info("lock 条目缺少 integrity，已从缓存元数据补全: %s", pkg)
            integrity, resolved = expected or metadata.integrity, metadata.resolved
        else:
            # 有 integrity 记录的条目在 _process 中已被移除并重新下载
            integrity = ""
            resolved = locked.resolved if locked is not None else (
                self.git_host.tarball_url(owner, repo, commit)
            )
            warning = f"依赖 '{pkg}' 没有 integrity 记录（旧版 lock 文件且缓存缺少元数据）"
        return LockedDependency(
            ref=ref, ref_type=ref_type, resolved=resolved,
            commit=commit, integrity=integrity,
        ), warning

    def _write_lock_if_changed(self, lock: LockFile, root: Path) -> bool:
        path = self.manifests.get_lock_path(root)
        try:
            current = read_json(path)
        except ValueError:
            current = None
        if current == lock.to_dict():
            return False
        self.manifests.save_lock_file(lock, root)
        return True
