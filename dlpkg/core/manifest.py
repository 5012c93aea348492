"""工作区 manifest / lock 管理

ManifestManager 负责:
  - 向上查找包含 model.yaml 的工作区根目录
  - 解析并校验 model.yaml（按 路径 + mtime 缓存）
  - 读写 model.lock
  - 把外部依赖 import 解析到包缓存中的文件路径（只读，不访问网络）

同一 start_path 的并发 initialize() 共享同一次目录查找。
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future
from pathlib import Path, PurePosixPath

import yaml

from dlpkg.core.config import Config
from dlpkg.core.exceptions import LockFileError, ManifestError, ValidationError
from dlpkg.core.models import LockFile, Manifest
from dlpkg.utils.fileio import load_yaml, read_json, write_json

logger = logging.getLogger(__name__)


def read_module_entry(module_dir: Path, config: Config | None = None) -> str:
    """读取目录下 model.yaml 的 model.entry；任何失败都返回默认入口"""
    cfg = config or Config()
    try:
        data = load_yaml(module_dir / cfg.manifest_file)
    except (OSError, ValueError, yaml.YAMLError):
        return cfg.default_entry
    model = data.get("model")
    if isinstance(model, dict) and isinstance(model.get("entry"), str) and model["entry"]:
        return model["entry"]
    return cfg.default_entry


def _is_inside(root: Path, relative: str) -> bool:
    """relative 为相对路径且解析后仍位于 root 内"""
    if not relative or Path(relative).is_absolute() or PurePosixPath(relative).is_absolute():
        return False
    root_resolved = root.resolve()
    target = (root_resolved / relative).resolve()
    return target == root_resolved or root_resolved in target.parents


def validate_manifest(manifest: Manifest, root: Path) -> None:
    """校验规范化后的 manifest

    Raises:
        ManifestError: 任一依赖或别名不合法，消息带修复提示
    """
    where = manifest.path or root
    for key, dep in manifest.dependencies.items():
        if dep.source and dep.path:
            raise ManifestError(
                f"{where}: 依赖 '{key}' 同时指定了 source 和 path",
                hint="git 依赖使用 source + ref，本地依赖只使用 path，二者只能选其一",
            )
        if dep.source and not dep.ref:
            raise ManifestError(
                f"{where}: 依赖 '{key}' 缺少 ref",
                hint=f"指定 tag、分支或 commit，例如:\n  {key}:\n    source: {dep.source}\n"
                     "    ref: v1.0.0",
            )
        if dep.path and not _is_inside(root, dep.path):
            raise ManifestError(
                f"{where}: 依赖 '{key}' 的 path '{dep.path}' 超出工作区",
                hint="path 必须是相对路径且位于工作区根目录内，例如 ./lib/shared",
            )
    for alias, target in manifest.paths.items():
        if not alias.startswith("@"):
            raise ManifestError(
                f"{where}: 路径别名 '{alias}' 必须以 @ 开头",
                hint=f"改为 '@{alias}'",
            )
        if not _is_inside(root, target):
            raise ManifestError(
                f"{where}: 路径别名 '{alias}' 的目标 '{target}' 超出工作区",
                hint="别名目标必须是相对路径且位于工作区根目录内，例如 ./shared",
            )


class ManifestManager:
    """工作区 manifest / lock 访问入口（线程安全）"""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self._root: Path | None = None
        self._lock = threading.RLock()
        self._inflight: dict[Path, Future[Path]] = {}
        self._manifest_cache: tuple[Path, int, Manifest] | None = None
        self._lock_cache: tuple[Path, int, LockFile] | None = None

    # ------------------------------------------------------------------
    # 工作区根目录
    # ------------------------------------------------------------------

    def initialize(self, start_path: str | Path) -> Path:
        """定位工作区根目录并设为当前根；返回根目录"""
        start = Path(start_path).resolve()
        with self._lock:
            future = self._inflight.get(start)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[start] = future

        if not owner:
            root = future.result()
        else:
            try:
                root = self._find_root(start)
                future.set_result(root)
            except BaseException as e:
                future.set_exception(e)
                raise
            finally:
                with self._lock:
                    self._inflight.pop(start, None)

        with self._lock:
            if root != self._root:
                self._root = root
                self._manifest_cache = None
                self._lock_cache = None
                logger.debug("工作区根目录: %s", root)
        return root

    def _find_root(self, start: Path) -> Path:
        current = start if start.is_dir() else start.parent
        for candidate in (current, *current.parents):
            if (candidate / self.config.manifest_file).is_file():
                return candidate
        return current

    def get_workspace_root(self, root: Path | None = None) -> Path:
        """当前工作区根目录；显式传入 root 时原样返回"""
        if root is not None:
            return root
        if self._root is None:
            raise ValidationError("ManifestManager 尚未初始化，请先调用 initialize()")
        return self._root

    def get_manifest_path(self, root: Path | None = None) -> Path | None:
        """当前工作区的 model.yaml 路径，不存在时返回 None"""
        path = self.get_workspace_root(root) / self.config.manifest_file
        return path if path.is_file() else None

    def get_lock_path(self, root: Path | None = None) -> Path:
        return self.get_workspace_root(root) / self.config.lock_file

    def get_cache_dir(self, root: Path | None = None) -> Path:
        """包缓存目录

        当前根位于 .dlang/packages/... 内部（正在解析某个已缓存包）时，
        返回外层项目的缓存目录。
        """
        root = self.get_workspace_root(root)
        cache_parts = Path(self.config.cache_dir).parts
        parts = root.parts
        n = len(cache_parts)
        for i in range(len(parts) - n, 0, -1):
            if parts[i:i + n] == cache_parts:
                return Path(*parts[:i]).joinpath(*cache_parts)
        return root / self.config.cache_dir

    # ------------------------------------------------------------------
    # manifest
    # ------------------------------------------------------------------

    def get_manifest(self, root: Path | None = None) -> Manifest | None:
        """解析 model.yaml；文件不存在返回 None

        Raises:
            ManifestError: YAML 语法错误或结构校验失败
        """
        path = self.get_workspace_root(root) / self.config.manifest_file
        try:
            mtime = path.stat().st_mtime_ns
        except FileNotFoundError:
            with self._lock:
                self._manifest_cache = None
            return None

        with self._lock:
            cached = self._manifest_cache
            if cached is not None and cached[0] == path and cached[1] == mtime:
                return cached[2]

        try:
            data = load_yaml(path)
        except yaml.YAMLError as e:
            raise ManifestError(
                f"{path}: YAML 语法错误: {e}",
                hint="检查缩进与冒号，可用 YAML 校验工具定位问题行",
            ) from e
        except ValueError as e:
            raise ManifestError(str(e), hint="model.yaml 不应超过 10MB") from e

        manifest = Manifest.from_dict(data, path=path)
        validate_manifest(manifest, path.parent)
        with self._lock:
            self._manifest_cache = (path, mtime, manifest)
        return manifest

    def get_path_aliases(self, root: Path | None = None) -> dict[str, str]:
        manifest = self.get_manifest(root)
        return dict(manifest.paths) if manifest else {}

    # ------------------------------------------------------------------
    # lock 文件
    # ------------------------------------------------------------------

    def get_lock_file(self, root: Path | None = None) -> LockFile | None:
        """读取 model.lock；文件不存在返回 None

        Raises:
            LockFileError: 内容不是合法 JSON
        """
        path = self.get_lock_path(root)
        try:
            mtime = path.stat().st_mtime_ns
        except FileNotFoundError:
            with self._lock:
                self._lock_cache = None
            return None

        with self._lock:
            cached = self._lock_cache
            if cached is not None and cached[0] == path and cached[1] == mtime:
                return cached[2]

        try:
            data = read_json(path)
        except json.JSONDecodeError as e:
            raise LockFileError(
                f"{path}: 不是合法的 JSON ({e})。删除后重新执行 install 可重新生成"
            ) from e
        except ValueError as e:
            raise LockFileError(f"{path}: {e}") from e

        lock = LockFile.from_dict(data)
        with self._lock:
            self._lock_cache = (path, mtime, lock)
        return lock

    def refresh_lock_file(self, root: Path | None = None) -> LockFile | None:
        self.invalidate_lock_cache()
        return self.get_lock_file(root)

    def save_lock_file(self, lock: LockFile, root: Path | None = None) -> Path:
        """原子写入 model.lock 并刷新缓存"""
        path = self.get_lock_path(root)
        write_json(path, lock.to_dict())
        with self._lock:
            self._lock_cache = (path, path.stat().st_mtime_ns, lock)
        logger.info("lock 文件已写入: %s", path)
        return path

    # ------------------------------------------------------------------
    # 缓存失效
    # ------------------------------------------------------------------

    def invalidate_manifest_cache(self) -> None:
        with self._lock:
            self._manifest_cache = None

    def invalidate_lock_cache(self) -> None:
        with self._lock:
            self._lock_cache = None

    def invalidate_cache(self) -> None:
        with self._lock:
            self._manifest_cache = None
            self._lock_cache = None

    # ------------------------------------------------------------------
    # 依赖路径解析
    # ------------------------------------------------------------------

    def resolve_dependency_path(self, specifier: str, root: Path | None = None) -> Path | None:
        """把 ``owner/pkg[/sub/path]`` 解析到缓存中的文件路径

        只读取本地缓存，找不到依赖或尚未安装时返回 None。
        """
        lock = self.get_lock_file(root)
        manifest = self.get_manifest(root)
        if lock is None or manifest is None:
            return None

        # 最长的依赖 key 优先匹配
        for key in sorted(manifest.dependencies, key=len, reverse=True):
            if specifier != key and not specifier.startswith(f"{key}/"):
                continue
            dep = manifest.dependencies[key]
            if dep.is_local or not dep.source:
                continue
            locked = lock.dependencies.get(dep.source)
            if locked is None:
                return None
            owner, repo = dep.owner_repo()
            if not owner:
                return None
            package_dir = self.get_cache_dir(root) / owner / repo / locked.commit
            remainder = specifier[len(key):].lstrip("/")
            if remainder:
                return package_dir / remainder
            return package_dir / read_module_entry(package_dir, self.config)
        return None
