"""import 语句解析

把 DomainLang import 说明符解析为具体文件路径:

  ./x, ../x      相对路径，目录优先: x.dlang 直接引用；无扩展名时依次尝试
                 x/<entry 或 index.dlang>、x.dlang
  @alias/rest    model.yaml paths 中最长匹配的别名；@/ 隐式指向工作区根
  owner/pkg[/p]  外部依赖，需要 model.yaml 与 model.lock，只读本地缓存

结果按 (base_dir, specifier) 缓存，model.yaml / model.lock 变化后调用
clear_cache()。
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from dlpkg.core.config import Config
from dlpkg.core.exceptions import ImportResolutionError
from dlpkg.core.manifest import ManifestManager, read_module_entry

logger = logging.getLogger(__name__)


class ImportResolver:
    """import 说明符 → 文件路径"""

    def __init__(self, manifests: ManifestManager, config: Config | None = None) -> None:
        self.manifests = manifests
        self.config = config or manifests.config
        self._cache: dict[tuple[str, str], Path] = {}
        self._lock = threading.Lock()

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def resolve_from(self, base_dir: str | Path, specifier: str) -> Path:
        """从 base_dir 解析 specifier

        Raises:
            ImportResolutionError: 无法解析（reason 指明原因）
        """
        key = (str(Path(base_dir).resolve()), specifier)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        result = self._resolve(Path(key[0]), specifier)
        logger.debug("import 已解析: %s -> %s", specifier, result)
        with self._lock:
            self._cache[key] = result
        return result

    def _resolve(self, base_dir: Path, specifier: str) -> Path:
        root = self.manifests.initialize(base_dir)
        if specifier.startswith(("./", "../")):
            return self._resolve_local(base_dir / specifier, specifier)
        if specifier.startswith("@"):
            return self._resolve_alias(specifier, root)
        return self._resolve_external(specifier, root)

    # ------------------------------------------------------------------
    # 本地路径
    # ------------------------------------------------------------------

    def _resolve_local(self, target: Path, specifier: str) -> Path:
        target = Path(os.path.normpath(target))
        ext = self.config.file_extension
        suffix = target.suffix
        if suffix == ext:
            if not target.is_file():
                raise ImportResolutionError(
                    specifier, "file-not-found",
                    "检查路径是否正确、文件是否存在", [target],
                )
            return target
        if suffix:
            raise ImportResolutionError(
                specifier, "unresolvable",
                f"DomainLang 文件必须使用 {ext} 扩展名", [target],
                message=f"import '{specifier}' 的扩展名 '{suffix}' 无效",
            )

        if target.is_dir():
            entry = read_module_entry(target, self.config)
            entry_file = target / entry
            if entry_file.is_file():
                return entry_file
            raise ImportResolutionError(
                specifier, "missing-entry",
                f"在模块目录中创建 '{entry}'，或在 model.yaml 中指定入口:\n"
                "  model:\n    entry: main.dlang",
                [entry_file],
            )

        file_with_ext = target.with_name(target.name + ext)
        if file_with_ext.is_file():
            return file_with_ext
        raise ImportResolutionError(
            specifier, "file-not-found",
            "检查路径是否正确、文件是否存在",
            [target / self.config.default_entry, file_with_ext],
        )

    # ------------------------------------------------------------------
    # 路径别名
    # ------------------------------------------------------------------

    def _resolve_alias(self, specifier: str, root: Path) -> Path:
        aliases = self.manifests.get_path_aliases(root)

        for alias in sorted(aliases, key=len, reverse=True):
            if specifier == alias:
                remainder = ""
            elif specifier.startswith(f"{alias}/"):
                remainder = specifier[len(alias) + 1:]
            else:
                continue
            manifest_path = self.manifests.get_manifest_path(root)
            manifest_dir = manifest_path.parent if manifest_path else root
            base = manifest_dir / aliases[alias]
            return self._resolve_local(base / remainder if remainder else base, specifier)

        if specifier.startswith("@/"):
            return self._resolve_local(root / specifier[2:], specifier)

        alias_name = specifier.split("/")[0]
        raise ImportResolutionError(
            specifier, "unknown-alias",
            f"在 model.yaml 的 paths 段中定义:\n  paths:\n    \"{alias_name}\": \"./some/path\"",
            message=f"import '{specifier}' 使用了未知的路径别名 '{alias_name}'",
        )

    # ------------------------------------------------------------------
    # 外部依赖
    # ------------------------------------------------------------------

    def _resolve_external(self, specifier: str, root: Path) -> Path:
        if self.manifests.get_manifest(root) is None:
            raise ImportResolutionError(
                specifier, "missing-manifest",
                f"创建 model.yaml 并添加依赖:\n  dependencies:\n    {specifier}:\n"
                "      ref: v1.0.0",
                message=f"外部依赖 '{specifier}' 需要 model.yaml",
            )
        if self.manifests.get_lock_file(root) is None:
            raise ImportResolutionError(
                specifier, "not-installed",
                "执行 'dlpkg install' 拉取依赖并生成 model.lock",
                message=f"依赖 '{specifier}' 尚未安装",
            )
        resolved = self.manifests.resolve_dependency_path(specifier, root)
        if resolved is None:
            raise ImportResolutionError(
                specifier, "dependency-not-found",
                f"添加到 dependencies:\n  dependencies:\n    {specifier}:\n"
                "      ref: v1.0.0\n然后执行 'dlpkg install'",
                message=f"依赖 '{specifier}' 不在 model.yaml 中或尚未安装",
            )
        return resolved
