"""核心数据模型

manifest / lock / 缓存元数据 / 凭据 / 安装结果等数据类集中定义，
其他模块统一从此处导入。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from dlpkg.core.exceptions import ManifestError

REF_TAG = "tag"
REF_BRANCH = "branch"
REF_COMMIT = "commit"
REF_TYPES = (REF_TAG, REF_BRANCH, REF_COMMIT)

LOCK_FILE_VERSION = "1"


# =========================================================================
# Manifest
# =========================================================================


@dataclass
class ModelInfo:
    """model.yaml 中的 model 段"""

    name: str = ""
    version: str = ""
    entry: str = ""


@dataclass
class DependencySpec:
    """规范化后的依赖声明

    manifest 中依赖可以写成短格式 ``"owner/repo": "v1.0.0"`` 或扩展格式
    ``{source, path, ref, description}``，经 normalize_dependency 统一为本类。
    """

    key: str
    source: str = ""
    path: str = ""
    ref: str = ""
    description: str = ""
    inline: bool = False  # 原始写法是否为短格式

    @property
    def is_local(self) -> bool:
        return bool(self.path)

    def owner_repo(self) -> tuple[str, str]:
        """拆分 source 为 (owner, repo)，格式不符时返回空串"""
        parts = self.source.split("/")
        if len(parts) != 2 or not all(parts):
            return "", ""
        return parts[0], parts[1]


def normalize_dependency(key: str, raw: Any) -> DependencySpec:
    """把短格式 / 扩展格式依赖统一为 DependencySpec（不修改原始数据）

    扩展格式中 source 与 path 都未指定时，以 key 作为 source。
    """
    if isinstance(raw, str):
        return DependencySpec(key=key, source=key, ref=raw, inline=True)
    if isinstance(raw, dict):
        source = str(raw.get("source") or "")
        path = str(raw.get("path") or "")
        if not source and not path:
            source = key
        return DependencySpec(
            key=key,
            source=source,
            path=path,
            ref=str(raw.get("ref") or ""),
            description=str(raw.get("description") or ""),
        )
    raise ManifestError(
        f"依赖 '{key}' 格式无效: 期望字符串或映射，实际为 {type(raw).__name__}",
        hint="使用 'owner/repo: v1.0.0' 或 {source, ref} / {path} 扩展格式",
    )


@dataclass
class Manifest:
    """解析后的 model.yaml"""

    model: ModelInfo = field(default_factory=ModelInfo)
    dependencies: dict[str, DependencySpec] = field(default_factory=dict)
    paths: dict[str, str] = field(default_factory=dict)
    path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> Manifest:
        model_raw = data.get("model") or {}
        if not isinstance(model_raw, dict):
            raise ManifestError(
                f"{path}: 'model' 段必须是映射",
                hint="示例:\n  model:\n    name: my-model\n    entry: index.dlang",
            )
        deps_raw = data.get("dependencies") or {}
        paths_raw = data.get("paths") or {}
        if not isinstance(deps_raw, dict) or not isinstance(paths_raw, dict):
            raise ManifestError(
                f"{path}: 'dependencies' 与 'paths' 必须是映射",
                hint="检查 model.yaml 缩进是否正确",
            )
        return cls(
            model=ModelInfo(
                name=str(model_raw.get("name") or ""),
                version=str(model_raw.get("version") or ""),
                entry=str(model_raw.get("entry") or ""),
            ),
            dependencies={
                str(k): normalize_dependency(str(k), v) for k, v in deps_raw.items()
            },
            paths={str(k): str(v) for k, v in paths_raw.items()},
            path=path,
        )

    def git_dependencies(self) -> list[DependencySpec]:
        return [d for d in self.dependencies.values() if not d.is_local]


# =========================================================================
# Lock 文件
# =========================================================================


@dataclass
class LockedDependency:
    """lock 文件中单个依赖的解析结果"""

    ref: str
    ref_type: str
    resolved: str
    commit: str
    integrity: str = ""

    def to_dict(self) -> dict[str, str]:
        data = {
            "ref": self.ref,
            "refType": self.ref_type,
            "resolved": self.resolved,
            "commit": self.commit,
        }
        if self.integrity:
            data["integrity"] = self.integrity
        return data

    @classmethod
    def from_dict(cls, data: Any) -> LockedDependency | None:
        """结构无效时返回 None；缺失 refType 视为 commit（兼容旧 lock 文件）"""
        if not isinstance(data, dict):
            return None
        ref, resolved, commit = data.get("ref"), data.get("resolved"), data.get("commit")
        if not all(isinstance(v, str) for v in (ref, resolved, commit)):
            return None
        ref_type = data.get("refType")
        if ref_type not in REF_TYPES:
            ref_type = REF_COMMIT
        integrity = data.get("integrity")
        return cls(
            ref=ref, ref_type=ref_type, resolved=resolved, commit=commit,
            integrity=integrity if isinstance(integrity, str) else "",
        )


@dataclass
class LockFile:
    """model.lock"""

    version: str = LOCK_FILE_VERSION
    dependencies: dict[str, LockedDependency] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "dependencies": {
                k: v.to_dict() for k, v in sorted(self.dependencies.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> LockFile:
        if not isinstance(data, dict):
            return cls()
        version = data.get("version")
        deps: dict[str, LockedDependency] = {}
        raw_deps = data.get("dependencies")
        if isinstance(raw_deps, dict):
            for key, value in raw_deps.items():
                locked = LockedDependency.from_dict(value)
                if locked is not None:
                    deps[str(key)] = locked
        return cls(
            version=version if isinstance(version, str) else LOCK_FILE_VERSION,
            dependencies=deps,
        )


# =========================================================================
# 缓存元数据 / 凭据
# =========================================================================


@dataclass
class PackageMetadata:
    """缓存包旁的元数据 (.dlang-metadata.json)"""

    integrity: str
    resolved: str
    commit_sha: str

    def to_dict(self) -> dict[str, str]:
        return {
            "integrity": self.integrity,
            "resolved": self.resolved,
            "commitSha": self.commit_sha,
        }

    @classmethod
    def from_dict(cls, data: Any) -> PackageMetadata | None:
        if not isinstance(data, dict):
            return None
        values = (data.get("integrity"), data.get("resolved"), data.get("commitSha"))
        if not all(isinstance(v, str) for v in values):
            return None
        return cls(*values)


@dataclass(frozen=True)
class Credentials:
    """Git 托管凭据：token，或 username + password"""

    token: str = ""
    username: str = ""
    password: str = ""


@dataclass(frozen=True)
class CredentialLookup:
    """一次凭据解析的完整结果

    source: "env:<NAME>" / "credential-helper" / "" (未找到)
    error: 凭据助手失败原因；解析是尽力而为，调用方可选择忽略
    """

    host: str
    credentials: Credentials | None = None
    source: str = ""
    error: str = ""

    @property
    def found(self) -> bool:
        return self.credentials is not None


# =========================================================================
# 安装 / outdated
# =========================================================================


@dataclass
class InstallProgressEvent:
    """安装进度事件

    type: start / package-start / package-progress / package-complete /
          package-error / complete
    """

    type: str
    pkg: str = ""
    status: str = ""  # package-start: resolving / downloading / verifying
    bytes_received: int = 0
    total_bytes: int | None = None
    cached: bool = False
    error: str = ""
    total: int = 0
    packages: list[str] = field(default_factory=list)
    installed: int = 0


ProgressCallback = Callable[[InstallProgressEvent], None]


@dataclass
class InstallOptions:
    """install 参数"""

    workspace_root: str | Path
    frozen: bool = False
    force: bool = False
    on_progress: ProgressCallback | None = None
    max_workers: int | None = None


@dataclass
class InstallResult:
    """install 结果"""

    installed: int = 0
    cached: int = 0
    lock_file_modified: bool = False
    warnings: list[str] = field(default_factory=list)
    lock_data: dict[str, LockedDependency] = field(default_factory=dict)


@dataclass
class OutdatedDependency:
    """单个依赖的更新状态"""

    pkg: str
    current: str
    latest: str | None
    ref_type: str
    status: str


@dataclass
class OutdatedResult:
    dependencies: list[OutdatedDependency] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=lambda: {
        "upgrades_available": 0,
        "branches_behind": 0,
        "pinned_commits": 0,
        "up_to_date": 0,
    })
