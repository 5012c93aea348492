"""包缓存管理

项目本地缓存目录 ``<workspace>/.dlang/packages``，按 commit 寻址:

    .dlang/packages/{owner}/{repo}/{commit}/
        .dlang-metadata.json    (integrity, resolved, commitSha)
        ...包文件...

写入策略:
  - tarball 先解压到 packages/.tmp-<uuid>/，再原子 rename 到最终路径
  - rename 失败且最终路径已存在 → 并发安装的另一方已胜出，
    删除自己的临时目录并返回已有路径（put 幂等，跨进程同样成立）
  - 缓存条目按 commit 寻址，创建后不可变
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import uuid
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

from dlpkg.core.exceptions import CacheError
from dlpkg.core.models import PackageMetadata
from dlpkg.utils.fileio import read_json, write_json

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SUBDIR = ".dlang/packages"
DEFAULT_METADATA_FILE = ".dlang-metadata.json"
TEMP_PREFIX = ".tmp-"


def _strip_top_level(tf: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
    """去掉 tarball 唯一的顶层目录（GitHub tarball 形如 owner-repo-sha/...）"""
    for member in tf.getmembers():
        parts = PurePosixPath(member.name).parts
        if len(parts) <= 1:
            continue
        member.name = str(PurePosixPath(*parts[1:]))
        if member.islnk() and member.linkname:
            link_parts = PurePosixPath(member.linkname).parts
            if len(link_parts) > 1:
                member.linkname = str(PurePosixPath(*link_parts[1:]))
        yield member


class PackageCache:
    """commit 寻址的本地包缓存"""

    def __init__(
        self,
        workspace_root: str | Path,
        *,
        cache_subdir: str = DEFAULT_CACHE_SUBDIR,
        metadata_file: str = DEFAULT_METADATA_FILE,
    ) -> None:
        self.workspace_root = Path(workspace_root)
        self.packages_dir = self.workspace_root / cache_subdir
        self.metadata_file = metadata_file

    def package_path(self, owner: str, repo: str, commit: str) -> Path:
        return self.packages_dir / owner / repo / commit

    def has(self, owner: str, repo: str, commit: str) -> bool:
        return self.package_path(owner, repo, commit).is_dir()

    def get(self, owner: str, repo: str, commit: str) -> Path | None:
        path = self.package_path(owner, repo, commit)
        return path if path.is_dir() else None

    # ------------------------------------------------------------------
    # 元数据
    # ------------------------------------------------------------------

    def get_metadata(self, owner: str, repo: str, commit: str) -> PackageMetadata | None:
        """读取缓存元数据；缺失或损坏时返回 None（记录日志，不抛出）"""
        meta_path = self.package_path(owner, repo, commit) / self.metadata_file
        try:
            data = read_json(meta_path)
        except (OSError, ValueError) as e:
            logger.warning("读取缓存元数据失败 %s/%s@%s: %s", owner, repo, commit, e)
            return None
        if data is None:
            return None
        metadata = PackageMetadata.from_dict(data)
        if metadata is None:
            logger.warning("缓存元数据结构无效，忽略: %s", meta_path)
        return metadata

    def put_metadata(
        self, owner: str, repo: str, commit: str, metadata: PackageMetadata,
    ) -> None:
        meta_path = self.package_path(owner, repo, commit) / self.metadata_file
        write_json(meta_path, metadata.to_dict())

    # ------------------------------------------------------------------
    # 写入 / 删除
    # ------------------------------------------------------------------

    def put(self, owner: str, repo: str, commit: str, tarball_path: str | Path) -> Path:
        """解压 tarball 到缓存，返回包目录路径

        Raises:
            CacheError: 解压或落盘失败（临时目录已尽力清理）
        """
        final_path = self.package_path(owner, repo, commit)
        temp_dir = self.packages_dir / f"{TEMP_PREFIX}{uuid.uuid4().hex}"
        label = f"{owner}/{repo}@{commit}"

        try:
            temp_dir.mkdir(parents=True)
            with tarfile.open(tarball_path) as tf:
                tf.extractall(
                    path=str(temp_dir), members=_strip_top_level(tf), filter="data",
                )
            final_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.rename(temp_dir, final_path)
            except OSError:
                if not final_path.exists():
                    raise
                # 并发安装已写入同一 commit，保留对方结果
                logger.debug("缓存已由并发安装写入，丢弃本次解压: %s", label)
                self._cleanup_temp_dir(temp_dir)
                return final_path
        except (OSError, tarfile.TarError, TypeError) as e:
            # TypeError: 解释器的 tarfile 不支持 filter 参数
            self._cleanup_temp_dir(temp_dir)
            raise CacheError(f"缓存包失败 {label}: {e}") from e

        logger.info("已缓存: %s -> %s", label, final_path, extra={"package": f"{owner}/{repo}"})
        return final_path

    def remove(self, owner: str, repo: str, commit: str) -> bool:
        """删除单个包缓存，返回是否实际删除"""
        path = self.package_path(owner, repo, commit)
        if not path.exists():
            return False
        shutil.rmtree(path)
        logger.info("已删除缓存: %s/%s@%s", owner, repo, commit)
        return True

    def clear(self) -> None:
        """删除整个 packages 目录"""
        if self.packages_dir.exists():
            shutil.rmtree(self.packages_dir)
            logger.info("缓存已清空: %s", self.packages_dir)

    def list_packages(self) -> list[tuple[str, str, str]]:
        """列出所有缓存条目 (owner, repo, commit)，忽略临时目录"""
        if not self.packages_dir.is_dir():
            return []
        entries = []
        for owner_dir in sorted(self.packages_dir.iterdir()):
            if not owner_dir.is_dir() or owner_dir.name.startswith(TEMP_PREFIX):
                continue
            for repo_dir in sorted(p for p in owner_dir.iterdir() if p.is_dir()):
                for commit_dir in sorted(p for p in repo_dir.iterdir() if p.is_dir()):
                    entries.append((owner_dir.name, repo_dir.name, commit_dir.name))
        return entries

    def _cleanup_temp_dir(self, temp_dir: Path) -> bool:
        """尽力删除临时目录，返回是否成功；失败只记录日志，从不抛出"""
        try:
            if temp_dir.exists():
                shutil.rmtree(temp_dir)
            return True
        except OSError as e:
            logger.warning("清理临时目录失败 %s: %s", temp_dir, e)
            return False
