"""依赖更新检查

按 lock 中记录的 ref 类型分别处理:
  tag     列出远端 tag，与最新语义化版本比较
  branch  解析分支当前 HEAD，与锁定 commit 比较
  commit  固定版本，不检查
"""

from __future__ import annotations

import logging
from pathlib import Path

from dlpkg.core.exceptions import DLPkgError, LockFileError
from dlpkg.core.manifest import ManifestManager
from dlpkg.core.models import (
    REF_BRANCH,
    REF_TAG,
    LockedDependency,
    OutdatedDependency,
    OutdatedResult,
)
from dlpkg.core.semver import compare_versions
from dlpkg.services.git_host import GitHostClient

logger = logging.getLogger(__name__)

STATUS_UP_TO_DATE = "up to date"
STATUS_BEHIND = "behind"
STATUS_PINNED = "pinned"
STATUS_NO_VERSIONS = "no versions found"
STATUS_ERROR = "error checking"


class OutdatedService:
    """检查已锁定依赖是否有新版本"""

    def __init__(self, git_host: GitHostClient, manifests: ManifestManager) -> None:
        self.git_host = git_host
        self.manifests = manifests

    def check(self, workspace_root: str | Path) -> OutdatedResult:
        """Raises: LockFileError: model.lock 不存在或无法解析"""
        root = self.manifests.initialize(workspace_root)
        lock = self.manifests.get_lock_file(root)
        if lock is None:
            raise LockFileError("未找到 model.lock，请先执行 'dlpkg install'")

        result = OutdatedResult()
        for pkg, locked in sorted(lock.dependencies.items()):
            owner, _, repo = pkg.partition("/")
            if not owner or not repo:
                logger.warning("跳过无效的 lock 条目: %s", pkg)
                continue
            try:
                entry, category = self._classify(pkg, owner, repo, locked)
            except (DLPkgError, OSError) as e:
                logger.warning("检查更新失败: %s: %s", pkg, e, extra={"package": pkg})
                result.dependencies.append(OutdatedDependency(
                    pkg=pkg, current=locked.ref, latest=None,
                    ref_type=locked.ref_type, status=STATUS_ERROR,
                ))
                continue
            result.dependencies.append(entry)
            if category:
                result.summary[category] += 1
        return result

    def _classify(
        self, pkg: str, owner: str, repo: str, locked: LockedDependency,
    ) -> tuple[OutdatedDependency, str]:
        if locked.ref_type == REF_TAG:
            return self._classify_tag(pkg, owner, repo, locked)
        if locked.ref_type == REF_BRANCH:
            head = self.git_host.resolve_ref_to_commit(owner, repo, locked.ref)
            behind = head != locked.commit
            return OutdatedDependency(
                pkg=pkg, current=locked.ref, latest=head[:7], ref_type=REF_BRANCH,
                status=STATUS_BEHIND if behind else STATUS_UP_TO_DATE,
            ), "branches_behind" if behind else "up_to_date"
        return OutdatedDependency(
            pkg=pkg, current=locked.commit[:7], latest=None,
            ref_type=locked.ref_type, status=STATUS_PINNED,
        ), "pinned_commits"

    def _classify_tag(
        self, pkg: str, owner: str, repo: str, locked: LockedDependency,
    ) -> tuple[OutdatedDependency, str]:
        tags = self.git_host.fetch_tags(owner, repo)
        latest = self.git_host.find_latest_version(tags)
        if latest is None:
            return OutdatedDependency(
                pkg=pkg, current=locked.ref, latest=None,
                ref_type=REF_TAG, status=STATUS_NO_VERSIONS,
            ), ""
        if compare_versions(latest, locked.ref) <= 0:
            return OutdatedDependency(
                pkg=pkg, current=locked.ref, latest=locked.ref,
                ref_type=REF_TAG, status=STATUS_UP_TO_DATE,
            ), "up_to_date"
        kind = self.git_host.classify_upgrade(locked.ref, latest)
        return OutdatedDependency(
            pkg=pkg, current=locked.ref, latest=latest,
            ref_type=REF_TAG, status=f"{kind} update",
        ), "upgrades_available"
