"""GitHub 托管客户端

基于 RetryingFetcher 访问 GitHub REST API:
  - 列出 tag / 选出最新语义化版本
  - ref (tag / branch) → commit SHA
  - 流式下载 tarball 并计算 SHA-512 SRI
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from dlpkg.core import semver
from dlpkg.core.config import Config
from dlpkg.core.exceptions import GitHostError
from dlpkg.services.credentials import CredentialProvider
from dlpkg.services.fetcher import RetryingFetcher
from dlpkg.utils.net import HttpResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_WARN_THRESHOLD = 10
TAGS_PER_PAGE = 100

DownloadProgress = Callable[[int, int | None], None]


@dataclass
class TarballDownload:
    """下载结果；path 为临时文件，由调用方负责删除"""

    path: Path
    integrity: str
    resolved: str
    size: int = 0


def compute_integrity(digest: bytes) -> str:
    """SRI 格式: sha512-<base64>"""
    return "sha512-" + base64.b64encode(digest).decode("ascii")


class GitHostClient:
    """GitHub API 客户端"""

    def __init__(
        self,
        config: Config,
        fetcher: RetryingFetcher,
        credentials: CredentialProvider,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.credentials = credentials
        self.api_url = config.github_api_url.rstrip("/")

    # ------------------------------------------------------------------
    # 版本查询
    # ------------------------------------------------------------------

    def fetch_tags(self, owner: str, repo: str) -> list[str]:
        """列出仓库 tag 名称（第一页，最多 100 个）"""
        url = f"{self._repo_url(owner, repo)}/tags?per_page={TAGS_PER_PAGE}"
        resp = self._get(url)
        try:
            self._raise_for_status(resp, f"{owner}/{repo}", "获取 tag 列表")
            data = resp.json()
        finally:
            resp.close()
        if not isinstance(data, list):
            raise GitHostError(f"{owner}/{repo}: tag 列表响应格式无效", resp.status)
        return [str(t["name"]) for t in data if isinstance(t, dict) and "name" in t]

    def find_latest_version(self, tags: list[str]) -> str | None:
        return semver.find_latest_version(tags)

    def classify_upgrade(self, current: str, latest: str) -> str:
        return semver.classify_upgrade(current, latest)

    def resolve_ref_to_commit(self, owner: str, repo: str, ref: str) -> str:
        """把 tag / branch 解析为 commit SHA；完整 40 位 SHA 不发请求"""
        if semver.is_full_commit_sha(ref):
            return ref.lower()
        url = f"{self._repo_url(owner, repo)}/commits/{quote(ref, safe='')}"
        resp = self._get(url)
        try:
            if resp.status in (404, 422):
                raise GitHostError(
                    f"无法解析 ref '{ref}' ({owner}/{repo})：tag、分支或 commit 不存在",
                    resp.status,
                )
            self._raise_for_status(resp, f"{owner}/{repo}", f"解析 ref '{ref}'")
            data = resp.json()
        finally:
            resp.close()
        sha = data.get("sha") if isinstance(data, dict) else None
        if not isinstance(sha, str) or not sha:
            raise GitHostError(f"无法解析 ref '{ref}' ({owner}/{repo})：响应缺少 sha")
        logger.debug("ref 已解析: %s/%s@%s -> %s", owner, repo, ref, sha)
        return sha

    # ------------------------------------------------------------------
    # 下载
    # ------------------------------------------------------------------

    def tarball_url(self, owner: str, repo: str, commit: str) -> str:
        return f"{self._repo_url(owner, repo)}/tarball/{commit}"

    def download_tarball(
        self,
        owner: str,
        repo: str,
        commit: str,
        on_progress: DownloadProgress | None = None,
    ) -> TarballDownload:
        """流式下载 tarball 到临时文件，同时计算 SHA-512"""
        url = self.tarball_url(owner, repo, commit)
        resp = self._get(url)
        try:
            self._raise_for_status(resp, f"{owner}/{repo}", f"下载 {commit[:12]}")
        except GitHostError:
            resp.close()
            raise

        length = resp.header("content-length")
        total = int(length) if length and length.isdigit() else None
        h = hashlib.sha512()
        received = 0
        fd, tmp = tempfile.mkstemp(prefix="dlpkg-", suffix=".tar.gz")
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in resp.iter_chunks():
                    f.write(chunk)
                    h.update(chunk)
                    received += len(chunk)
                    if on_progress is not None:
                        on_progress(received, total)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        finally:
            resp.close()

        logger.info(
            "已下载: %s/%s@%s (%d 字节)", owner, repo, commit[:12], received,
            extra={"package": f"{owner}/{repo}"},
        )
        return TarballDownload(
            path=Path(tmp), integrity=compute_integrity(h.digest()),
            resolved=url, size=received,
        )

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self.api_url}/repos/{owner}/{repo}"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.config.github_api_version,
            "User-Agent": "dlpkg",
        }
        creds = self.credentials.get_github_credentials(self.config.github_host)
        auth = self.credentials.get_authorization_header(creds)
        if auth:
            headers["Authorization"] = auth
        return headers

    def _get(self, url: str) -> HttpResponse:
        resp = self.fetcher.fetch(url, self._headers())
        remaining = resp.header("x-ratelimit-remaining")
        if remaining and remaining.isdigit() and int(remaining) < RATE_LIMIT_WARN_THRESHOLD:
            logger.warning(
                "GitHub API 剩余配额较低: %s (设置 %s 以提高限额)",
                remaining, self.config.token_env,
            )
        return resp

    def _raise_for_status(self, resp: HttpResponse, repo: str, action: str) -> None:
        if resp.ok:
            return
        if resp.status in (401, 403):
            raise GitHostError(
                f"{action}失败: {repo} 返回 HTTP {resp.status}，认证失败或无访问权限\n"
                f"Hint: 设置 {self.config.token_env} 或 {self.config.fallback_token_env}，"
                "或通过 git credential 配置 github.com 凭据",
                resp.status,
            )
        raise GitHostError(f"{action}失败: {repo} 返回 HTTP {resp.status}", resp.status)
