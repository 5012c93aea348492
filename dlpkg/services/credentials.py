"""Git 托管凭据解析

查找顺序:
  1. 环境变量 DLANG_GITHUB_TOKEN
  2. 环境变量 GITHUB_TOKEN
  3. git credential fill（5 秒超时，禁止交互提示）

解析结果（包括「未找到」）按 host 缓存，进程内同一 provider 不会重复
调用凭据助手。凭据助手失败不抛异常，记录在 CredentialLookup.error 中。
"""

from __future__ import annotations

import base64
import logging
import os
import subprocess
import threading
from collections.abc import Mapping

from dlpkg.core.config import Config
from dlpkg.core.models import CredentialLookup, Credentials
from dlpkg.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)

SOURCE_HELPER = "credential-helper"


def parse_credential_output(output: str) -> Credentials | None:
    """解析 git credential fill 输出的 key=value 行

    username 与 password 都存在才视为有效凭据。
    """
    values: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    username, password = values.get("username", ""), values.get("password", "")
    if not username or not password:
        return None
    return Credentials(username=username, password=password)


def get_authorization_header(creds: Credentials | None) -> str | None:
    """token → Bearer；username + password → Basic；其余返回 None"""
    if creds is None:
        return None
    if creds.token:
        return f"Bearer {creds.token}"
    if creds.username and creds.password:
        raw = f"{creds.username}:{creds.password}".encode()
        return f"Basic {base64.b64encode(raw).decode('ascii')}"
    return None


class CredentialProvider:
    """按 host 解析并缓存 Git 托管凭据（线程安全）"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        env: Mapping[str, str] | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        self.config = config or Config()
        self._env = env if env is not None else os.environ
        self._executor = executor or LocalExecutor()
        self._cache: dict[str, CredentialLookup] = {}
        self._lock = threading.Lock()

    def lookup(self, host: str | None = None) -> CredentialLookup:
        """解析 host 的凭据，返回完整结果（含来源与错误信息）"""
        host = host or self.config.github_host
        # 持锁解析，保证并发调用只触发一次凭据助手
        with self._lock:
            cached = self._cache.get(host)
            if cached is not None:
                return cached
            result = self._resolve(host)
            self._cache[host] = result
        if result.found:
            logger.debug("凭据已解析: host=%s source=%s", host, result.source)
        else:
            logger.debug("未找到凭据: host=%s %s", host, result.error)
        return result

    def get_github_credentials(self, host: str | None = None) -> Credentials | None:
        return self.lookup(host).credentials

    def get_authorization_header(self, creds: Credentials | None) -> str | None:
        return get_authorization_header(creds)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _resolve(self, host: str) -> CredentialLookup:
        for name in (self.config.token_env, self.config.fallback_token_env):
            token = self._env.get(name, "")
            if token:
                return CredentialLookup(
                    host=host, credentials=Credentials(token=token), source=f"env:{name}",
                )
        return self._from_helper(host)

    def _from_helper(self, host: str) -> CredentialLookup:
        env = dict(self._env)
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            result = self._executor.execute(
                ["git", "credential", "fill"],
                input_text=f"protocol=https\nhost={host}\n\n",
                env=env,
                timeout=self.config.credential_helper_timeout,
            )
        except subprocess.TimeoutExpired:
            return CredentialLookup(
                host=host,
                error=f"git credential fill 超时 ({self.config.credential_helper_timeout}s)",
            )
        except OSError as e:
            return CredentialLookup(host=host, error=f"无法执行 git credential fill: {e}")

        if not result.success:
            return CredentialLookup(
                host=host,
                error=f"git credential fill 退出码 {result.returncode}: {result.stderr.strip()}",
            )
        creds = parse_credential_output(result.stdout)
        if creds is None:
            return CredentialLookup(host=host, error="凭据助手未返回 username/password")
        return CredentialLookup(host=host, credentials=creds, source=SOURCE_HELPER)
