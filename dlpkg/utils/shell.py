"""子进程执行工具

通过 CommandExecutor 协议抽象子进程调用，凭据助手（git credential fill）
经由它执行，测试时注入假实现即可，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议

    实现需要在命令无法启动时抛出 OSError（如 FileNotFoundError），
    超时抛出 subprocess.TimeoutExpired。非零退出码通过 CommandResult 返回。
    """

    def execute(
        self,
        cmd: list[str],
        *,
        input_text: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        cmd: list[str],
        *,
        input_text: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        logger.debug("执行命令: %s (timeout=%s)", " ".join(cmd), timeout)
        r = subprocess.run(
            cmd, input=input_text, capture_output=True, text=True,
            env=env, check=False, timeout=timeout,
        )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )
