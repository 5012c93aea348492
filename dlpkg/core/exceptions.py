"""统一异常体系

所有业务异常继承 DLPkgError，CLI 层据 code 输出友好提示。
校验、frozen 漂移、完整性错误原样抛给调用方；只有瞬时网络错误在
RetryingFetcher 内部重试。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dlpkg.utils.net import HttpResponse


class DLPkgError(Exception):
    """包管理基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DLPkgError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ManifestError(DLPkgError):
    """model.yaml 结构错误，消息中始终带有修复提示"""

    code = "MANIFEST_ERROR"

    def __init__(self, message: str, hint: str = "") -> None:
        full = f"{message}\nHint: {hint}" if hint else message
        super().__init__(full)
        self.hint = hint


class LockFileError(DLPkgError):
    """model.lock 缺失或无法解析"""

    code = "LOCK_FILE_ERROR"


class FrozenDriftError(DLPkgError):
    """--frozen 模式下 lock 文件与 manifest 不一致"""

    code = "FROZEN_DRIFT"

    def __init__(
        self,
        added: list[str],
        removed: list[str],
        changed: list[dict[str, str]],
        message: str = "",
    ) -> None:
        lines = [message or "lock 文件与 model.yaml 不一致 (--frozen 模式)"]
        lines += [f"  + {pkg}" for pkg in added]
        lines += [f"  - {pkg}" for pkg in removed]
        lines += [
            f"  ~ {c['pkg']}: {c['lock_ref']} -> {c['manifest_ref']}" for c in changed
        ]
        lines.append("Hint: 去掉 --frozen 重新执行 install 以更新 model.lock")
        super().__init__("\n".join(lines))
        self.added = added
        self.removed = removed
        self.changed = changed


class IntegrityError(DLPkgError):
    """下载内容的 SHA-512 与 lock 记录不符（缓存损坏或包被篡改），不会自动重试"""

    code = "INTEGRITY_ERROR"

    def __init__(self, package: str, expected: str, actual: str) -> None:
        super().__init__(
            f"完整性校验失败: '{package}'\n"
            f"  期望: {expected}\n"
            f"  实际: {actual}\n"
            "Hint: 清理缓存后重试 (dlpkg cache-clear)；若仍失败，上游包可能已被改写"
        )
        self.package = package
        self.expected = expected
        self.actual = actual


class MaxRetriesExceededError(DLPkgError):
    """重试预算耗尽，包装最后一次失败"""

    code = "MAX_RETRIES_EXCEEDED"

    def __init__(
        self,
        attempts: int,
        last_error: BaseException,
        last_response: HttpResponse | None = None,
    ) -> None:
        super().__init__(
            f"已达到最大尝试次数 ({attempts})，最后一次错误: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error
        self.last_response = last_response


class GitHostError(DLPkgError):
    """Git 托管服务返回非成功响应"""

    code = "GIT_HOST_ERROR"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CacheError(DLPkgError):
    """包缓存解压 / 落盘失败"""

    code = "CACHE_ERROR"


class ImportResolutionError(DLPkgError):
    """import 语句无法解析为文件路径

    reason 取值: file-not-found, unknown-alias, missing-manifest,
    not-installed, dependency-not-found, missing-entry, unresolvable
    """

    code = "IMPORT_RESOLUTION_ERROR"

    def __init__(
        self,
        specifier: str,
        reason: str,
        hint: str,
        attempted_paths: list[Any] | None = None,
        message: str = "",
    ) -> None:
        super().__init__(message or f"无法解析 import '{specifier}': {hint}")
        self.specifier = specifier
        self.reason = reason
        self.hint = hint
        self.attempted_paths = tuple(str(p) for p in (attempted_paths or []))
