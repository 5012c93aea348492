"""带重试的 HTTP 拉取器

在 HttpTransport 之上实现指数退避重试:
  - 可重试状态码 {429, 500, 502, 503}，或调用方 should_retry 返回 True
  - 瞬时网络错误（连接重置/拒绝、超时、DNS 失败）
  - 429/503 响应的 Retry-After / X-RateLimit-Reset 覆盖计算出的退避

延迟 = initial_delay * 2**attempt，±25% 抖动，封顶 max_delay。
其余状态码（400/401/403/404 ...）原样返回给调用方，非网络异常立即抛出。
"""

from __future__ import annotations

import logging
import random
import socket
import time
import urllib.error
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING

from dlpkg.core.exceptions import GitHostError, MaxRetriesExceededError
from dlpkg.utils.net import HttpResponse, HttpTransport

if TYPE_CHECKING:
    from dlpkg.core.config import Config

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset((429, 500, 502, 503))
RATE_LIMIT_STATUSES = frozenset((429, 503))
JITTER_RATIO = 0.25

_TRANSIENT_ERROR_TYPES = (
    ConnectionResetError,
    ConnectionRefusedError,
    ConnectionAbortedError,
    TimeoutError,
    socket.gaierror,
)
_TRANSIENT_MARKERS = (
    "econnreset",
    "econnrefused",
    "etimedout",
    "enotfound",
    "eai_again",
    "timed out",
    "connection reset",
    "connection refused",
    "temporary failure in name resolution",
    "name or service not known",
)


@dataclass(frozen=True)
class RetryPolicy:
    """重试参数（秒）"""

    max_retries: int = 2
    initial_delay: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_config(cls, config: Config) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
        )


def calculate_backoff(
    attempt: int,
    policy: RetryPolicy,
    rand: Callable[[], float] = random.random,
) -> float:
    """第 attempt 次（从 0 计）失败后的等待时间，抖动后再封顶"""
    base = policy.initial_delay * (2 ** attempt)
    jitter = base * JITTER_RATIO * (2 * rand() - 1)
    return max(0.0, min(base + jitter, policy.max_delay))


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """解析 Retry-After: 秒数或 HTTP 日期，无法解析时返回 None"""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def parse_rate_limit_reset(value: str | None, now: float | None = None) -> float | None:
    """解析 X-RateLimit-Reset（unix 时间戳），返回距今秒数"""
    if not value:
        return None
    try:
        reset_at = float(value.strip())
    except ValueError:
        return None
    now = time.time() if now is None else now
    return max(0.0, reset_at - now)


def is_transient_network_error(error: BaseException) -> bool:
    """判断异常是否为可重试的瞬时网络错误

    urllib 会把底层 socket 错误包进 URLError.reason，需要展开判断。
    """
    if isinstance(error, urllib.error.HTTPError):
        return False
    if isinstance(error, urllib.error.URLError):
        reason = error.reason
        if isinstance(reason, BaseException):
            return is_transient_network_error(reason)
        return _has_transient_marker(str(reason))
    if isinstance(error, _TRANSIENT_ERROR_TYPES):
        return True
    if isinstance(error, OSError):
        return _has_transient_marker(str(error))
    return False


def _has_transient_marker(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _TRANSIENT_MARKERS)


class RetryingFetcher:
    """带指数退避的 HTTP 拉取器

    sleep / rand / clock 可注入，测试中无需真实等待。
    """

    def __init__(
        self,
        transport: HttpTransport,
        policy: RetryPolicy | None = None,
        *,
        timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep
        self._rand = rand
        self._clock = clock

    def fetch(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        *,
        should_retry: Callable[[HttpResponse], bool] | None = None,
    ) -> HttpResponse:
        """GET url，必要时重试

        Returns:
            最后一次的响应（成功或不可重试的状态码）

        Raises:
            MaxRetriesExceededError: 所有尝试均失败
            其他异常: 非瞬时错误立即抛出
        """
        attempts = self.policy.max_retries + 1
        last_error: BaseException | None = None
        last_response: HttpResponse | None = None

        for attempt in range(attempts):
            try:
                resp = self.transport.request(url, headers=headers, timeout=self.timeout)
            except Exception as e:
                if not is_transient_network_error(e):
                    raise
                last_error, last_response = e, None
                logger.debug("网络错误 (第 %d/%d 次): %s %s", attempt + 1, attempts, url, e)
                if attempt < attempts - 1:
                    self._sleep(calculate_backoff(attempt, self.policy, self._rand))
                continue

            retryable = resp.status in RETRYABLE_STATUSES or (
                should_retry is not None and should_retry(resp)
            )
            if not retryable:
                return resp

            last_error = GitHostError(f"HTTP {resp.status} {resp.reason}".strip(), resp.status)
            last_response = resp
            logger.debug(
                "可重试响应 (第 %d/%d 次): %s -> %d", attempt + 1, attempts, url, resp.status,
            )
            if attempt < attempts - 1:
                delay = self._delay_for(attempt, resp)
                resp.close()
                self._sleep(delay)

        assert last_error is not None
        logger.warning("重试耗尽: %s (%d 次尝试)", url, attempts)
        raise MaxRetriesExceededError(attempts, last_error, last_response)

    def _delay_for(self, attempt: int, resp: HttpResponse) -> float:
        computed = calculate_backoff(attempt, self.policy, self._rand)
        if resp.status not in RATE_LIMIT_STATUSES:
            return computed
        header_delay = parse_retry_after(
            resp.header("retry-after"),
            datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )
        if header_delay is None:
            header_delay = parse_rate_limit_reset(
                resp.header("x-ratelimit-reset"), self._clock(),
            )
        if header_delay is None:
            return computed
        delay = min(max(computed, header_delay), self.policy.max_delay)
        logger.info("触发限流 (HTTP %d)，等待 %.1fs 后重试", resp.status, delay)
        return delay
