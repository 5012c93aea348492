"""网络工具：URL 校验与 HTTP 传输抽象

HttpTransport 协议只负责「发出一次请求并返回响应」，重试、退避、限流
由 services.fetcher.RetryingFetcher 负责。默认实现基于 urllib.request。
"""

from __future__ import annotations

import io
import json
import logging
import urllib.error
import urllib.request
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import IO, Any, Protocol
from urllib.parse import urlparse

from dlpkg.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

DEFAULT_CHUNK_SIZE = 64 * 1024


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


@dataclass
class HttpResponse:
    """一次 HTTP 请求的响应（与 urllib 解耦）

    headers 的键统一为小写。body 以流的形式保留，下载大文件时可分块读取。
    """

    status: int
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    stream: IO[bytes] = field(default_factory=io.BytesIO)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def read(self) -> bytes:
        return self.stream.read()

    def iter_chunks(self, size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        while True:
            chunk = self.stream.read(size)
            if not chunk:
                return
            yield chunk

    def json(self) -> Any:
        return json.loads(self.read().decode("utf-8"))

    def close(self) -> None:
        try:
            self.stream.close()
        except OSError:
            pass


class HttpTransport(Protocol):
    """HTTP 传输协议

    非 2xx 响应以 HttpResponse 返回而不是抛异常；连接级错误（DNS 失败、
    连接重置、超时）以 OSError / urllib.error.URLError 抛出。
    """

    def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        ...


def _lower_headers(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    return {str(k).lower(): str(v) for k, v in raw.items()}


class UrllibTransport:
    """基于 urllib.request 的默认传输实现"""

    def __init__(self, default_timeout: float = 60.0) -> None:
        self.default_timeout = default_timeout

    def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        validate_url_scheme(url, context=f"{method} request")
        req = urllib.request.Request(url, method=method, headers=dict(headers or {}))
        try:
            resp = urllib.request.urlopen(  # nosec B310
                req, timeout=timeout or self.default_timeout,
            )
        except urllib.error.HTTPError as e:
            stream: IO[bytes] = e if e.fp is not None else io.BytesIO()
            return HttpResponse(
                status=e.code, reason=str(e.reason),
                headers=_lower_headers(e.headers), stream=stream, url=url,
            )
        return HttpResponse(
            status=resp.status, reason=resp.reason,
            headers=_lower_headers(resp.headers), stream=resp, url=url,
        )
