"""测试公共 fixture：假 HTTP 传输、tarball 构造"""

from __future__ import annotations

import io
import json
import tarfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from dlpkg.utils.net import HttpResponse

API = "https://api.github.com"


class FakeTransport:
    """按 URL 路径返回预置响应的 HttpTransport

    同一路径注册多个响应时按顺序消费，最后一个会被重复使用。
    响应也可以是异常实例（请求时抛出）。
    """

    def __init__(self, base_url: str = API) -> None:
        self.base_url = base_url
        self.routes: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, dict[str, str]]] = []

    def add(self, path: str, *responses: HttpResponse | BaseException) -> FakeTransport:
        queue = self.routes.setdefault(self.base_url + path, [])
        for r in responses:
            if isinstance(r, BaseException):
                queue.append(r)
            else:
                queue.append((r.status, r.stream.getvalue(), dict(r.headers)))
        return self

    def add_json(
        self, path: str, data: Any, status: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> FakeTransport:
        return self.add(path, make_response(status, json.dumps(data).encode(), headers))

    def add_bytes(
        self, path: str, body: bytes, status: int = 200,
        headers: Mapping[str, str] | None = None,
    ) -> FakeTransport:
        return self.add(path, make_response(status, body, headers))

    def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        self.calls.append((url, dict(headers or {})))
        queue = self.routes.get(url)
        if not queue:
            raise AssertionError(f"未预置的请求: {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        # 每次返回新的响应对象，调用方可以关闭它
        status, body, resp_headers = item
        return make_response(status, body, resp_headers)

    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]


def make_response(
    status: int, body: bytes = b"", headers: Mapping[str, str] | None = None,
) -> HttpResponse:
    return HttpResponse(
        status=status,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        stream=io.BytesIO(body),
    )


def build_tarball(files: Mapping[str, str], top: str = "acme-core-0123abc") -> bytes:
    """构造 GitHub 风格 tarball（所有文件位于单个顶层目录下）"""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def response_factory() -> Callable[..., HttpResponse]:
    return make_response


@pytest.fixture()
def tarball_factory() -> Callable[..., bytes]:
    return build_tarball


@pytest.fixture()
def tarball_file(tmp_path: Path) -> Callable[..., Path]:
    """把 tarball 写入文件并返回路径"""
    counter = iter(range(1_000_000))

    def _make(files: Mapping[str, str], top: str = "acme-core-0123abc") -> Path:
        path = tmp_path / f"pkg-{next(counter)}.tar.gz"
        path.write_bytes(build_tarball(files, top))
        return path

    return _make
