"""URL scheme 校验与 HttpResponse 测试"""

import io

import pytest

from dlpkg.core.exceptions import ValidationError
from dlpkg.utils.net import HttpResponse, UrllibTransport, validate_url_scheme


class TestValidateUrlScheme:
    def test_http_ok(self) -> None:
        validate_url_scheme("http://example.com/api")

    def test_https_ok(self) -> None:
        validate_url_scheme("https://api.github.com/repos/acme/core")

    def test_file_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("file:///etc/passwd")

    def test_context_in_message(self) -> None:
        with pytest.raises(ValidationError, match="tarball"):
            validate_url_scheme("ftp://example.com/x.tar.gz", context="tarball")

    def test_transport_rejects_before_request(self) -> None:
        with pytest.raises(ValidationError):
            UrllibTransport().request("file:///etc/passwd")


class TestHttpResponse:
    def test_headers_case_insensitive(self) -> None:
        resp = HttpResponse(status=200, headers={"retry-after": "5"})
        assert resp.header("Retry-After") == "5"
        assert resp.header("X-Missing") is None

    @pytest.mark.parametrize("status,ok", [(200, True), (204, True), (301, False), (404, False)])
    def test_ok(self, status: int, ok: bool) -> None:
        assert HttpResponse(status=status).ok is ok

    def test_iter_chunks(self) -> None:
        resp = HttpResponse(status=200, stream=io.BytesIO(b"abcdefg"))
        assert list(resp.iter_chunks(3)) == [b"abc", b"def", b"g"]

    def test_json(self) -> None:
        resp = HttpResponse(status=200, stream=io.BytesIO('{"sha": "abc", "名": 1}'.encode()))
        assert resp.json() == {"sha": "abc", "名": 1}
