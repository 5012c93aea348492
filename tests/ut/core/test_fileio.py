"""文件读写 / 配置 / 日志工具测试"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

import dlpkg.core.config as cfgmod
from dlpkg.core.config import Config
from dlpkg.utils import fileio
from dlpkg.utils.logger import JSONFormatter, reset_logging, setup_logging


class TestAtomicWrite:
    def test_creates_parent_and_writes(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "model.lock"
        fileio.atomic_write(target, "hello")
        assert target.read_text(encoding="utf-8") == "hello"
        assert not list(target.parent.glob("*.tmp"))

    def test_failure_keeps_old_content(self, tmp_path: Path) -> None:
        target = tmp_path / "model.lock"
        target.write_text("old", encoding="utf-8")
        with patch("dlpkg.utils.fileio.os.replace", side_effect=OSError("boom")):
            with pytest.raises(OSError):
                fileio.atomic_write(target, "new")
        assert target.read_text(encoding="utf-8") == "old"
        assert not list(tmp_path.glob("*.tmp"))


class TestLoadYaml:
    def test_missing_and_empty(self, tmp_path: Path) -> None:
        assert fileio.load_yaml(tmp_path / "none.yaml") == {}
        empty = tmp_path / "empty.yaml"
        empty.write_text("", encoding="utf-8")
        assert fileio.load_yaml(empty) == {}

    def test_non_mapping(self, tmp_path: Path) -> None:
        p = tmp_path / "list.yaml"
        p.write_text("- a\n- b\n", encoding="utf-8")
        assert fileio.load_yaml(p) == {}

    def test_syntax_error_propagates(self, tmp_path: Path) -> None:
        p = tmp_path / "bad.yaml"
        p.write_text("a: [b\n", encoding="utf-8")
        with pytest.raises(yaml.YAMLError):
            fileio.load_yaml(p)

    def test_size_limit(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        p = tmp_path / "big.yaml"
        p.write_text("a: 1\n", encoding="utf-8")
        monkeypatch.setattr(fileio, "MAX_DOCUMENT_SIZE", 2)
        with pytest.raises(ValueError, match="文件过大"):
            fileio.load_yaml(p)


class TestJson:
    def test_write_and_read(self, tmp_path: Path) -> None:
        p = tmp_path / "x.json"
        fileio.write_json(p, {"b": 1, "名称": "值"})
        text = p.read_text(encoding="utf-8")
        assert text.endswith("}\n")
        assert "名称" in text
        assert fileio.read_json(p) == {"b": 1, "名称": "值"}
        assert fileio.read_json(tmp_path / "missing.json") is None


class TestConfig:
    def test_defaults(self) -> None:
        cfg = Config()
        assert cfg.max_retries == 2
        assert cfg.initial_delay == 1.0
        assert cfg.max_delay == 30.0
        assert cfg.lock_file == "model.lock"

    def test_from_file_with_extra(self, tmp_path: Path) -> None:
        p = tmp_path / "dlpkg.yml"
        p.write_text("max_retries: 5\ncustom_key: abc\n", encoding="utf-8")
        cfg = Config.from_file(str(p))
        assert cfg.max_retries == 5
        assert cfg.extra == {"custom_key": "abc"}
        assert cfg.to_dict()["max_retries"] == 5

    def test_get_config_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        p = tmp_path / "dlpkg.yml"
        p.write_text("max_workers: 8\n", encoding="utf-8")
        monkeypatch.setattr(cfgmod, "_current", None)
        monkeypatch.setenv(cfgmod.CONFIG_ENV, str(p))
        assert cfgmod.get_config().max_workers == 8


class TestLogging:
    def test_json_formatter_includes_package(self) -> None:
        record = logging.LogRecord("dlpkg.x", logging.INFO, __file__, 10, "下载 %s", ("a/b",), None)
        record.package = "acme/core"
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "下载 a/b"
        assert data["package"] == "acme/core"
        assert data["level"] == "INFO"

    def test_setup_does_not_stack_handlers(self) -> None:
        try:
            setup_logging("DEBUG")
            setup_logging("WARNING", json_output=True)
            root = logging.getLogger()
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING
        finally:
            reset_logging()
