"""ManifestManager 单元测试"""

from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path

import pytest
import yaml

from dlpkg.core.exceptions import LockFileError, ManifestError, ValidationError
from dlpkg.core.manifest import ManifestManager, read_module_entry
from dlpkg.core.models import LockedDependency, LockFile

COMMIT = "0123456789abcdef0123456789abcdef01234567"


def _write_manifest(root: Path, data: dict) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    path = root / "model.yaml"
    path.write_text(yaml.dump(data, allow_unicode=True), encoding="utf-8")
    return path


def _write_lock(root: Path, deps: dict) -> Path:
    path = root / "model.lock"
    path.write_text(json.dumps({"version": "1", "dependencies": deps}), encoding="utf-8")
    return path


@pytest.fixture()
def ws(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    _write_manifest(root, {
        "model": {"name": "demo"},
        "dependencies": {"acme/core": "v1.0.0"},
    })
    return root


class TestInitialize:
    def test_walks_up_to_manifest(self, ws: Path) -> None:
        nested = ws / "domains" / "sales"
        nested.mkdir(parents=True)
        mm = ManifestManager()
        assert mm.initialize(nested) == ws.resolve()
        assert mm.get_workspace_root() == ws.resolve()

    def test_fallback_to_start_path(self, tmp_path: Path) -> None:
        start = tmp_path / "no-manifest"
        start.mkdir()
        mm = ManifestManager()
        assert mm.initialize(start) == start.resolve()
        assert mm.get_manifest() is None
        assert mm.get_manifest_path() is None

    def test_uninitialized_raises(self) -> None:
        with pytest.raises(ValidationError):
            ManifestManager().get_workspace_root()

    def test_explicit_root_ignores_current(self, ws: Path, tmp_path: Path) -> None:
        other = tmp_path / "other"
        other.mkdir()
        (other / "model.yaml").write_text('paths:\n  "@o": ./o\n', encoding="utf-8")
        mm = ManifestManager()
        root = mm.initialize(ws)
        mm.initialize(other)
        assert mm.get_workspace_root(root) == root
        assert mm.get_lock_path(root) == root / "model.lock"
        assert "@o" not in mm.get_path_aliases(root)
        assert mm.get_path_aliases() == {"@o": "./o"}

    def test_concurrent_initialize_shares_walk(self, ws: Path) -> None:
        mm = ManifestManager()
        calls: list[Path] = []
        original = mm._find_root
        gate = threading.Event()

        def slow_find(start: Path) -> Path:
            calls.append(start)
            gate.wait(timeout=5)
            return original(start)

        mm._find_root = slow_find  # type: ignore[method-assign]
        results: list[Path] = []
        threads = [threading.Thread(target=lambda: results.append(mm.initialize(ws))) for _ in range(5)]
        for t in threads:
            t.start()
        # 等所有线程进入 initialize 后放行
        while not calls:
            time.sleep(0.01)
        time.sleep(0.2)
        gate.set()
        for t in threads:
            t.join()
        assert results == [ws.resolve()] * 5
        assert calls == [ws.resolve()]


class TestGetManifest:
    def test_cached_until_mtime_changes(self, ws: Path) -> None:
        mm = ManifestManager()
        mm.initialize(ws)
        first = mm.get_manifest()
        assert first is mm.get_manifest()

        path = ws / "model.yaml"
        _write_manifest(ws, {"dependencies": {"acme/core": "v2.0.0"}})
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
        second = mm.get_manifest()
        assert second is not first
        assert second is not None
        assert second.dependencies["acme/core"].ref == "v2.0.0"

    def test_invalidate(self, ws: Path) -> None:
        mm = ManifestManager()
        mm.initialize(ws)
        first = mm.get_manifest()
        mm.invalidate_manifest_cache()
        assert mm.get_manifest() is not first

    def test_invalidate_all(self, ws: Path) -> None:
        mm = ManifestManager()
        mm.initialize(ws)
        first = mm.get_manifest()
        mm.invalidate_cache()
        assert mm.get_manifest() is not first

    def test_yaml_syntax_error(self, tmp_path: Path) -> None:
        root = tmp_path / "bad"
        root.mkdir()
        (root / "model.yaml").write_text("dependencies: [unclosed\n", encoding="utf-8")
        mm = ManifestManager()
        mm.initialize(root)
        with pytest.raises(ManifestError, match="YAML"):
            mm.get_manifest()

    def test_aliases(self, tmp_path: Path) -> None:
        root = tmp_path / "p"
        _write_manifest(root, {"paths": {"@lib": "./lib"}})
        mm = ManifestManager()
        mm.initialize(root)
        assert mm.get_path_aliases() == {"@lib": "./lib"}


class TestValidation:
    @pytest.mark.parametrize("data,match", [
        ({"dependencies": {"x": {"source": "acme/x", "path": "./x", "ref": "v1.0.0"}}}, "source 和 path"),
        ({"dependencies": {"acme/x": {"source": "acme/x"}}}, "缺少 ref"),
        ({"dependencies": {"x": {"path": "../../secret"}}}, "超出工作区"),
        ({"dependencies": {"x": {"path": "/etc"}}}, "超出工作区"),
        ({"paths": {"lib": "./lib"}}, "必须以 @ 开头"),
        ({"paths": {"@lib": "../outside"}}, "超出工作区"),
    ])
    def test_rejected(self, tmp_path: Path, data: dict, match: str) -> None:
        root = tmp_path / "p"
        _write_manifest(root, data)
        mm = ManifestManager()
        mm.initialize(root)
        with pytest.raises(ManifestError, match=match) as exc_info:
            mm.get_manifest()
        assert exc_info.value.hint

    def test_local_path_inside_workspace_accepted(self, tmp_path: Path) -> None:
        root = tmp_path / "p"
        _write_manifest(root, {
            "dependencies": {"shared": {"path": "./lib/shared"}},
            "paths": {"@shared": "./lib/shared"},
        })
        mm = ManifestManager()
        mm.initialize(root)
        manifest = mm.get_manifest()
        assert manifest is not None
        assert manifest.dependencies["shared"].is_local


class TestLockFile:
    def test_missing(self, ws: Path) -> None:
        mm = ManifestManager()
        mm.initialize(ws)
        assert mm.get_lock_file() is None

    def test_invalid_json(self, ws: Path) -> None:
        (ws / "model.lock").write_text("{not json", encoding="utf-8")
        mm = ManifestManager()
        mm.initialize(ws)
        with pytest.raises(LockFileError):
            mm.get_lock_file()

    def test_save_and_refresh(self, ws: Path) -> None:
        mm = ManifestManager()
        mm.initialize(ws)
        lock = LockFile(dependencies={
            "acme/core": LockedDependency("v1.0.0", "tag", "https://x", COMMIT, "sha512-x"),
        })
        mm.save_lock_file(lock)
        data = json.loads((ws / "model.lock").read_text(encoding="utf-8"))
        assert data["dependencies"]["acme/core"]["refType"] == "tag"
        assert (ws / "model.lock").read_text(encoding="utf-8").startswith('{\n  "version"')
        refreshed = mm.refresh_lock_file()
        assert refreshed is not None
        assert refreshed.dependencies["acme/core"].commit == COMMIT


class TestResolveDependencyPath:
    def _install(self, root: Path, entry: str | None = None) -> Path:
        pkg = root.resolve() / ".dlang" / "packages" / "acme" / "core" / COMMIT
        pkg.mkdir(parents=True)
        if entry:
            _write_manifest(pkg, {"model": {"entry": entry}})
        _write_lock(root, {"acme/core": {
            "ref": "v1.0.0", "refType": "tag", "resolved": "u", "commit": COMMIT,
        }})
        return pkg

    def test_whole_package_default_entry(self, ws: Path) -> None:
        pkg = self._install(ws)
        mm = ManifestManager()
        mm.initialize(ws)
        assert mm.resolve_dependency_path("acme/core") == pkg / "index.dlang"

    def test_whole_package_custom_entry(self, ws: Path) -> None:
        pkg = self._install(ws, entry="main.dlang")
        mm = ManifestManager()
        mm.initialize(ws)
        assert mm.resolve_dependency_path("acme/core") == pkg / "main.dlang"

    def test_subpath(self, ws: Path) -> None:
        pkg = self._install(ws)
        mm = ManifestManager()
        mm.initialize(ws)
        assert mm.resolve_dependency_path("acme/core/types/money.dlang") == pkg / "types" / "money.dlang"

    def test_unknown_dependency(self, ws: Path) -> None:
        self._install(ws)
        mm = ManifestManager()
        mm.initialize(ws)
        assert mm.resolve_dependency_path("acme/other") is None
        assert mm.resolve_dependency_path("acme/corex") is None

    def test_cache_dir_from_inside_package(self, ws: Path) -> None:
        pkg = self._install(ws, entry="main.dlang")
        mm = ManifestManager()
        mm.initialize(pkg)
        assert mm.get_cache_dir() == ws.resolve() / ".dlang" / "packages"


def test_read_module_entry_defaults(tmp_path: Path) -> None:
    assert read_module_entry(tmp_path) == "index.dlang"
    (tmp_path / "model.yaml").write_text("model: [broken", encoding="utf-8")
    assert read_module_entry(tmp_path) == "index.dlang"
