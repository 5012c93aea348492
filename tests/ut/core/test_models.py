"""数据模型单元测试"""

from __future__ import annotations

import copy

import pytest

from dlpkg.core.exceptions import ManifestError
from dlpkg.core.models import (
    LockedDependency,
    LockFile,
    Manifest,
    PackageMetadata,
    normalize_dependency,
)


class TestNormalizeDependency:
    def test_short_form(self) -> None:
        dep = normalize_dependency("acme/core", "v1.0.0")
        assert dep.source == "acme/core"
        assert dep.ref == "v1.0.0"
        assert dep.inline
        assert dep.owner_repo() == ("acme", "core")

    def test_extended_source_derived_from_key(self) -> None:
        dep = normalize_dependency("acme/core", {"ref": "main", "description": "核心"})
        assert dep.source == "acme/core"
        assert dep.ref == "main"
        assert not dep.inline

    def test_extended_alias_key(self) -> None:
        dep = normalize_dependency("core", {"source": "acme/core", "ref": "v2.0.0"})
        assert dep.key == "core"
        assert dep.source == "acme/core"

    def test_local_path(self) -> None:
        dep = normalize_dependency("shared", {"path": "./lib/shared"})
        assert dep.is_local
        assert dep.source == ""

    def test_invalid_type(self) -> None:
        with pytest.raises(ManifestError) as exc_info:
            normalize_dependency("acme/core", 42)
        assert exc_info.value.hint

    def test_bad_source_format(self) -> None:
        assert normalize_dependency("core", {"source": "acme", "ref": "x"}).owner_repo() == ("", "")


class TestManifest:
    def test_from_dict_does_not_mutate(self) -> None:
        data = {
            "model": {"name": "demo", "entry": "main.dlang"},
            "dependencies": {"acme/core": "v1.0.0", "shared": {"path": "./shared"}},
            "paths": {"@lib": "./lib"},
        }
        snapshot = copy.deepcopy(data)
        manifest = Manifest.from_dict(data)
        assert data == snapshot
        assert manifest.model.entry == "main.dlang"
        assert [d.key for d in manifest.git_dependencies()] == ["acme/core"]
        assert manifest.paths == {"@lib": "./lib"}

    def test_dependencies_must_be_mapping(self) -> None:
        with pytest.raises(ManifestError):
            Manifest.from_dict({"dependencies": ["acme/core"]})


class TestLockFile:
    def test_round_trip_omits_empty_integrity(self) -> None:
        lock = LockFile(dependencies={
            "b/pkg": LockedDependency("main", "branch", "https://x/b", "c" * 40),
            "a/pkg": LockedDependency("v1.0.0", "tag", "https://x/a", "d" * 40, "sha512-abc"),
        })
        data = lock.to_dict()
        assert list(data["dependencies"]) == ["a/pkg", "b/pkg"]
        assert "integrity" not in data["dependencies"]["b/pkg"]
        assert data["dependencies"]["a/pkg"]["refType"] == "tag"
        assert LockFile.from_dict(data).to_dict() == data

    def test_legacy_entry_defaults_to_commit(self) -> None:
        lock = LockFile.from_dict({
            "version": "1",
            "dependencies": {
                "acme/core": {"ref": "v1.0.0", "resolved": "u", "commit": "abc"},
                "acme/broken": {"ref": "v1.0.0"},
                "acme/junk": "not-a-dict",
            },
        })
        assert list(lock.dependencies) == ["acme/core"]
        assert lock.dependencies["acme/core"].ref_type == "commit"
        assert lock.dependencies["acme/core"].integrity == ""


class TestPackageMetadata:
    def test_serialization(self) -> None:
        meta = PackageMetadata("sha512-x", "https://x", "abc")
        assert meta.to_dict() == {"integrity": "sha512-x", "resolved": "https://x", "commitSha": "abc"}
        assert PackageMetadata.from_dict(meta.to_dict()) == meta
        assert PackageMetadata.from_dict({"integrity": 1}) is None
