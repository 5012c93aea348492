"""语义化版本工具

纯函数：版本解析 / 比较、ref 类型识别、最新版本选取、升级类型分类。
不做任何 I/O。
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass

from dlpkg.core.models import REF_BRANCH, REF_COMMIT, REF_TAG

_SEMVER_RE = re.compile(
    r"^v?(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:-(?P<pre>[0-9A-Za-z.\-]+))?(?:\+[0-9A-Za-z.\-]+)?$"
)
_VERSION_TAG_RE = re.compile(r"^v?\d+\.\d+\.\d+")
_COMMIT_RE = re.compile(r"^[0-9a-f]{7,40}$", re.IGNORECASE)
_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$", re.IGNORECASE)


@dataclass(frozen=True)
class SemVer:
    major: int
    minor: int
    patch: int
    pre_release: str | None
    original: str


def parse_semver(version: str) -> SemVer | None:
    """解析 ``v?major.minor.patch[-pre]``，不符合时返回 None"""
    m = _SEMVER_RE.match(version.strip())
    if not m:
        return None
    return SemVer(
        major=int(m.group("major")),
        minor=int(m.group("minor")),
        patch=int(m.group("patch")),
        pre_release=m.group("pre"),
        original=version,
    )


def _compare_pre(a: str | None, b: str | None) -> int:
    # 无预发布标识的版本高于同号的预发布版本
    if a == b:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    for x, y in zip(a.split("."), b.split(".")):
        if x == y:
            continue
        if x.isdigit() and y.isdigit():
            return -1 if int(x) < int(y) else 1
        if x.isdigit():
            return -1
        if y.isdigit():
            return 1
        return -1 if x < y else 1
    return (len(a.split(".")) > len(b.split("."))) - (len(a.split(".")) < len(b.split(".")))


def compare_semver(a: SemVer, b: SemVer) -> int:
    """按数值比较，返回负数 / 0 / 正数"""
    for x, y in ((a.major, b.major), (a.minor, b.minor), (a.patch, b.patch)):
        if x != y:
            return -1 if x < y else 1
    return _compare_pre(a.pre_release, b.pre_release)


def compare_versions(a: str, b: str) -> int:
    """比较两个版本字符串；非 semver 字符串低于任何 semver"""
    pa, pb = parse_semver(a), parse_semver(b)
    if pa and pb:
        return compare_semver(pa, pb)
    if pa:
        return 1
    if pb:
        return -1
    return 0


def is_pre_release(version: str) -> bool:
    parsed = parse_semver(version)
    return bool(parsed and parsed.pre_release)


def is_full_commit_sha(ref: str) -> bool:
    return bool(_FULL_SHA_RE.match(ref))


def detect_ref_type(ref: str) -> str:
    """识别 ref 类型: 7-40 位十六进制为 commit，形如版本号为 tag，否则为 branch"""
    if _COMMIT_RE.match(ref):
        return REF_COMMIT
    if _VERSION_TAG_RE.match(ref):
        return REF_TAG
    return REF_BRANCH


def filter_semver_tags(tags: list[str]) -> list[str]:
    return [t for t in tags if _VERSION_TAG_RE.match(t) and parse_semver(t)]


def sort_versions_descending(versions: list[str]) -> list[str]:
    """新版本在前，非 semver 排在最后；不修改入参"""
    return sorted(versions, key=functools.cmp_to_key(compare_versions), reverse=True)


def find_latest_version(tags: list[str]) -> str | None:
    """从 tag 列表中选出最高的语义化版本，没有匹配时返回 None"""
    candidates = filter_semver_tags(tags)
    if not candidates:
        return None
    return sort_versions_descending(candidates)[0]


def classify_upgrade(current: str, latest: str) -> str:
    """升级类型: major / minor / patch"""
    cur = current.removeprefix("v").split(".")
    lat = latest.removeprefix("v").split(".")
    if cur[:1] != lat[:1]:
        return "major"
    if cur[1:2] != lat[1:2]:
        return "minor"
    return "patch"
