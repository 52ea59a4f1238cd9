"""语义化版本与版本约束

版本: MAJOR.MINOR.PATCH[-prerelease]，按 semver 优先级比较。

约束语法（与 Cargo 一致）:
  *            任意版本
  =1.2.3       精确锁定（硬锁）
  ^1.2.3       兼容升级；裸写 1.2.3 等同于 ^1.2.3
  ~1.2.3       仅补丁升级
  >=1.0 <2     比较运算，逗号分隔表示同时满足
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import total_ordering

_VERSION_RE = re.compile(
    r"^(0|[1-9]\d*)(?:\.(0|[1-9]\d*))?(?:\.(0|[1-9]\d*))?"
    r"(?:-([0-9A-Za-z]+(?:[.-][0-9A-Za-z]+)*))?(?:\+[0-9A-Za-z.-]+)?$",
)
_OP_RE = re.compile(r"^(>=|<=|>|<|=|\^|~)?\s*(.+)$")


@total_ordering
@dataclass(frozen=True)
class Version:
    major: int
    minor: int = 0
    patch: int = 0
    prerelease: str = ""

    @classmethod
    def parse(cls, text: str) -> Version:
        v, _ = _parse_partial(text)
        return v

    def _pre_key(self) -> tuple:
        # 正式版本优先级高于任何预发布版本
        if not self.prerelease:
            return (1,)
        parts: list[tuple[int, int | str]] = []
        for ident in re.split(r"[.-]", self.prerelease):
            parts.append((0, int(ident)) if ident.isdigit() else (1, ident))
        return (0, tuple(parts))

    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch, self._pre_key())

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base


def _parse_partial(text: str) -> tuple[Version, int]:
    """解析可能省略 minor/patch 的版本，返回 (版本, 显式给出的段数)"""
    m = _VERSION_RE.match(text.strip())
    if not m:
        raise ValueError(f"版本号非法: {text!r}")
    major, minor, patch, pre = m.groups()
    given = 1 + (minor is not None) + (patch is not None)
    return Version(int(major), int(minor or 0), int(patch or 0), pre or ""), given


@dataclass(frozen=True)
class _Clause:
    op: str
    version: Version
    given: int

    def matches(self, v: Version) -> bool:
        base = self.version
        if self.op == "=":
            if self.given == 3:
                return v == base
            return _prefix_equal(v, base, self.given)
        if self.op == ">=":
            return v >= base
        if self.op == ">":
            return v > base
        if self.op == "<=":
            return v <= base
        if self.op == "<":
            return v < base
        if self.op == "~":
            return v >= base and _prefix_equal(v, base, min(self.given, 2))
        # "^" 或省略运算符
        return v >= base and v < _caret_ceiling(base, self.given)


def _prefix_equal(v: Version, base: Version, n: int) -> bool:
    return (v.major, v.minor, v.patch)[:n] == (base.major, base.minor, base.patch)[:n]


def _caret_ceiling(base: Version, given: int) -> Version:
    if base.major > 0 or given == 1:
        return Version(base.major + 1)
    if base.minor > 0 or given == 2:
        return Version(0, base.minor + 1)
    return Version(0, 0, base.patch + 1)


@dataclass(frozen=True)
class Constraint:
    """一组必须同时满足的约束子句"""

    raw: str
    clauses: tuple[_Clause, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Constraint:
        raw = str(text).strip()
        if raw in ("", "*"):
            return cls(raw="*")
        clauses = []
        for part in raw.split(","):
            part = part.strip()
            m = _OP_RE.match(part)
            if not part or not m:
                raise ValueError(f"版本约束非法: {text!r}")
            op, ver = m.group(1) or "^", m.group(2)
            version, given = _parse_partial(ver)
            clauses.append(_Clause(op, version, given))
        return cls(raw=raw, clauses=tuple(clauses))

    @property
    def is_exact(self) -> bool:
        """是否为硬锁（=x.y.z）"""
        return (
            len(self.clauses) == 1
            and self.clauses[0].op == "="
            and self.clauses[0].given == 3
        )

    def matches(self, version: Version | str) -> bool:
        v = Version.parse(version) if isinstance(version, str) else version
        # 未显式提及预发布版本时不匹配预发布版本
        if v.prerelease and not any(c.version.prerelease for c in self.clauses):
            return False
        return all(c.matches(v) for c in self.clauses)

    def __str__(self) -> str:
        return self.raw


def best_match(candidates: list[str], constraints: list[Constraint]) -> str | None:
    """返回满足全部约束的最高版本，无则 None"""
    ok: list[tuple[Version, str]] = []
    for c in candidates:
        try:
            v = Version.parse(c)
        except ValueError:
            continue
        if all(con.matches(v) for con in constraints):
            ok.append((v, c))
    return max(ok)[1] if ok else None
