"""核心数据模型

所有流水线阶段共享的数据类集中定义，避免 resolver ↔ plan ↔ executor 的循环依赖。

生命周期约定:
  - DependencyRef / Artifact / ReleaseRequest / VersionTag 创建后不可变
  - VendorSnapshot 由 Resolver 写入一次，之后整个流水线只读
  - BuildJob: Pending → Running → Succeeded | Failed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from releasepipe.utils.hashing import sha256_text
from releasepipe.utils.yaml_io import dump_yaml

# =========================================================================
# 依赖离线化
# =========================================================================


@dataclass(frozen=True)
class DependencyRef:
    """已解析的单个依赖，唯一键为 (name, version)"""

    name: str
    version: str
    checksum: str
    dependencies: tuple[tuple[str, str], ...] = ()  # (name, constraint)，按 name 排序
    license: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.version)

    @property
    def dir_name(self) -> str:
        """本地存储目录名（与 cargo vendor --versioned-dirs 一致）"""
        return f"{self.name}-{self.version}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "checksum": self.checksum,
            "license": self.license,
            "dependencies": {n: c for n, c in self.dependencies},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DependencyRef:
        deps = data.get("dependencies") or {}
        return cls(
            name=str(data["name"]),
            version=str(data["version"]),
            checksum=str(data.get("checksum", "")),
            dependencies=tuple(sorted((str(k), str(v)) for k, v in deps.items())),
            license=str(data.get("license", "") or ""),
        )


@dataclass(frozen=True)
class VendorSnapshot:
    """离线依赖快照: 有序 DependencyRef 集合 + 每个依赖到本地源码树的目录映射"""

    project: str
    project_version: str
    refs: tuple[DependencyRef, ...] = ()
    vendored: bool = True

    @property
    def layout(self) -> dict[str, str]:
        return {r.name: r.dir_name for r in self.refs}

    def get(self, name: str) -> DependencyRef | None:
        for r in self.refs:
            if r.name == name:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "project_version": self.project_version,
            "vendored": self.vendored,
            "packages": [r.to_dict() for r in self.refs],
        }

    def render(self) -> str:
        return dump_yaml(self.to_dict())

    def digest(self) -> str:
        """快照摘要，构建任务以此引用快照"""
        return sha256_text(self.render())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VendorSnapshot:
        refs = [DependencyRef.from_dict(p) for p in data.get("packages") or []]
        return cls(
            project=str(data.get("project", "")),
            project_version=str(data.get("project_version", "")),
            refs=tuple(sorted(refs, key=lambda r: r.key)),
            vendored=bool(data.get("vendored", True)),
        )


@dataclass(frozen=True)
class ManifestEntry:
    name: str
    version: str
    checksum: str
    license: str = ""


@dataclass(frozen=True)
class VendorManifest:
    """VendorSnapshot 的只读投影，用于许可证与来源审计，禁止手工编辑"""

    project: str
    project_version: str
    entries: tuple[ManifestEntry, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "version": self.project_version,
            "packages": [
                {
                    "name": e.name,
                    "version": e.version,
                    "checksum": e.checksum,
                    "license": e.license or "UNKNOWN",
                }
                for e in self.entries
            ],
        }

    def render(self) -> str:
        """结构化文本（YAML）形式"""
        return dump_yaml(self.to_dict())

    def render_text(self) -> str:
        """cargo-vendor.txt 风格的纯文本形式: 每行 "<name> <version> <license>" """
        return "".join(
            f"{e.name} {e.version} {e.license or 'UNKNOWN'}\n" for e in self.entries
        )

    def digest(self) -> str:
        return sha256_text(self.render())


# =========================================================================
# 发布请求与构建计划
# =========================================================================


@dataclass(frozen=True)
class VersionTag:
    """已通过语法校验的版本标签"""

    raw: str
    major: int
    minor: int
    patch: int
    prerelease: str = ""

    @property
    def version(self) -> str:
        """去掉 'v' 前缀的版本号，例如 v0.2.0-beta.1 -> 0.2.0-beta.1"""
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base

    def __str__(self) -> str:
        return self.raw


@dataclass(frozen=True)
class ReleaseRequest:
    """一次调用对应一个发布请求，创建后不可变"""

    tag: str
    platforms: tuple[str, ...] = ()
    output_root: str = "dist"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass(frozen=True)
class PlatformSpec:
    """项目描述中的单个目标平台定义"""

    name: str
    toolchain: str
    build_cmd: str
    binary_path: str
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class BuildJob:
    """单个平台的构建任务

    派发前归 Build Plan Compiler 所有，派发后归执行它的 PlatformBuildExecutor。
    """

    platform: str
    toolchain: str
    build_cmd: str
    binary_path: str
    snapshot_ref: str
    output_path: str
    env: dict[str, str] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    error: str = ""

    def start(self) -> None:
        self._transition(JobStatus.PENDING, JobStatus.RUNNING)

    def succeed(self) -> None:
        self._transition(JobStatus.RUNNING, JobStatus.SUCCEEDED)

    def fail(self, reason: str) -> None:
        if self.status.terminal:
            raise RuntimeError(f"构建任务 {self.platform} 已处于终态 {self.status.value}")
        self.status = JobStatus.FAILED
        self.error = reason

    def _transition(self, expected: JobStatus, target: JobStatus) -> None:
        if self.status is not expected:
            raise RuntimeError(
                f"构建任务 {self.platform} 状态非法: {self.status.value} -> {target.value}",
            )
        self.status = target


@dataclass
class BuildPlan:
    """由发布请求编译得到的、可并行的构建任务集合"""

    request: ReleaseRequest
    tag: VersionTag
    package: str
    jobs: list[BuildJob] = field(default_factory=list)
    snapshot_digest: str = ""

    @property
    def platforms(self) -> list[str]:
        return [j.platform for j in self.jobs]

    @property
    def bundle_name(self) -> str:
        """归档内顶层目录名 <package>-<version>"""
        return f"{self.package}-{self.tag.version}"


# =========================================================================
# 构建产物与发布
# =========================================================================


@dataclass(frozen=True)
class Artifact:
    """成功构建产出的平台归档，创建后不可变"""

    platform: str
    archive_path: str
    checksum: str
    size: int

    @property
    def archive_name(self) -> str:
        return Path(self.archive_path).name


@dataclass
class BuildOutcome:
    """单个构建任务的终态结果"""

    job: BuildJob
    artifact: Artifact | None = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.job.status is JobStatus.SUCCEEDED and self.artifact is not None


@dataclass(frozen=True)
class ReleaseBundle:
    """完整的发布包，仅当产物集合与请求平台列表完全一致时才有效"""

    version: str
    artifacts: tuple[Artifact, ...]
    checksum_index: str
    index_digest: str
    manifest_path: str = ""
    manifest_digest: str = ""

    def checksums(self) -> dict[str, str]:
        return {a.platform: a.checksum for a in self.artifacts}


@dataclass(frozen=True)
class PublishResult:
    tag: str
    location: str
    status: str  # "published" | "unchanged"
