"""依赖解析数据模型

数据类:
- ProjectSpec: 项目描述（名称、版本、直接依赖、目标平台）
- LockEntry: 锁文件中单个依赖的锁定信息
- PackageManifest: 依赖自身的清单（传递依赖 + 许可证）
- ResolutionReport: 一次离线化的结果汇总
"""

from __future__ import annotations

from dataclasses import dataclass, field

from releasepipe.core.models import PlatformSpec, VendorSnapshot

DEFAULT_AUX_FILES = ("clevis-encrypt-trustee", "clevis-decrypt-trustee")

# 依赖自身清单文件名（位于源码树根目录）
PACKAGE_MANIFEST = "package.yml"


@dataclass
class ProjectSpec:
    """根项目声明"""

    name: str
    version: str
    binary: str = ""
    aux_files: tuple[str, ...] = DEFAULT_AUX_FILES
    dependencies: dict[str, str] = field(default_factory=dict)  # name -> 约束
    platforms: dict[str, PlatformSpec] = field(default_factory=dict)

    @property
    def binary_name(self) -> str:
        return self.binary or self.name


@dataclass(frozen=True)
class LockEntry:
    """锁文件条目"""

    name: str
    version: str
    checksum: str = ""
    license: str = ""
    source: str = "index"  # "index" | "url"
    url: str = ""

    def to_dict(self) -> dict[str, str]:
        entry = {"version": self.version, "checksum": self.checksum}
        if self.license:
            entry["license"] = self.license
        entry["source"] = self.source
        if self.url:
            entry["url"] = self.url
        return entry


@dataclass(frozen=True)
class PackageManifest:
    """依赖源码树中的 package.yml"""

    name: str
    version: str
    dependencies: dict[str, str] = field(default_factory=dict)
    license: str = ""


@dataclass
class ResolutionReport:
    """离线化结果: 快照 + 本次变更记录"""

    snapshot: VendorSnapshot
    added: list[str] = field(default_factory=list)       # 新写入的 name@version
    unchanged: list[str] = field(default_factory=list)   # 已存在且一致，未触碰
    replaced: list[str] = field(default_factory=list)    # 版本升级替换的 name
    removed: list[str] = field(default_factory=list)     # 不再被依赖而清理的目录
    invalidated: list[str] = field(default_factory=list)  # 受版本变更影响的下游消费者
    lock_updated: bool = False
