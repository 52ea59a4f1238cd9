"""依赖离线化模块

- constraints.py: 语义化版本与版本约束
- models.py: 项目描述 / 锁文件 / 解析报告数据模型
- registry.py: 项目描述与锁文件加载
- sources.py: 本地源码索引与 URL 下载
- store.py: 以 (name, version) 为键的本地内容存储
- resolver.py: 依赖图解析与离线化
"""

from releasepipe.core.dep.constraints import Constraint, Version, best_match
from releasepipe.core.dep.models import LockEntry, PackageManifest, ProjectSpec, ResolutionReport
from releasepipe.core.dep.registry import Lockfile, ProjectRegistry
from releasepipe.core.dep.resolver import DependencyResolver
from releasepipe.core.dep.sources import SourceIndex
from releasepipe.core.dep.store import VendorStore

__all__ = [
    "Constraint",
    "Version",
    "best_match",
    "LockEntry",
    "PackageManifest",
    "ProjectSpec",
    "ResolutionReport",
    "Lockfile",
    "ProjectRegistry",
    "DependencyResolver",
    "SourceIndex",
    "VendorStore",
]
