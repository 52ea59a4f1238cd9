"""项目描述与锁文件加载

职责:
- 从 YAML 项目描述加载 ProjectSpec（project / dependencies / platforms 三个配置段）
- 读写锁文件，写出内容按依赖名排序，保证确定性
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from releasepipe.core.dep.models import DEFAULT_AUX_FILES, LockEntry, ProjectSpec
from releasepipe.core.exceptions import ConfigError
from releasepipe.core.models import PlatformSpec
from releasepipe.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

LOCK_FORMAT_VERSION = 1


class ProjectRegistry:
    """项目描述注册表 - 从 YAML 文件加载根项目声明"""

    def __init__(self, project_file: str | Path) -> None:
        self.project_file = Path(project_file)

    def load(self) -> ProjectSpec:
        if not self.project_file.exists():
            raise ConfigError(f"项目描述文件不存在: {self.project_file}")

        data = load_yaml(self.project_file)
        project = data.get("project") or {}
        name = str(project.get("name", "")).strip()
        version = str(project.get("version", "")).strip()
        if not name or not version:
            raise ConfigError(f"项目描述缺少 project.name / project.version: {self.project_file}")

        platforms = {
            pname: self._load_platform(pname, info or {})
            for pname, info in (data.get("platforms") or {}).items()
        }
        deps = {str(k): str(v) for k, v in (data.get("dependencies") or {}).items()}
        spec = ProjectSpec(
            name=name,
            version=version,
            binary=str(project.get("binary", "") or ""),
            aux_files=tuple(project.get("aux_files", DEFAULT_AUX_FILES) or ()),
            dependencies=deps,
            platforms=platforms,
        )
        logger.info(
            "已加载项目 %s@%s: %d 个直接依赖, %d 个目标平台",
            name, version, len(deps), len(platforms),
        )
        return spec

    def _load_platform(self, name: str, info: dict[str, Any]) -> PlatformSpec:
        missing = [k for k in ("toolchain", "build_cmd", "binary_path") if not info.get(k)]
        if missing:
            raise ConfigError(f"平台 {name} 缺少字段: {', '.join(missing)} ({self.project_file})")
        return PlatformSpec(
            name=name,
            toolchain=str(info["toolchain"]),
            build_cmd=str(info["build_cmd"]),
            binary_path=str(info["binary_path"]),
            env={str(k): str(v) for k, v in (info.get("env") or {}).items()},
        )


class Lockfile:
    """锁文件: name -> LockEntry"""

    def __init__(self, path: str | Path, entries: dict[str, LockEntry] | None = None) -> None:
        self.path = Path(path)
        self.entries: dict[str, LockEntry] = dict(entries or {})

    @classmethod
    def load(cls, path: str | Path) -> Lockfile:
        """加载锁文件，不存在时返回空锁"""
        p = Path(path)
        data = load_yaml(p)
        entries: dict[str, LockEntry] = {}
        for name, info in (data.get("packages") or {}).items():
            if not isinstance(info, dict) or not info.get("version"):
                raise ConfigError(f"锁文件条目无效: {name} ({p})")
            entries[str(name)] = LockEntry(
                name=str(name),
                version=str(info["version"]),
                checksum=str(info.get("checksum", "") or ""),
                license=str(info.get("license", "") or ""),
                source=str(info.get("source", "index")),
                url=str(info.get("url", "") or ""),
            )
        if entries:
            logger.info("已加载锁文件 %s: %d 个锁定依赖", p, len(entries))
        return cls(p, entries)

    def get(self, name: str) -> LockEntry | None:
        return self.entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": LOCK_FORMAT_VERSION,
            "packages": {n: self.entries[n].to_dict() for n in sorted(self.entries)},
        }

    def save(self) -> None:
        save_yaml(self.path, self.to_dict())
        logger.info("锁文件已更新: %s (%d 个依赖)", self.path, len(self.entries))
