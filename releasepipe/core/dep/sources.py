"""依赖源码来源

职责:
- 本地镜像索引: <source_index>/<name>/<version>/ 目录即源码树，含 package.yml
- URL 来源: 锁文件条目 source=url 时下载 .tar.gz 并安全解压
- 读取依赖自身清单（传递依赖 + 许可证）

本模块只负责把源码树放到调用方给定的暂存目录，校验和比对与入库由 VendorStore 负责。
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import urllib.error
import urllib.request
from pathlib import Path

import yaml

from releasepipe.core.dep.constraints import Version
from releasepipe.core.dep.models import PACKAGE_MANIFEST, LockEntry, PackageManifest
from releasepipe.core.exceptions import PartialGraph, ValidationError
from releasepipe.utils.archive import safe_extract
from releasepipe.utils.net import check_source_url, expand_source_url
from releasepipe.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60


def read_package_manifest(tree: Path, name: str, version: str) -> PackageManifest:
    """读取源码树根目录的 package.yml，读取失败抛 PartialGraph"""
    path = tree / PACKAGE_MANIFEST
    if not path.is_file():
        raise PartialGraph(name, version, f"缺少 {PACKAGE_MANIFEST} ({path})")
    try:
        data = load_yaml(path)
    except (yaml.YAMLError, ValueError, OSError) as e:
        raise PartialGraph(name, version, f"{PACKAGE_MANIFEST} 无法解析: {e}") from e
    declared = str(data.get("name", name))
    if declared != name:
        raise PartialGraph(name, version, f"清单声明的名称为 {declared}")
    deps = data.get("dependencies") or {}
    if not isinstance(deps, dict):
        raise PartialGraph(name, version, "dependencies 必须是 name -> 约束 的映射")
    return PackageManifest(
        name=name,
        version=version,
        dependencies={str(k): str(v) for k, v in deps.items()},
        license=str(data.get("license", "") or ""),
    )


class SourceIndex:
    """本地源码镜像索引 + URL 下载"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def tree_path(self, name: str, version: str) -> Path:
        return self.root / name / version

    def has(self, name: str, version: str) -> bool:
        return self.tree_path(name, version).is_dir()

    def list_versions(self, name: str) -> list[str]:
        """列出索引中某依赖的全部可用版本（按版本号升序，忽略非法目录名）"""
        base = self.root / name
        if not base.is_dir():
            return []
        versions: list[tuple[Version, str]] = []
        for d in base.iterdir():
            if not d.is_dir() or d.name.startswith("."):
                continue
            try:
                versions.append((Version.parse(d.name), d.name))
            except ValueError:
                logger.warning("忽略非法版本目录: %s", d)
        return [v for _, v in sorted(versions)]

    def read_manifest(self, name: str, version: str) -> PackageManifest:
        tree = self.tree_path(name, version)
        if not tree.is_dir():
            raise PartialGraph(name, version, f"源码索引中不存在 ({tree})")
        return read_package_manifest(tree, name, version)

    def stage(self, name: str, version: str, dest: Path, lock: LockEntry | None = None) -> Path:
        """把依赖源码树放入暂存目录 dest，返回 dest

        优先使用本地索引；索引中没有且锁文件条目为 url 来源时远程下载。
        """
        tree = self.tree_path(name, version)
        if tree.is_dir():
            shutil.copytree(tree, dest, symlinks=True)
            return dest
        if lock is not None and lock.source == "url":
            return self._download(lock, dest)
        raise PartialGraph(name, version, f"源码索引中不存在且无可用下载地址 ({tree})")

    def _download(self, lock: LockEntry, dest: Path) -> Path:
        if not lock.url:
            raise PartialGraph(lock.name, lock.version, "锁文件 source=url 但未定义 url")
        url = expand_source_url(lock.url, lock.name, lock.version)
        try:
            check_source_url(url, f"{lock.name}@{lock.version}")
        except ValidationError as e:
            raise PartialGraph(lock.name, lock.version, str(e)) from e

        logger.info("  下载: %s", url)
        with tempfile.TemporaryDirectory(prefix="releasepipe-dl-") as tmp:
            archive = Path(tmp) / "source.tar.gz"
            try:
                with urllib.request.urlopen(url, timeout=DOWNLOAD_TIMEOUT) as resp:  # nosec B310
                    archive.write_bytes(resp.read())
                extracted = Path(tmp) / "extracted"
                safe_extract(archive, extracted)
            except (urllib.error.URLError, OSError, ValueError) as e:
                raise PartialGraph(lock.name, lock.version, f"下载失败: {url} - {e}") from e
            # 归档只有一个顶层目录时剥掉这一层
            children = list(extracted.iterdir())
            root = children[0] if len(children) == 1 and children[0].is_dir() else extracted
            shutil.copytree(root, dest, symlinks=True)
        logger.info("  已下载: %s@%s", lock.name, lock.version)
        return dest
