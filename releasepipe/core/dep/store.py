"""离线依赖内容存储

目录布局:
  <vendor_dir>/
    snapshot.yml                   当前 VendorSnapshot
    <name>-<version>/              依赖源码树（以 (name, version) 为键）
      .releasepipe-checksum.yml    name / version / 源码树摘要

写入策略:
  - 先在 <vendor_dir>/.staging-* 暂存并校验，通过后 os.replace 入库
  - 已存在且摘要一致的条目原样保留（幂等）
  - 校验和不符直接抛 ChecksumMismatch，不写入任何内容
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from releasepipe.core.dep.models import PackageManifest
from releasepipe.core.dep.sources import read_package_manifest
from releasepipe.core.exceptions import ChecksumMismatch, InconsistentSnapshot
from releasepipe.core.models import DependencyRef, VendorSnapshot
from releasepipe.utils.hashing import tree_digest
from releasepipe.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

META_FILE = ".releasepipe-checksum.yml"
SNAPSHOT_FILE = "snapshot.yml"


class VendorStore:
    """以 (name, version) 为键的本地源码树存储"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def entry_path(self, name: str, version: str) -> Path:
        return self.root / f"{name}-{version}"

    def digest(self, name: str, version: str) -> str:
        return tree_digest(self.entry_path(name, version), exclude=(META_FILE,))

    def _read_meta(self, entry: Path) -> dict:
        return load_yaml(entry / META_FILE)

    def has_valid(self, name: str, version: str, checksum: str) -> bool:
        """条目存在、元数据一致且源码树摘要仍等于 checksum"""
        entry = self.entry_path(name, version)
        if not entry.is_dir():
            return False
        meta = self._read_meta(entry)
        if (meta.get("name"), meta.get("version"), meta.get("checksum")) != (name, version, checksum):
            return False
        return self.digest(name, version) == checksum

    def entries(self) -> dict[str, tuple[str, str]]:
        """列出已入库条目: 目录名 -> (name, version)"""
        found: dict[str, tuple[str, str]] = {}
        if not self.root.is_dir():
            return found
        for d in sorted(self.root.iterdir()):
            if not d.is_dir() or d.name.startswith("."):
                continue
            meta = self._read_meta(d)
            if meta.get("name") and meta.get("version"):
                found[d.name] = (str(meta["name"]), str(meta["version"]))
        return found

    @contextmanager
    def staging(self) -> Iterator[Path]:
        """同文件系统内的暂存目录，退出时清理残留"""
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = Path(tempfile.mkdtemp(prefix=".staging-", dir=str(self.root)))
        try:
            yield tmp / "tree"
        finally:
            shutil.rmtree(tmp, ignore_errors=True)

    def install(self, name: str, version: str, staged: Path, expected: str = "") -> str:
        """校验暂存的源码树并入库，返回源码树摘要"""
        (staged / META_FILE).unlink(missing_ok=True)
        actual = tree_digest(staged, exclude=(META_FILE,))
        if expected and actual != expected:
            raise ChecksumMismatch(name, version, expected, actual)
        save_yaml(staged / META_FILE, {"name": name, "version": version, "checksum": actual})

        entry = self.entry_path(name, version)
        if entry.exists():
            shutil.rmtree(entry)
        os.replace(staged, entry)
        logger.info("  已入库: %s@%s -> %s", name, version, entry)
        return actual

    def recorded_checksum(self, name: str, version: str) -> str:
        """入库时记录的摘要，条目或元数据不存在时返回空串"""
        entry = self.entry_path(name, version)
        if not entry.is_dir():
            return ""
        return str(self._read_meta(entry).get("checksum", "") or "")

    def install_meta(self, name: str, version: str, checksum: str) -> None:
        save_yaml(
            self.entry_path(name, version) / META_FILE,
            {"name": name, "version": version, "checksum": checksum},
        )

    def remove(self, dir_name: str) -> None:
        target = self.root / dir_name
        if target.is_dir():
            shutil.rmtree(target)
            logger.info("  已清理: %s", target)

    def read_manifest(self, name: str, version: str) -> PackageManifest | None:
        """从已入库条目读取依赖清单，条目不存在时返回 None"""
        entry = self.entry_path(name, version)
        if not entry.is_dir():
            return None
        return read_package_manifest(entry, name, version)

    # ---- 校验 ----

    def verify_ref(self, ref: DependencyRef) -> None:
        entry = self.entry_path(ref.name, ref.version)
        if not entry.is_dir():
            raise InconsistentSnapshot(ref.name, ref.version, str(entry))
        actual = self.digest(ref.name, ref.version)
        if actual != ref.checksum:
            raise ChecksumMismatch(ref.name, ref.version, ref.checksum, actual)

    def verify_snapshot(self, snapshot: VendorSnapshot) -> None:
        """重新计算快照中全部依赖的源码树摘要，任何带外修改都抛 ChecksumMismatch"""
        for ref in snapshot.refs:
            self.verify_ref(ref)
        logger.info("快照校验通过: %d 个依赖", len(snapshot.refs))

    # ---- 快照持久化 ----

    @property
    def snapshot_path(self) -> Path:
        return self.root / SNAPSHOT_FILE

    def save_snapshot(self, snapshot: VendorSnapshot) -> Path:
        save_yaml(self.snapshot_path, snapshot.to_dict())
        return self.snapshot_path

    def load_snapshot(self) -> VendorSnapshot | None:
        data = load_yaml(self.snapshot_path)
        if not data:
            return None
        return VendorSnapshot.from_dict(data)
