"""可离线构建的源码归档

<name>-<version>-vendor.tar.gz 布局:
  <name>-<version>/
    <项目源码>
    vendor/<依赖名>-<版本>/...
    .cargo/config.toml          crates-io 替换为 vendor 目录

解包后无需网络即可构建。归档确定性生成，并写出同名 .sha256。
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

from releasepipe.core.dep.store import META_FILE, SNAPSHOT_FILE, VendorStore
from releasepipe.core.executor import EXCLUDED_DIRS, cargo_vendor_config
from releasepipe.core.models import Artifact, VendorSnapshot
from releasepipe.utils.archive import write_deterministic_tarball
from releasepipe.utils.hashing import checksum_line, sha256_file
from releasepipe.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)


def source_archive_name(package: str, version: str) -> str:
    return f"{package}-{version}-vendor.tar.gz"


def build_source_archive(
    package: str,
    version: str,
    source_dir: str | Path,
    store: VendorStore,
    snapshot: VendorSnapshot,
    output_dir: str | Path,
    exclude_paths: tuple[str | Path, ...] = (),
) -> Artifact:
    """打包项目源码 + 快照中的全部离线依赖，返回归档 Artifact"""
    store.verify_snapshot(snapshot)
    src_root = Path(source_dir).resolve()
    skipped = {Path(p).resolve() for p in exclude_paths}
    top = f"{package}-{version}"

    def ignore(dirpath: str, names: list[str]) -> list[str]:
        base = Path(dirpath)
        return [
            n for n in names
            if (base == src_root and n in EXCLUDED_DIRS) or (base / n).resolve() in skipped
        ]

    with tempfile.TemporaryDirectory(prefix="releasepipe-src-") as tmp:
        tree = Path(tmp) / top
        shutil.copytree(src_root, tree, ignore=ignore, symlinks=True)
        vendor = tree / "vendor"
        vendor.mkdir(parents=True, exist_ok=True)
        for ref in snapshot.refs:
            shutil.copytree(
                store.entry_path(ref.name, ref.version),
                vendor / ref.dir_name,
                ignore=shutil.ignore_patterns(META_FILE),
                symlinks=True,
            )
        if store.snapshot_path.is_file():
            shutil.copyfile(store.snapshot_path, vendor / SNAPSHOT_FILE)
        cargo = tree / ".cargo"
        cargo.mkdir(exist_ok=True)
        atomic_write(cargo / "config.toml", cargo_vendor_config("vendor"))

        archive = Path(output_dir) / source_archive_name(package, version)
        write_deterministic_tarball(archive, tree, prefix=top)

    checksum = sha256_file(archive)
    atomic_write(archive.with_name(archive.name + ".sha256"), checksum_line(checksum, archive.name))
    logger.info("源码归档已生成: %s (%d 个离线依赖)", archive, len(snapshot.refs))
    return Artifact(platform="source", archive_path=str(archive), checksum=checksum, size=archive.stat().st_size)
