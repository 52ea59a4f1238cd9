"""离线依赖清单生成

清单是 VendorSnapshot 的只读投影，每次 vendor 重新生成，禁止手工编辑。
同一快照两次生成的结果逐字节相同。
"""

from __future__ import annotations

import logging
from pathlib import Path

from releasepipe.core.dep.store import VendorStore
from releasepipe.core.exceptions import InconsistentSnapshot
from releasepipe.core.models import ManifestEntry, VendorManifest, VendorSnapshot
from releasepipe.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

MANIFEST_FILE = "vendor-manifest.yml"
TEXT_MANIFEST_FILE = "cargo-vendor.txt"


def generate_manifest(snapshot: VendorSnapshot, store: VendorStore) -> VendorManifest:
    """由快照生成清单，快照中列出但本地存储中不存在的依赖抛 InconsistentSnapshot"""
    entries = []
    for ref in snapshot.refs:
        tree = store.entry_path(ref.name, ref.version)
        if not tree.is_dir():
            raise InconsistentSnapshot(ref.name, ref.version, str(tree))
        entries.append(ManifestEntry(ref.name, ref.version, ref.checksum, ref.license))
    return VendorManifest(
        project=snapshot.project,
        project_version=snapshot.project_version,
        entries=tuple(entries),
    )


def write_manifest(manifest: VendorManifest, path: str | Path) -> Path:
    """写出 YAML 清单，并在同目录写出纯文本形式 cargo-vendor.txt"""
    target = Path(path)
    atomic_write(target, manifest.render())
    atomic_write(target.parent / TEXT_MANIFEST_FILE, manifest.render_text())
    logger.info("依赖清单已写入: %s (%d 项)", target, len(manifest.entries))
    return target
