"""发布存储（只追加）

目录布局:
  <publish_root>/<package>/
    <tag>/
      <name>-<version>-<platform>.tar.gz(.sha256)
      SHA256SUMS
      vendor-manifest.yml
      release.yml                  发布记录（平台 -> 校验和、清单摘要）
    by-digest/<index digest>       内容寻址指针，内容为版本标签

发布目录先在同级 .staging-* 中组装，完成后一次 rename 原子可见。
同一标签重复发布相同内容为幂等空操作；内容不同则拒绝。
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from releasepipe.core.aggregator import CHECKSUM_INDEX
from releasepipe.core.dep.constraints import Version
from releasepipe.core.exceptions import ReleaseImmutabilityViolation
from releasepipe.core.manifest import MANIFEST_FILE
from releasepipe.core.models import PublishResult, ReleaseBundle
from releasepipe.utils.hashing import checksum_line
from releasepipe.utils.yaml_io import atomic_write, load_yaml, save_yaml

logger = logging.getLogger(__name__)

RECORD_FILE = "release.yml"
DIGEST_DIR = "by-digest"


class ReleasePublisher:
    """只追加的发布存储"""

    def __init__(self, publish_root: str | Path, package: str) -> None:
        self.root = Path(publish_root) / package
        self.package = package

    def release_dir(self, tag: str) -> Path:
        return self.root / tag

    def publish(self, bundle: ReleaseBundle, tag: str) -> PublishResult:
        target = self.release_dir(tag)
        if target.exists():
            return self._republish(bundle, tag)

        self.root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".staging-{tag}-", dir=str(self.root)))
        try:
            self._assemble(bundle, tag, staging)
            try:
                os.rename(staging, target)
            except OSError:
                # 并发发布抢先完成，按重复发布处理
                if target.exists():
                    return self._republish(bundle, tag)
                raise
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        atomic_write(self.root / DIGEST_DIR / bundle.index_digest, f"{tag}\n")
        logger.info("已发布 %s -> %s (%d 个平台)", tag, target, len(bundle.artifacts))
        return PublishResult(tag=tag, location=str(target), status="published")

    def _republish(self, bundle: ReleaseBundle, tag: str) -> PublishResult:
        target = self.release_dir(tag)
        record = self.load_record(tag) or {}
        differences = self._compare(record, bundle)
        if differences:
            raise ReleaseImmutabilityViolation(tag, differences)
        logger.info("版本 %s 已以相同内容发布，跳过", tag)
        return PublishResult(tag=tag, location=str(target), status="unchanged")

    def _assemble(self, bundle: ReleaseBundle, tag: str, staging: Path) -> None:
        for a in bundle.artifacts:
            shutil.copyfile(a.archive_path, staging / a.archive_name)
            atomic_write(staging / f"{a.archive_name}.sha256", checksum_line(a.checksum, a.archive_name))
        atomic_write(staging / CHECKSUM_INDEX, bundle.checksum_index)
        if bundle.manifest_path and Path(bundle.manifest_path).is_file():
            shutil.copyfile(bundle.manifest_path, staging / MANIFEST_FILE)
        save_yaml(staging / RECORD_FILE, self._record(bundle, tag))

    def _record(self, bundle: ReleaseBundle, tag: str) -> dict[str, Any]:
        return {
            "package": self.package,
            "tag": tag,
            "version": bundle.version,
            "index_digest": bundle.index_digest,
            "manifest_digest": bundle.manifest_digest,
            "artifacts": {
                a.platform: {"archive": a.archive_name, "checksum": a.checksum, "size": a.size}
                for a in bundle.artifacts
            },
        }

    @staticmethod
    def _compare(record: dict[str, Any], bundle: ReleaseBundle) -> list[str]:
        published = {
            str(p): str((info or {}).get("checksum", ""))
            for p, info in (record.get("artifacts") or {}).items()
        }
        current = bundle.checksums()
        differences = []
        for platform in sorted(set(published) | set(current)):
            before, after = published.get(platform), current.get(platform)
            if before == after:
                continue
            if before is None:
                differences.append(f"{platform}: 已发布版本中不存在")
            elif after is None:
                differences.append(f"{platform}: 本次发布缺失")
            else:
                differences.append(f"{platform}: 已发布 {before}, 本次 {after}")
        if str(record.get("manifest_digest", "")) != bundle.manifest_digest:
            differences.append(
                f"vendor manifest: 已发布 {record.get('manifest_digest', '')}, 本次 {bundle.manifest_digest}",
            )
        return differences

    # ---- 查询 ----

    def load_record(self, tag: str) -> dict[str, Any] | None:
        path = self.release_dir(tag) / RECORD_FILE
        if not path.is_file():
            return None
        return load_yaml(path)

    def lookup_digest(self, index_digest: str) -> str | None:
        """按校验和索引摘要反查版本标签"""
        pointer = self.root / DIGEST_DIR / index_digest
        if not pointer.is_file():
            return None
        return pointer.read_text(encoding="utf-8").strip()

    def list_releases(self) -> list[dict[str, Any]]:
        """已发布版本记录，按版本号升序"""
        if not self.root.is_dir():
            return []
        records = []
        for d in self.root.iterdir():
            if d.name.startswith(".") or d.name == DIGEST_DIR or not d.is_dir():
                continue
            record = self.load_record(d.name)
            if record:
                records.append(record)
        return sorted(records, key=lambda r: _tag_key(str(r.get("tag", ""))))


def _tag_key(tag: str) -> tuple:
    try:
        return (0, Version.parse(tag.removeprefix("v")), tag)
    except ValueError:
        return (1, tag, tag)
