"""构建产物聚合

屏障之后执行。只有计划中每个平台都恰好产出一个校验一致的归档时才组成发布包；
任何缺失或失败都抛 IncompleteRelease，已成功的产物保留在异常中但不发布。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from releasepipe.core.exceptions import IncompleteRelease, ReleaseCancelled
from releasepipe.core.models import Artifact, BuildOutcome, BuildPlan, ReleaseBundle
from releasepipe.core.scheduler import is_cancelled
from releasepipe.utils.hashing import checksum_line, sha256_file, sha256_text

logger = logging.getLogger(__name__)

CHECKSUM_INDEX = "SHA256SUMS"


def build_checksum_index(artifacts: list[Artifact]) -> str:
    """sha256sum 格式的跨平台校验和索引，按归档名排序"""
    ordered = sorted(artifacts, key=lambda a: a.archive_name)
    return "".join(checksum_line(a.checksum, a.archive_name) for a in ordered)


def aggregate(
    plan: BuildPlan,
    outcomes: list[BuildOutcome],
    manifest_path: str | Path = "",
    manifest_digest: str = "",
    cancel_event: threading.Event | None = None,
) -> ReleaseBundle:
    tag = plan.tag.raw
    by_platform: dict[str, list[BuildOutcome]] = {}
    for o in outcomes:
        by_platform.setdefault(o.job.platform, []).append(o)

    failures: dict[str, str] = {}
    completed: list[Artifact] = []
    for platform in plan.platforms:
        found = by_platform.get(platform, [])
        if len(found) != 1:
            failures[platform] = f"期望 1 个构建结果，实际 {len(found)} 个"
            continue
        outcome = found[0]
        if not outcome.succeeded:
            failures[platform] = outcome.error or outcome.job.error or "构建失败"
            continue
        artifact = outcome.artifact
        if not Path(artifact.archive_path).is_file():
            failures[platform] = f"归档不存在: {artifact.archive_path}"
            continue
        actual = sha256_file(artifact.archive_path)
        if actual != artifact.checksum:
            failures[platform] = f"归档校验和不匹配: 期望 {artifact.checksum}, 实际 {actual}"
            continue
        completed.append(artifact)

    extra = sorted(set(by_platform) - set(plan.platforms))
    for platform in extra:
        failures[platform] = "计划之外的构建结果"

    cancelled = cancel_event is not None and cancel_event.is_set()
    if cancelled or any(is_cancelled(o) for o in outcomes):
        for platform in plan.platforms:
            failures.setdefault(platform, "发布已取消，结果不予发布")
        logger.warning("发布已取消 %s: 已完成的产物不发布", tag)
        raise ReleaseCancelled(tag, failures)
    if failures:
        logger.error("发布不完整 %s: 失败平台 %s", tag, sorted(failures))
        raise IncompleteRelease(tag, failures, completed)

    index = build_checksum_index(completed)
    bundle = ReleaseBundle(
        version=plan.tag.version,
        artifacts=tuple(sorted(completed, key=lambda a: a.platform)),
        checksum_index=index,
        index_digest=sha256_text(index),
        manifest_path=str(manifest_path),
        manifest_digest=manifest_digest,
    )
    logger.info("聚合完成 %s: %d 个平台归档", tag, len(bundle.artifacts))
    return bundle
