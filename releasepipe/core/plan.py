"""构建计划编译

把一个发布请求编译为一组互不依赖的 BuildJob（每个平台一个）。
计划每次都从当前项目配置重新推导，不读回任何生成物。
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from releasepipe.core.dep.models import ProjectSpec
from releasepipe.core.exceptions import (
    EmptyPlatformList,
    InvalidVersionTag,
    UnknownPlatform,
    VersionMismatch,
)
from releasepipe.core.models import BuildJob, BuildPlan, ReleaseRequest, VendorSnapshot, VersionTag

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(
    r"^v(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z]+(?:[.-][0-9A-Za-z]+)*))?\Z",
)


def parse_version_tag(tag: str) -> VersionTag:
    """解析 v<major>.<minor>.<patch>[-<prerelease>]，非法抛 InvalidVersionTag"""
    m = _TAG_RE.match(tag or "")
    if not m:
        raise InvalidVersionTag(tag)
    major, minor, patch, pre = m.groups()
    return VersionTag(raw=tag, major=int(major), minor=int(minor), patch=int(patch), prerelease=pre or "")


def archive_name(package: str, version: str, platform: str) -> str:
    return f"{package}-{version}-{platform}.tar.gz"


def validate_request(request: ReleaseRequest, project: ProjectSpec) -> tuple[VersionTag, list[str]]:
    """校验发布请求，返回 (版本标签, 去重后的平台列表)；不产生任何副作用"""
    tag = parse_version_tag(request.tag)
    if not request.platforms:
        raise EmptyPlatformList(request.tag)
    if tag.version != project.version:
        raise VersionMismatch(request.tag, project.version)

    platforms = list(dict.fromkeys(request.platforms))
    unknown = [p for p in platforms if p not in project.platforms]
    if unknown:
        raise UnknownPlatform(unknown, sorted(project.platforms))
    return tag, platforms


def compile_plan(request: ReleaseRequest, snapshot: VendorSnapshot, project: ProjectSpec) -> BuildPlan:
    """编译构建计划: 每个平台一个 Pending 任务，全部引用同一个已定稿快照"""
    tag, platforms = validate_request(request, project)
    snapshot_ref = snapshot.digest()
    out_root = Path(request.output_root) / tag.raw

    jobs = []
    for name in platforms:
        spec = project.platforms[name]
        jobs.append(BuildJob(
            platform=name,
            toolchain=spec.toolchain,
            build_cmd=spec.build_cmd,
            binary_path=spec.binary_path,
            snapshot_ref=snapshot_ref,
            output_path=str(out_root / name),
            env=dict(spec.env),
        ))

    logger.info("构建计划: %s -> %d 个平台 (%s)", tag, len(jobs), ", ".join(platforms))
    return BuildPlan(
        request=request,
        tag=tag,
        package=project.name,
        jobs=jobs,
        snapshot_digest=snapshot_ref,
    )


def render_plan(plan: BuildPlan) -> dict:
    """计划的可展示形式（dry-run 输出）"""
    return {
        "tag": plan.tag.raw,
        "package": plan.package,
        "snapshot": plan.snapshot_digest,
        "jobs": [
            {
                "platform": j.platform,
                "toolchain": j.toolchain,
                "build_cmd": j.build_cmd,
                "archive": str(Path(j.output_path) / archive_name(plan.package, plan.tag.version, j.platform)),
                "status": j.status.value,
            }
            for j in plan.jobs
        ],
    }
