"""发布服务 — 串联流水线各阶段

  vendor   解析依赖图 → 写入本地存储 → 快照 + 依赖清单
  plan     校验发布请求 → 编译构建计划（只读，不派发）
  release  校验 → 解析 → 计划 → 并行构建 → 聚合 → 发布

校验失败发生在任何构建派发之前；依赖解析总是先于计划编译。
相对路径以 base_dir（CLI 中为配置文件所在目录）为基准。
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from releasepipe.core.aggregator import aggregate
from releasepipe.core.config import Config, get_config
from releasepipe.core.dep import (
    DependencyResolver,
    Lockfile,
    ProjectRegistry,
    ProjectSpec,
    ResolutionReport,
    SourceIndex,
    VendorStore,
)
from releasepipe.core.exceptions import ResolutionError
from releasepipe.core.executor import PlatformBuildExecutor
from releasepipe.core.manifest import MANIFEST_FILE, generate_manifest, write_manifest
from releasepipe.core.models import (
    Artifact,
    BuildOutcome,
    BuildPlan,
    PublishResult,
    ReleaseBundle,
    ReleaseRequest,
    VendorManifest,
    VendorSnapshot,
)
from releasepipe.core.plan import compile_plan, validate_request
from releasepipe.core.publisher import ReleasePublisher
from releasepipe.core.scheduler import BuildScheduler
from releasepipe.core.source_archive import build_source_archive
from releasepipe.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


@dataclass
class ReleaseReport:
    """一次 release 调用的完整结果"""

    plan: BuildPlan
    resolution: ResolutionReport | None = None
    outcomes: list[BuildOutcome] = field(default_factory=list)
    bundle: ReleaseBundle | None = None
    published: PublishResult | None = None
    dry_run: bool = False


class ReleaseService:
    """发布流水线入口"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        base_dir: str | Path | None = None,
        command_executor: CommandExecutor | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.config = config or get_config()
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self._command_executor = command_executor
        self._which = which

    def _path(self, value: str) -> Path:
        p = Path(value)
        return p if p.is_absolute() else self.base_dir / p

    @property
    def store(self) -> VendorStore:
        return VendorStore(self._path(self.config.vendor_dir))

    @property
    def manifest_path(self) -> Path:
        return self._path(self.config.vendor_dir) / MANIFEST_FILE

    def load_project(self) -> ProjectSpec:
        return ProjectRegistry(self._path(self.config.project_file)).load()

    def _excluded_paths(self) -> tuple[Path, ...]:
        c = self.config
        return tuple(
            self._path(v)
            for v in (c.vendor_dir, c.work_root, c.output_root, c.publish_root, c.source_index)
        )

    # ---- 依赖 ----

    def vendor(self, project: ProjectSpec | None = None) -> ResolutionReport:
        """解析依赖并写入本地存储，随后重新生成依赖清单"""
        project = project or self.load_project()
        store = self.store
        resolver = DependencyResolver(
            SourceIndex(self._path(self.config.source_index)),
            store,
            Lockfile.load(self._path(self.config.lock_file)),
            vendored=self.config.vendored,
        )
        report = resolver.resolve(project)
        write_manifest(generate_manifest(report.snapshot, store), self.manifest_path)
        return report

    def current_snapshot(self) -> VendorSnapshot:
        snapshot = self.store.load_snapshot()
        if snapshot is None:
            raise ResolutionError(f"尚未生成依赖快照: {self.store.snapshot_path}（请先执行 vendor）")
        return snapshot

    def verify(self) -> VendorSnapshot:
        snapshot = self.current_snapshot()
        self.store.verify_snapshot(snapshot)
        return snapshot

    def manifest(self) -> VendorManifest:
        return generate_manifest(self.current_snapshot(), self.store)

    # ---- 发布 ----

    def make_request(
        self,
        tag: str = "",
        platforms: tuple[str, ...] | list[str] = (),
        output_root: str = "",
        project: ProjectSpec | None = None,
    ) -> ReleaseRequest:
        """填充默认值: 标签默认 v<项目版本>，平台默认全部已配置平台"""
        project = project or self.load_project()
        return ReleaseRequest(
            tag=tag or f"v{project.version}",
            platforms=tuple(platforms) if platforms else tuple(project.platforms),
            output_root=str(self._path(output_root or self.config.output_root)),
        )

    def plan(self, request: ReleaseRequest) -> BuildPlan:
        """基于已有快照编译构建计划，不写入任何内容"""
        project = self.load_project()
        validate_request(request, project)
        return compile_plan(request, self.current_snapshot(), project)

    def release(
        self,
        request: ReleaseRequest,
        *,
        publish: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> ReleaseReport:
        project = self.load_project()
        validate_request(request, project)

        resolution = self.vendor(project)
        plan = compile_plan(request, resolution.snapshot, project)
        if not publish:
            logger.info("dry-run: 只输出构建计划，不派发构建")
            return ReleaseReport(plan=plan, resolution=resolution, dry_run=True)

        executor = PlatformBuildExecutor(
            project,
            plan.tag.version,
            source_dir=self._path(self.config.source_dir),
            vendor_dir=self._path(self.config.vendor_dir),
            work_root=self._path(self.config.work_root),
            vendored=self.config.vendored,
            timeout=self.config.build_timeout,
            keep_workdirs=self.config.keep_workdirs,
            exclude_paths=self._excluded_paths(),
            executor=self._command_executor,
            which=self._which,
        )
        outcomes = BuildScheduler(executor, self.config.max_workers).run_all(plan.jobs, cancel_event)

        manifest = generate_manifest(resolution.snapshot, self.store)
        bundle = aggregate(plan, outcomes, self.manifest_path, manifest.digest(), cancel_event)
        published = ReleasePublisher(self._path(self.config.publish_root), project.name).publish(
            bundle, plan.tag.raw,
        )
        return ReleaseReport(
            plan=plan,
            resolution=resolution,
            outcomes=outcomes,
            bundle=bundle,
            published=published,
        )

    def source_archive(self, output_dir: str = "") -> Artifact:
        project = self.load_project()
        return build_source_archive(
            project.name,
            project.version,
            self._path(self.config.source_dir),
            self.store,
            self.current_snapshot(),
            self._path(output_dir or self.config.output_root),
            exclude_paths=self._excluded_paths(),
        )

    def list_releases(self) -> list[dict[str, Any]]:
        project = self.load_project()
        return ReleasePublisher(self._path(self.config.publish_root), project.name).list_releases()
