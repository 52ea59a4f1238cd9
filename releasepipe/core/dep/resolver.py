"""依赖图解析与离线化

职责:
- 从根项目声明出发，求传递闭包并为每个依赖名选定唯一版本
- 依赖环检查（硬锁环拒绝；范围约束环必须全部已锁定）
- 把选定的源码树写入 VendorStore，校验和不符立即失败
- 与上一次快照比较，报告版本替换及受影响的下游消费者

选版策略（每个依赖名只允许一个版本）:
  1. 锁文件已锁定: 使用锁定版本，必须满足所有消费者的约束
  2. 离线模式下未锁定: 失败，不猜测
  3. 在线模式下未锁定（或锁定版本已不满足新约束）: 取索引中满足全部约束的最高版本，
     之后出现冲突约束则带着已知约束重选并重新遍历，有限轮内不收敛即失败
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass

from releasepipe.core.dep.constraints import Constraint, best_match
from releasepipe.core.dep.models import LockEntry, PackageManifest, ProjectSpec, ResolutionReport
from releasepipe.core.dep.registry import Lockfile
from releasepipe.core.dep.sources import SourceIndex
from releasepipe.core.dep.store import VendorStore
from releasepipe.core.exceptions import ChecksumMismatch, PartialGraph, UnresolvableVersion
from releasepipe.core.models import DependencyRef, VendorSnapshot

logger = logging.getLogger(__name__)

MAX_PASSES = 16


@dataclass(frozen=True)
class _Edge:
    consumer: str
    name: str
    constraint: Constraint


class _Restart(Exception):
    """内部信号: 出现冲突约束，需要带着已知约束重新遍历"""


class DependencyResolver:
    """依赖解析器 - 产出 VendorSnapshot 并维护本地内容存储"""

    def __init__(
        self,
        index: SourceIndex,
        store: VendorStore,
        lockfile: Lockfile,
        *,
        vendored: bool = True,
    ) -> None:
        self.index = index
        self.store = store
        self.lockfile = lockfile
        self.vendored = vendored
        self._fresh: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    def resolve(self, project: ProjectSpec) -> ResolutionReport:
        """解析 + 离线化，返回报告（快照已写入 <vendor_dir>/snapshot.yml）"""
        mode = "vendored" if self.vendored else "live"
        logger.info("开始解析依赖: %s@%s (mode=%s)", project.name, project.version, mode)
        self._fresh = set()

        selection, manifests, edges = self._select(project)
        self._check_cycles(project.name, edges)

        report = ResolutionReport(snapshot=VendorSnapshot(project.name, project.version))
        refs = [
            self._materialize(name, selection[name], manifests[name], report)
            for name in sorted(selection)
        ]
        snapshot = VendorSnapshot(
            project=project.name,
            project_version=project.version,
            refs=tuple(sorted(refs, key=lambda r: r.key)),
            vendored=self.vendored,
        )
        report.snapshot = snapshot

        self._diff_previous(snapshot, edges, report)
        self._prune(snapshot, report)
        self.store.save_snapshot(snapshot)
        if report.lock_updated:
            self.lockfile.save()

        logger.info(
            "依赖解析完成: %d 个依赖 (新增 %d, 未变 %d, 替换 %d, 清理 %d)",
            len(refs), len(report.added), len(report.unchanged),
            len(report.replaced), len(report.removed),
        )
        return report

    # ------------------------------------------------------------------
    # 选版
    # ------------------------------------------------------------------

    def _select(
        self, project: ProjectSpec,
    ) -> tuple[dict[str, str], dict[str, PackageManifest], list[_Edge]]:
        sticky: dict[str, list[tuple[Constraint, str]]] = defaultdict(list)
        for _ in range(MAX_PASSES):
            try:
                return self._walk(project, sticky)
            except _Restart:
                continue
        conflicted = ", ".join(sorted(sticky))
        raise UnresolvableVersion(conflicted, f"{MAX_PASSES} 轮重选后仍未收敛")

    def _walk(
        self,
        project: ProjectSpec,
        sticky: dict[str, list[tuple[Constraint, str]]],
    ) -> tuple[dict[str, str], dict[str, PackageManifest], list[_Edge]]:
        constraints: dict[str, list[tuple[Constraint, str]]] = defaultdict(list)
        selected: dict[str, str] = {}
        manifests: dict[str, PackageManifest] = {}
        edges: list[_Edge] = []

        queue = deque(
            (name, raw, project.name) for name, raw in sorted(project.dependencies.items())
        )
        while queue:
            name, raw, consumer = queue.popleft()
            con = self._parse_constraint(name, raw, consumer)
            constraints[name].append((con, consumer))
            edges.append(_Edge(consumer, name, con))

            if name in selected:
                if con.matches(selected[name]):
                    continue
                self._on_conflict(name, selected[name], constraints[name], sticky)
                raise _Restart()

            version = self._pick(name, constraints[name] + sticky.get(name, []))
            selected[name] = version
            manifest = self._read_manifest(name, version)
            manifests[name] = manifest
            for dep, dep_raw in sorted(manifest.dependencies.items()):
                queue.append((dep, dep_raw, name))

        return selected, manifests, edges

    def _parse_constraint(self, name: str, raw: str, consumer: str) -> Constraint:
        try:
            return Constraint.parse(raw)
        except ValueError as e:
            raise UnresolvableVersion(name, f"{consumer} 声明的版本约束非法 {raw!r}") from e

    def _on_conflict(
        self,
        name: str,
        current: str,
        seen: list[tuple[Constraint, str]],
        sticky: dict[str, list[tuple[Constraint, str]]],
    ) -> None:
        if self.vendored:
            raise UnresolvableVersion(
                name, f"已选版本 {current} 不满足全部约束", _describe(seen),
            )
        logger.info("  约束冲突，重选: %s (当前 %s)", name, current)
        known = sticky[name]
        for item in seen:
            if item not in known:
                known.append(item)

    def _pick(self, name: str, cons: list[tuple[Constraint, str]]) -> str:
        lock = self.lockfile.get(name)
        if lock is not None and all(c.matches(lock.version) for c, _ in cons):
            return lock.version
        if self.vendored:
            if lock is None:
                raise UnresolvableVersion(name, "离线模式下该依赖未在锁文件中锁定", _describe(cons))
            raise UnresolvableVersion(
                name, f"锁定版本 {lock.version} 不满足全部约束", _describe(cons),
            )

        candidates = self.index.list_versions(name)
        version = best_match(candidates, [c for c, _ in cons])
        if version is None:
            raise UnresolvableVersion(
                name, f"源码索引中没有满足全部约束的版本 (可用: {candidates or '无'})",
                _describe(cons),
            )
        if lock is not None:
            logger.warning("  锁定版本 %s@%s 不满足新约束，在线模式改选 %s", name, lock.version, version)
        return version

    def _read_manifest(self, name: str, version: str) -> PackageManifest:
        """依赖自身清单: 本地存储 → 源码索引 → （url 来源）下载入库后读取"""
        manifest = self.store.read_manifest(name, version)
        if manifest is not None:
            return manifest
        if self.index.has(name, version):
            return self.index.read_manifest(name, version)

        lock = self.lockfile.get(name)
        if lock is not None and lock.version == version and lock.source == "url":
            self._install(name, version, lock.checksum, lock)
            manifest = self.store.read_manifest(name, version)
            if manifest is not None:
                return manifest
        raise PartialGraph(name, version, "本地存储与源码索引中均不存在")

    # ------------------------------------------------------------------
    # 依赖环
    # ------------------------------------------------------------------

    def _check_cycles(self, root: str, edges: list[_Edge]) -> None:
        graph: dict[str, set[str]] = defaultdict(set)
        for e in edges:
            if e.consumer != root:
                graph[e.consumer].add(e.name)

        for component in _strongly_connected(graph):
            members = set(component)
            inner = [e for e in edges if e.consumer in members and e.name in members]
            is_cycle = len(members) > 1 or any(e.consumer == e.name for e in inner)
            if not is_cycle:
                continue
            cycle = " -> ".join(sorted(members))
            if all(e.constraint.is_exact for e in inner):
                raise UnresolvableVersion(sorted(members)[0], f"硬锁依赖环: {cycle}")
            unlocked = sorted(m for m in members if m not in self.lockfile)
            if unlocked:
                raise UnresolvableVersion(
                    unlocked[0], f"依赖环 {cycle} 中存在未锁定的依赖 ({', '.join(unlocked)})，拒绝猜测版本",
                )
            logger.info("  依赖环已由锁文件确定版本: %s", cycle)

    # ------------------------------------------------------------------
    # 离线化入库
    # ------------------------------------------------------------------

    def _install(self, name: str, version: str, expected: str, lock: LockEntry | None) -> str:
        with self.store.staging() as staged:
            self.index.stage(name, version, staged, lock)
            checksum = self.store.install(name, version, staged, expected)
        self._fresh.add((name, version))
        return checksum

    def _materialize(
        self,
        name: str,
        version: str,
        manifest: PackageManifest,
        report: ResolutionReport,
    ) -> DependencyRef:
        lock = self.lockfile.get(name)
        pinned = lock if lock is not None and lock.version == version else None
        expected = pinned.checksum if pinned else ""
        label = f"{name}@{version}"

        if (name, version) in self._fresh:
            checksum = self.store.digest(name, version)
            report.added.append(label)
        elif self.store.entry_path(name, version).is_dir():
            checksum = self._verify_existing(name, version, expected)
            report.unchanged.append(label)
        else:
            checksum = self._install(name, version, expected, pinned or lock)
            report.added.append(label)

        license_id = manifest.license or (pinned.license if pinned else "")
        if pinned is None or pinned.checksum != checksum or (license_id and not pinned.license):
            self.lockfile.entries[name] = LockEntry(
                name=name,
                version=version,
                checksum=checksum,
                license=license_id,
                source=pinned.source if pinned else "index",
                url=pinned.url if pinned else "",
            )
            report.lock_updated = True

        return DependencyRef(
            name=name,
            version=version,
            checksum=checksum,
            dependencies=tuple(sorted(manifest.dependencies.items())),
            license=license_id,
        )

    def _verify_existing(self, name: str, version: str, expected: str) -> str:
        """已入库条目: 摘要必须等于锁定值（或入库时记录的值），否则视为信任失败"""
        recorded = self.store.recorded_checksum(name, version)
        actual = self.store.digest(name, version)
        reference = expected or recorded
        if not reference:
            raise ChecksumMismatch(name, version, "(缺少校验和记录)", actual)
        if actual != reference:
            raise ChecksumMismatch(name, version, reference, actual)
        if recorded != actual:
            # 元数据缺失或过期，源码树本身与锁定值一致
            self.store.install_meta(name, version, actual)
        return actual

    # ------------------------------------------------------------------
    # 与上一次快照比较 / 清理
    # ------------------------------------------------------------------

    def _diff_previous(
        self, snapshot: VendorSnapshot, edges: list[_Edge], report: ResolutionReport,
    ) -> None:
        previous = self.store.load_snapshot()
        if previous is None:
            return
        before = {r.name: r.version for r in previous.refs}
        replaced = sorted(
            r.name for r in snapshot.refs if r.name in before and before[r.name] != r.version
        )
        report.replaced = replaced
        if not replaced:
            return

        consumers: dict[str, set[str]] = defaultdict(set)
        for e in edges:
            if e.consumer != snapshot.project:
                consumers[e.name].add(e.consumer)
        invalidated: set[str] = set()
        queue = deque(replaced)
        while queue:
            for consumer in consumers.get(queue.popleft(), ()):
                if consumer not in invalidated:
                    invalidated.add(consumer)
                    queue.append(consumer)
        report.invalidated = sorted(invalidated)
        logger.info("版本替换: %s; 受影响的下游: %s", replaced, report.invalidated or "无")

    def _prune(self, snapshot: VendorSnapshot, report: ResolutionReport) -> None:
        keep = {r.dir_name for r in snapshot.refs}
        for dir_name in self.store.entries():
            if dir_name not in keep:
                self.store.remove(dir_name)
                report.removed.append(dir_name)


def _describe(cons: list[tuple[Constraint, str]]) -> list[str]:
    return [f"{c} (来自 {consumer})" for c, consumer in cons]


def _strongly_connected(graph: dict[str, set[str]]) -> list[list[str]]:
    """Tarjan 强连通分量"""
    index_of: dict[str, int] = {}
    low: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    result: list[list[str]] = []
    counter = 0

    def visit(node: str) -> None:
        nonlocal counter
        index_of[node] = low[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        for nxt in sorted(graph.get(node, ())):
            if nxt not in index_of:
                visit(nxt)
                low[node] = min(low[node], low[nxt])
            elif nxt in on_stack:
                low[node] = min(low[node], index_of[nxt])
        if low[node] == index_of[node]:
            component = []
            while True:
                top = stack.pop()
                on_stack.discard(top)
                component.append(top)
                if top == node:
                    break
            result.append(component)

    for node in sorted(graph):
        if node not in index_of:
            visit(node)
    return result
