"""构建调度器 - 管理平台构建任务的并行执行

每个任务一个 worker，所有任务到达终态后才返回（屏障），结果顺序与计划一致。
取消信号只影响尚未开始的任务；已在运行的任务正常完成，其结果由聚合阶段丢弃。
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

from releasepipe.core.models import BuildJob, BuildOutcome

logger = logging.getLogger(__name__)

CANCELLED_REASON = "已取消"


class JobRunner(Protocol):
    def run(self, job: BuildJob) -> BuildOutcome: ...


class BuildScheduler:
    """可配置并行度的构建调度器"""

    def __init__(self, runner: JobRunner, max_workers: int = 4) -> None:
        self.runner = runner
        self.max_workers = max(1, max_workers)

    def _execute_one(self, job: BuildJob, cancel_event: threading.Event | None) -> BuildOutcome:
        if cancel_event is not None and cancel_event.is_set():
            reason = f"[{job.platform}] {CANCELLED_REASON}"
            job.fail(reason)
            logger.warning("跳过: %s (已取消)", job.platform)
            return BuildOutcome(job=job, error=reason)
        return self.runner.run(job)

    def run_all(
        self,
        jobs: list[BuildJob],
        cancel_event: threading.Event | None = None,
    ) -> list[BuildOutcome]:
        """并行执行全部构建任务，返回结果与输入顺序一致"""
        if not jobs:
            return []
        workers = min(self.max_workers, len(jobs))
        logger.info("派发 %d 个构建任务 (并行度 %d)", len(jobs), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="build") as pool:
            futures = [pool.submit(self._execute_one, j, cancel_event) for j in jobs]
            outcomes = []
            for job, future in zip(jobs, futures):
                outcome = future.result()
                logger.info("完成: %s -> %s", job.platform, job.status.value)
                outcomes.append(outcome)
        return outcomes


def is_cancelled(outcome: BuildOutcome) -> bool:
    return outcome.error.endswith(CANCELLED_REASON)
