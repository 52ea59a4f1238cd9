"""Shell 命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，平台构建器只依赖协议，
测试时可注入替身实现，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from releasepipe.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)

# 错误消息中保留的 stderr 长度
STDERR_TAIL = 500


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    实现此协议即可替换底层执行方式（本地 shell、容器、远程构建机等）。
    超时应抛出 subprocess.TimeoutExpired。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        r = subprocess.run(
            args, capture_output=True, text=True, errors="replace",
            cwd=cwd, env=env, check=False, timeout=timeout,
        )
        return CommandResult(returncode=r.returncode, stdout=r.stdout, stderr=r.stderr)


def run_cmd(
    cmd: str | list[str],
    *,
    cwd: str = ".",
    env: dict[str, str] | None = None,
    timeout: int | None = None,
    label: str = "cmd",
    executor: CommandExecutor | None = None,
) -> CommandResult:
    """执行命令，非零退出码抛 ExecutionError

    Args:
        cmd: 命令字符串或参数列表
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        timeout: 超时秒数
        label: 日志与错误消息标签
        executor: 命令执行器，默认 LocalExecutor
    """
    runner = executor or LocalExecutor()
    logger.info("  %s: %s (cwd=%s)", label, cmd, cwd)
    r = runner.execute(cmd, cwd=cwd, env=env, timeout=timeout)
    if not r.success:
        raise ExecutionError(
            f"{label}失败 (rc={r.returncode}): {r.stderr[-STDERR_TAIL:].strip()}",
        )
    return r
