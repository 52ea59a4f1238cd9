"""shell.py run_cmd 单元测试"""

from __future__ import annotations

import os
import subprocess

import pytest

from releasepipe.core.exceptions import ExecutionError
from releasepipe.utils.shell import CommandResult, LocalExecutor, run_cmd


class TestRunCmd:
    def test_success(self, tmp_path) -> None:
        r = run_cmd("echo hello", cwd=str(tmp_path), label="test")
        assert r.success
        assert "hello" in r.stdout

    def test_failure_carries_label_and_stderr(self, tmp_path) -> None:
        with pytest.raises(ExecutionError, match=r"cargo build失败 \(rc=2\): no toolchain"):
            run_cmd(["sh", "-c", "echo 'no toolchain' >&2; exit 2"], cwd=str(tmp_path), label="cargo build")

    def test_env_passed(self, tmp_path) -> None:
        env = {**os.environ, "CARGO_NET_OFFLINE": "true"}
        r = run_cmd("env", cwd=str(tmp_path), env=env, label="env_test")
        assert "CARGO_NET_OFFLINE=true" in r.stdout

    def test_timeout(self, tmp_path) -> None:
        with pytest.raises(subprocess.TimeoutExpired):
            LocalExecutor().execute("sleep 5", cwd=str(tmp_path), timeout=1)

    def test_injected_executor(self) -> None:
        class Recorder:
            def __init__(self) -> None:
                self.calls = []

            def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:
                self.calls.append(cmd)
                return CommandResult(0, "ok", "")

        rec = Recorder()
        assert run_cmd("make release", executor=rec).stdout == "ok"
        assert rec.calls == ["make release"]
