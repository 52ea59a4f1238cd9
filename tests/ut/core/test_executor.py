"""单平台构建执行与并行调度测试"""

from __future__ import annotations

import tarfile
import threading
from pathlib import Path

import pytest

from releasepipe.core.dep.models import ProjectSpec
from releasepipe.core.executor import PlatformBuildExecutor
from releasepipe.core.models import BuildJob, BuildOutcome, JobStatus, PlatformSpec
from releasepipe.core.scheduler import BuildScheduler
from releasepipe.utils.hashing import sha256_file
from releasepipe.utils.shell import CommandResult


def _project() -> ProjectSpec:
    return ProjectSpec(
        name="clevis-pin-trustee",
        version="0.1.0",
        platforms={"epel-9-x86_64": PlatformSpec("epel-9-x86_64", "sh", "sh build.sh", "out/clevis-pin-trustee")},
    )


def _job(tmp_path: Path, platform: str = "epel-9-x86_64", **kwargs) -> BuildJob:
    values = {
        "toolchain": "sh",
        "build_cmd": "sh build.sh",
        "binary_path": "out/clevis-pin-trustee",
        "snapshot_ref": "deadbeef",
        "output_path": str(tmp_path / "dist" / "v0.1.0" / platform),
    }
    values.update(kwargs)
    return BuildJob(platform=platform, **values)


def _executor(ws, **kwargs) -> PlatformBuildExecutor:
    ws.vendor.mkdir(exist_ok=True)
    return PlatformBuildExecutor(
        _project(), "0.1.0",
        source_dir=ws.root, vendor_dir=ws.vendor, work_root=ws.root / "build" / "work",
        **kwargs,
    )


class TestPlatformBuildExecutor:
    def test_success(self, ws, tmp_path: Path) -> None:
        job = _job(tmp_path)
        outcome = _executor(ws).run(job)

        assert outcome.succeeded, outcome.error
        assert job.status is JobStatus.SUCCEEDED
        archive = Path(outcome.artifact.archive_path)
        assert archive.name == "clevis-pin-trustee-0.1.0-epel-9-x86_64.tar.gz"
        assert outcome.artifact.checksum == sha256_file(archive)
        sidecar = archive.with_name(archive.name + ".sha256")
        assert sidecar.read_text() == f"{outcome.artifact.checksum}  {archive.name}\n"

        with tarfile.open(archive) as tar:
            members = {m.name: m for m in tar.getmembers()}
            binary = tar.extractfile("clevis-pin-trustee-0.1.0/bin/clevis-pin-trustee").read()
        assert binary == b"binary for epel-9-x86_64\n"
        for name in ("clevis-pin-trustee", "clevis-encrypt-trustee", "clevis-decrypt-trustee"):
            assert members[f"clevis-pin-trustee-0.1.0/bin/{name}"].mode == 0o755
        # 工作目录已清理
        assert list((ws.root / "build" / "work").iterdir()) == []

    def test_vendored_writes_cargo_config(self, ws, tmp_path: Path) -> None:
        (ws.root / "build.sh").write_text(
            "set -e\nmkdir -p out\ncat .cargo/config.toml > out/clevis-pin-trustee\n"
            "echo \"offline=$CARGO_NET_OFFLINE\" >> out/clevis-pin-trustee\n",
        )
        outcome = _executor(ws, vendored=True).run(_job(tmp_path))
        with tarfile.open(outcome.artifact.archive_path) as tar:
            content = tar.extractfile("clevis-pin-trustee-0.1.0/bin/clevis-pin-trustee").read().decode()
        assert 'replace-with = "vendored-sources"' in content
        assert f'directory = "{ws.vendor.resolve().as_posix()}"' in content
        assert "offline=true" in content

    def test_sources_exclude_vendor_and_outputs(self, ws, tmp_path: Path) -> None:
        (ws.root / "vendor").mkdir(exist_ok=True)
        (ws.root / "vendor" / "marker").write_text("x")
        (ws.root / "build.sh").write_text(
            "set -e\nmkdir -p out\nls > out/clevis-pin-trustee\n",
        )
        outcome = _executor(ws, vendored=False).run(_job(tmp_path))
        with tarfile.open(outcome.artifact.archive_path) as tar:
            listing = tar.extractfile("clevis-pin-trustee-0.1.0/bin/clevis-pin-trustee").read().decode().split()
        assert "vendor" not in listing and "build" not in listing
        assert "build.sh" in listing

    def test_missing_toolchain(self, ws, tmp_path: Path) -> None:
        job = _job(tmp_path, toolchain=ws.missing_toolchain)
        outcome = _executor(ws).run(job)
        assert not outcome.succeeded
        assert job.status is JobStatus.FAILED
        assert "epel-9-x86_64" in outcome.error and ws.missing_toolchain in outcome.error

    def test_build_command_fails(self, ws, tmp_path: Path) -> None:
        job = _job(tmp_path, build_cmd="sh -c 'echo boom >&2; exit 3'")
        outcome = _executor(ws).run(job)
        assert job.status is JobStatus.FAILED
        assert "epel-9-x86_64" in outcome.error and "rc=3" in outcome.error and "boom" in outcome.error

    def test_non_utf8_output_does_not_break_build(self, ws, tmp_path: Path) -> None:
        (ws.root / "noisy.sh").write_text("printf '\\377\\376 warning\\n' >&2\n" + (ws.root / "build.sh").read_text())
        outcome = _executor(ws).run(_job(tmp_path, build_cmd="sh noisy.sh"))
        assert outcome.succeeded, outcome.error

    def test_non_utf8_stderr_in_failure_message(self, ws, tmp_path: Path) -> None:
        job = _job(tmp_path, build_cmd=r"""sh -c "printf '\377\376 boom' >&2; exit 1" """)
        outcome = _executor(ws).run(job)
        assert job.status is JobStatus.FAILED
        assert "rc=1" in outcome.error and "boom" in outcome.error

    def test_malformed_build_command(self, ws, tmp_path: Path) -> None:
        job = _job(tmp_path, build_cmd="sh -c 'unterminated")
        outcome = _executor(ws).run(job)
        assert job.status is JobStatus.FAILED
        assert outcome.error.startswith("[epel-9-x86_64]")

    def test_unexpected_executor_error(self, ws, tmp_path: Path) -> None:
        class BrokenExecutor:
            def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:
                raise RuntimeError("executor crashed")

        job = _job(tmp_path)
        outcome = _executor(ws, executor=BrokenExecutor()).run(job)
        assert job.status is JobStatus.FAILED
        assert "RuntimeError: executor crashed" in outcome.error

    def test_missing_aux_file(self, ws, tmp_path: Path) -> None:
        (ws.root / "clevis-decrypt-trustee").unlink()
        outcome = _executor(ws).run(_job(tmp_path))
        assert not outcome.succeeded
        assert "clevis-decrypt-trustee" in outcome.error

    def test_injected_executor(self, ws, tmp_path: Path) -> None:
        calls = []

        class FakeExecutor:
            def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:
                calls.append((cmd, timeout, env.get("RELEASEPIPE_PLATFORM")))
                out = Path(cwd) / "out"
                out.mkdir()
                (out / "clevis-pin-trustee").write_text("fake\n")
                return CommandResult(0, "", "")

        outcome = _executor(ws, executor=FakeExecutor(), timeout=42).run(_job(tmp_path))
        assert outcome.succeeded
        assert calls == [("sh build.sh", 42, "epel-9-x86_64")]

    def test_same_inputs_same_checksum(self, ws, tmp_path: Path) -> None:
        a = _executor(ws).run(_job(tmp_path / "a"))
        b = _executor(ws).run(_job(tmp_path / "b"))
        assert a.artifact.checksum == b.artifact.checksum


class TestBuildScheduler:
    def test_failure_isolated_and_order_kept(self, ws, tmp_path: Path) -> None:
        jobs = [
            _job(tmp_path, "epel-9-x86_64"),
            _job(tmp_path, "epel-9-aarch64", toolchain=ws.missing_toolchain),
            _job(tmp_path, "epel-10-x86_64"),
        ]
        outcomes = BuildScheduler(_executor(ws), max_workers=3).run_all(jobs)
        assert [o.job.platform for o in outcomes] == ["epel-9-x86_64", "epel-9-aarch64", "epel-10-x86_64"]
        assert [o.succeeded for o in outcomes] == [True, False, True]
        assert all(j.status.terminal for j in jobs)

    def test_cancel_skips_pending(self, tmp_path: Path) -> None:
        cancel = threading.Event()

        class Runner:
            def run(self, job: BuildJob) -> BuildOutcome:
                job.start()
                cancel.set()
                job.succeed()
                return BuildOutcome(job=job)

        jobs = [_job(tmp_path, f"p{i}") for i in range(3)]
        outcomes = BuildScheduler(Runner(), max_workers=1).run_all(jobs, cancel)
        assert jobs[0].status is JobStatus.SUCCEEDED
        assert [j.status for j in jobs[1:]] == [JobStatus.FAILED, JobStatus.FAILED]
        assert all("已取消" in o.error for o in outcomes[1:])

    @pytest.mark.parametrize("workers", [1, 4])
    def test_empty(self, workers: int) -> None:
        assert BuildScheduler(None, workers).run_all([]) == []
