"""单平台构建执行

每个 BuildJob 在独立的工作目录中执行，互不共享可写状态:
  1. 检查目标平台工具链
  2. 复制项目源码到 <work_root>/<platform>-xxxx/src
  3. 离线模式下写入 .cargo/config.toml，把 crates-io 替换为本地 vendor 目录
  4. 执行平台构建命令
  5. 收集二进制与辅助脚本 -> <name>-<version>/bin/（0755）
  6. 确定性打包 <name>-<version>-<platform>.tar.gz，并写出 .sha256

构建失败从不向外抛出，只把任务标记为 Failed 并附带平台标识。
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Iterable
from pathlib import Path

from releasepipe.core.dep.models import ProjectSpec
from releasepipe.core.exceptions import BuildError, ExecutionError, MissingBuildOutput, ToolchainMissing
from releasepipe.core.models import Artifact, BuildJob, BuildOutcome
from releasepipe.core.plan import archive_name
from releasepipe.utils.archive import EXEC_MODE, write_deterministic_tarball
from releasepipe.utils.hashing import checksum_line, sha256_file
from releasepipe.utils.shell import CommandExecutor, LocalExecutor, run_cmd
from releasepipe.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

# 复制源码时跳过的顶层目录
EXCLUDED_DIRS = frozenset({".git", "target", "dist", "vendor", "build", "releases"})

CARGO_CONFIG_TEMPLATE = """\
[source.crates-io]
replace-with = "vendored-sources"

[source.vendored-sources]
directory = "{directory}"
"""


def cargo_vendor_config(directory: str) -> str:
    return CARGO_CONFIG_TEMPLATE.format(directory=directory)


class PlatformBuildExecutor:
    """单平台构建执行器，同一实例可被多个线程并发调用"""

    def __init__(
        self,
        project: ProjectSpec,
        version: str,
        *,
        source_dir: str | Path = ".",
        vendor_dir: str | Path = "vendor",
        work_root: str | Path = "build/work",
        vendored: bool = True,
        timeout: int | None = 3600,
        keep_workdirs: bool = False,
        exclude_paths: Iterable[str | Path] = (),
        executor: CommandExecutor | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.project = project
        self.version = version
        self.source_dir = Path(source_dir).resolve()
        self.vendor_dir = Path(vendor_dir).resolve()
        self.work_root = Path(work_root).resolve()
        self.vendored = vendored
        self.timeout = timeout
        self.keep_workdirs = keep_workdirs
        self.executor = executor or LocalExecutor()
        self._which = which
        self._skip = {Path(p).resolve() for p in exclude_paths} | {self.work_root, self.vendor_dir}

    @property
    def bundle_name(self) -> str:
        return f"{self.project.name}-{self.version}"

    def run(self, job: BuildJob) -> BuildOutcome:
        job.start()
        logger.info("[%s] 开始构建 (toolchain=%s)", job.platform, job.toolchain)
        try:
            artifact = self._build(job)
        except BuildError as e:
            return self._failed(job, str(e))
        except ExecutionError as e:
            return self._failed(job, f"[{job.platform}] {e}")
        except subprocess.TimeoutExpired:
            return self._failed(job, f"[{job.platform}] 构建超时（{self.timeout}秒）")
        except (OSError, ValueError) as e:
            logger.exception("[%s] 构建时出错", job.platform)
            return self._failed(job, f"[{job.platform}] {e}")
        except Exception as e:
            # 单个平台的任何异常都只记为该平台失败
            logger.exception("[%s] 构建时出现未预期的错误", job.platform)
            return self._failed(job, f"[{job.platform}] {type(e).__name__}: {e}")

        job.succeed()
        logger.info("[%s] 构建完成: %s (%s)", job.platform, artifact.archive_name, artifact.checksum[:12])
        return BuildOutcome(job=job, artifact=artifact)

    def _failed(self, job: BuildJob, reason: str) -> BuildOutcome:
        job.fail(reason)
        logger.error("构建失败 %s", reason)
        return BuildOutcome(job=job, error=reason)

    # ------------------------------------------------------------------

    def _build(self, job: BuildJob) -> Artifact:
        if self._which(job.toolchain) is None:
            raise ToolchainMissing(job.platform, job.toolchain)

        self.work_root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=f"{job.platform}-", dir=str(self.work_root)))
        try:
            src = workdir / "src"
            self._copy_sources(src)
            env = self._build_env(job, src)
            run_cmd(
                job.build_cmd, cwd=str(src), env=env, timeout=self.timeout,
                label=f"[{job.platform}] 构建", executor=self.executor,
            )
            bundle = self._collect(job, src, workdir / "bundle" / self.bundle_name)
            return self._package(job, bundle)
        finally:
            if self.keep_workdirs:
                logger.info("[%s] 保留工作目录: %s", job.platform, workdir)
            else:
                shutil.rmtree(workdir, ignore_errors=True)

    def _copy_sources(self, dest: Path) -> None:
        root = self.source_dir

        def ignore(dirpath: str, names: list[str]) -> list[str]:
            base = Path(dirpath)
            return [
                n for n in names
                if (base == root and n in EXCLUDED_DIRS) or (base / n).resolve() in self._skip
            ]

        shutil.copytree(root, dest, ignore=ignore, symlinks=True)

    def _build_env(self, job: BuildJob, src: Path) -> dict[str, str]:
        env = dict(os.environ)
        env.update(job.env)
        env["RELEASEPIPE_PLATFORM"] = job.platform
        env["RELEASEPIPE_VERSION"] = self.version
        env["RELEASEPIPE_SNAPSHOT"] = job.snapshot_ref
        if self.vendored:
            cargo_dir = src / ".cargo"
            cargo_dir.mkdir(parents=True, exist_ok=True)
            atomic_write(cargo_dir / "config.toml", cargo_vendor_config(self.vendor_dir.as_posix()))
            env["CARGO_NET_OFFLINE"] = "true"
        return env

    def _collect(self, job: BuildJob, src: Path, bundle: Path) -> Path:
        bin_dir = bundle / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)

        binary = src / job.binary_path
        if not binary.is_file():
            raise MissingBuildOutput(job.platform, f"构建产物不存在: {job.binary_path}")
        targets = [(binary, self.project.binary_name)]
        for aux in self.project.aux_files:
            path = src / aux
            if not path.is_file():
                raise MissingBuildOutput(job.platform, f"辅助文件不存在: {aux}")
            targets.append((path, Path(aux).name))

        for path, name in targets:
            dest = bin_dir / name
            shutil.copyfile(path, dest)
            os.chmod(dest, EXEC_MODE)
        return bundle

    def _package(self, job: BuildJob, bundle: Path) -> Artifact:
        archive = Path(job.output_path) / archive_name(self.project.name, self.version, job.platform)
        write_deterministic_tarball(archive, bundle, prefix=self.bundle_name)
        checksum = sha256_file(archive)
        atomic_write(archive.with_name(archive.name + ".sha256"), checksum_line(checksum, archive.name))
        return Artifact(
            platform=job.platform,
            archive_path=str(archive),
            checksum=checksum,
            size=archive.stat().st_size,
        )
