"""测试共享 fixture — 临时工作区

工作区布局（全部位于 tmp_path/proj 下）:

  releasepipe.yml        配置文件
  release/project.yml    项目描述（依赖 + 平台）
  release/lock.yml       锁文件
  vendor-index/<name>/<version>/package.yml   本地源码镜像
  build.sh               用 sh 充当编译工具链，产出 out/clevis-pin-trustee
  clevis-encrypt-trustee / clevis-decrypt-trustee   辅助脚本
"""

from __future__ import annotations

import io
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
import yaml

from releasepipe.core.config import Config, reset_config
from releasepipe.services.release_service import ReleaseService
from releasepipe.utils.archive import write_deterministic_tarball
from releasepipe.utils.hashing import tree_digest
from releasepipe.utils.logger import reset_logging

PACKAGE = "clevis-pin-trustee"
VERSION = "0.1.0"
MISSING_TOOLCHAIN = "releasepipe-no-such-toolchain"

BUILD_SCRIPT = """\
set -e
mkdir -p out
printf 'binary for %s\\n' "$RELEASEPIPE_PLATFORM" > out/clevis-pin-trustee
"""


def write_yaml(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data, allow_unicode=True, sort_keys=False))
    return path


def make_package(
    index: Path,
    name: str,
    version: str,
    deps: dict[str, str] | None = None,
    license: str = "MIT",
    files: dict[str, str] | None = None,
) -> Path:
    """在源码索引中创建一个依赖源码树"""
    tree = index / name / version
    write_yaml(tree / "package.yml", {
        "name": name,
        "version": version,
        "license": license,
        "dependencies": deps or {},
    })
    for rel, content in (files or {"src/lib.rs": f"// {name} {version}\n"}).items():
        p = tree / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content)
    return tree


@dataclass
class Workspace:
    root: Path

    package = PACKAGE
    version = VERSION
    missing_toolchain = MISSING_TOOLCHAIN

    @staticmethod
    def platform(*, toolchain: str = "sh", build_cmd: str = "sh build.sh") -> dict[str, Any]:
        return {
            "toolchain": toolchain,
            "build_cmd": build_cmd,
            "binary_path": "out/clevis-pin-trustee",
        }

    @property
    def index(self) -> Path:
        return self.root / "vendor-index"

    @property
    def vendor(self) -> Path:
        return self.root / "vendor"

    @property
    def config_file(self) -> Path:
        return self.root / "releasepipe.yml"

    @property
    def project_file(self) -> Path:
        return self.root / "release" / "project.yml"

    @property
    def lock_file(self) -> Path:
        return self.root / "release" / "lock.yml"

    def add_package(self, name: str, version: str, **kwargs: Any) -> Path:
        return make_package(self.index, name, version, **kwargs)

    def write_project(
        self,
        dependencies: dict[str, str] | None = None,
        platforms: dict[str, dict] | None = None,
        version: str = VERSION,
    ) -> None:
        if platforms is None:
            platforms = {p: self.platform() for p in ("epel-9-x86_64", "epel-9-aarch64")}
        write_yaml(self.project_file, {
            "project": {"name": PACKAGE, "version": version},
            "dependencies": dependencies or {},
            "platforms": platforms,
        })

    def write_lock(self, packages: dict[str, dict]) -> None:
        write_yaml(self.lock_file, {"version": 1, "packages": packages})

    def read_lock(self) -> dict:
        return yaml.safe_load(self.lock_file.read_text())

    def config(self, **overrides: Any) -> Config:
        values = {"vendored": False, "max_workers": 2, "build_timeout": 60}
        values.update(overrides)
        return Config(**values)

    def service(self, **overrides: Any) -> ReleaseService:
        return ReleaseService(self.config(**overrides), base_dir=self.root)


@pytest.fixture
def ws(tmp_path: Path) -> Workspace:
    """带源码、构建脚本与两个依赖的工作区（在线解析模式）"""
    root = tmp_path / "proj"
    root.mkdir()
    (root / "build.sh").write_text(BUILD_SCRIPT)
    for aux in ("clevis-encrypt-trustee", "clevis-decrypt-trustee"):
        (root / aux).write_text("#!/bin/sh\nexec clevis-pin-trustee \"$@\"\n")
    (root / "src").mkdir()
    (root / "src" / "main.rs").write_text("fn main() {}\n")

    w = Workspace(root)
    w.add_package("serde", "1.0.100", deps={"serde_derive": "^1.0"})
    w.add_package("serde", "1.0.200", deps={"serde_derive": "^1.0"})
    w.add_package("serde_derive", "1.0.150", license="MIT OR Apache-2.0")
    w.add_package("serde_derive", "1.0.210", license="MIT OR Apache-2.0")
    w.write_project({"serde": "^1.0"})
    write_yaml(w.config_file, {"vendored": False, "max_workers": 2, "build_timeout": 60})
    return w


@dataclass
class RemoteArchives:
    """替换 urlopen 的远程源码归档，url -> .tar.gz 字节"""

    root: Path
    base_url: str = "https://crates.example.com"

    def __post_init__(self) -> None:
        self.archives: dict[str, bytes] = {}
        self.requested: list[str] = []

    def publish(self, name: str, version: str, **kwargs: Any) -> str:
        """生成单顶层目录的源码归档，返回源码树摘要"""
        tree = make_package(self.root / "src", name, version, **kwargs)
        archive = write_deterministic_tarball(
            self.root / "dl" / f"{name}-{version}.tar.gz", tree, prefix=f"{name}-{version}",
        )
        self.archives[f"{self.base_url}/{name}/{name}-{version}.tar.gz"] = archive.read_bytes()
        return tree_digest(tree)

    def template(self) -> str:
        return f"{self.base_url}/{{name}}/{{name}}-{{version}}.tar.gz"

    def urlopen(self, url: str, timeout: float | None = None) -> io.BytesIO:
        self.requested.append(url)
        if url not in self.archives:
            raise urllib.error.URLError(f"404 {url}")
        return io.BytesIO(self.archives[url])


@pytest.fixture
def remote(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RemoteArchives:
    """urllib.request.urlopen 指向内存中的归档"""
    archives = RemoteArchives(tmp_path / "remote")
    monkeypatch.setattr(urllib.request, "urlopen", archives.urlopen)
    return archives


@pytest.fixture(autouse=True)
def _clean_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()
