"""命令行接口测试 - 输出与退出码"""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from releasepipe import __version__
from releasepipe.cli import main


def _invoke(ws, *args: str):
    return CliRunner().invoke(main, [*args, "--config", str(ws.config_file)])


class TestCommands:
    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_vendor_verify_manifest(self, ws) -> None:
        result = _invoke(ws, "vendor")
        assert result.exit_code == 0, result.output
        assert "2 个依赖" in result.output

        assert _invoke(ws, "verify").exit_code == 0

        text = _invoke(ws, "manifest", "--format", "text")
        assert text.exit_code == 0
        assert "serde_derive 1.0.210 MIT OR Apache-2.0" in text.output

    def test_plan_is_dry(self, ws) -> None:
        assert _invoke(ws, "vendor").exit_code == 0
        result = _invoke(ws, "plan", "--platform", "epel-9-x86_64")
        assert result.exit_code == 0, result.output
        assert "epel-9-x86_64" in result.output and "epel-9-aarch64" not in result.output
        assert not (ws.root / "dist").exists()

    def test_release_dry_run_without_publish(self, ws) -> None:
        result = _invoke(ws, "release")
        assert result.exit_code == 0, result.output
        assert "pending" in result.output
        assert not (ws.root / "releases").exists()

    def test_release_publish_and_list(self, ws) -> None:
        result = _invoke(ws, "release", "--publish")
        assert result.exit_code == 0, result.output
        assert "published: v0.1.0" in result.output

        listing = _invoke(ws, "releases")
        assert listing.exit_code == 0
        assert "v0.1.0" in listing.output

    def test_source_archive(self, ws) -> None:
        assert _invoke(ws, "vendor").exit_code == 0
        result = _invoke(ws, "source-archive")
        assert result.exit_code == 0, result.output
        assert "clevis-pin-trustee-0.1.0-vendor.tar.gz" in result.output


class TestExitCodes:
    @pytest.mark.parametrize("args", [
        ("release", "--version", "0.1.0"),
        ("release", "--version", "v9.9.9"),
        ("release", "--platform", "epel-8-x86_64"),
    ])
    def test_validation_error_exit_1(self, ws, args) -> None:
        result = _invoke(ws, *args)
        assert result.exit_code == 1
        assert "错误 [" in result.output

    def test_resolution_error_exit_1(self, ws) -> None:
        ws.write_project({"missing-crate": "1"})
        result = _invoke(ws, "vendor")
        assert result.exit_code == 1
        assert "missing-crate" in result.output

    def test_incomplete_release_exit_2(self, ws) -> None:
        ws.write_project({"serde": "^1.0"}, platforms={
            "epel-9-x86_64": ws.platform(),
            "epel-9-aarch64": ws.platform(build_cmd="sh -c 'exit 1'"),
        })
        result = _invoke(ws, "release", "--publish")
        assert result.exit_code == 2
        assert "epel-9-aarch64" in result.output

    def test_immutability_violation_exit_3(self, ws) -> None:
        assert _invoke(ws, "release", "--publish").exit_code == 0
        (ws.root / "build.sh").write_text("set -e\nmkdir -p out\necho other > out/clevis-pin-trustee\n")
        result = _invoke(ws, "release", "--publish")
        assert result.exit_code == 3
        assert "v0.1.0" in result.output

    def test_env_output_root_override(self, ws, monkeypatch) -> None:
        monkeypatch.setenv("RELEASEPIPE_OUTPUT_ROOT", "out-override")
        result = _invoke(ws, "release", "--publish")
        assert result.exit_code == 0, result.output
        assert (ws.root / "out-override" / "v0.1.0" / "epel-9-x86_64").is_dir()

    def test_env_vendored_requires_lock(self, ws, monkeypatch) -> None:
        monkeypatch.setenv("RELEASEPIPE_VENDORED", "1")
        result = _invoke(ws, "vendor")
        assert result.exit_code == 1
        assert "锁文件" in result.output

