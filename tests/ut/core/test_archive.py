"""校验和与确定性归档测试"""

from __future__ import annotations

import io
import os
import tarfile
from pathlib import Path

import pytest

from releasepipe.utils.archive import safe_extract, write_deterministic_tarball
from releasepipe.utils.hashing import checksum_line, sha256_file, tree_digest


def _tree(root: Path) -> Path:
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "tool").write_text("#!/bin/sh\n")
    (root / "bin" / "tool").chmod(0o755)
    (root / "README").write_text("hello\n")
    return root


class TestTreeDigest:
    def test_ignores_mtime(self, tmp_path: Path) -> None:
        root = _tree(tmp_path / "t")
        before = tree_digest(root)
        os.utime(root / "README", (0, 0))
        assert tree_digest(root) == before

    def test_content_and_path_matter(self, tmp_path: Path) -> None:
        root = _tree(tmp_path / "t")
        before = tree_digest(root)
        (root / "README").write_text("changed\n")
        assert tree_digest(root) != before

    def test_empty_directory_matters(self, tmp_path: Path) -> None:
        root = _tree(tmp_path / "t")
        before = tree_digest(root)
        (root / "empty").mkdir()
        assert tree_digest(root) != before

    def test_file_and_directory_distinct(self, tmp_path: Path) -> None:
        a = tmp_path / "a"
        (a / "x").mkdir(parents=True)
        b = tmp_path / "b"
        b.mkdir()
        (b / "x").write_text("")
        assert tree_digest(a) != tree_digest(b)

    def test_exclude(self, tmp_path: Path) -> None:
        root = _tree(tmp_path / "t")
        before = tree_digest(root)
        (root / "meta.yml").write_text("x")
        assert tree_digest(root, exclude=("meta.yml",)) == before

    def test_checksum_line(self) -> None:
        assert checksum_line("ab", "x.tar.gz") == "ab  x.tar.gz\n"


class TestDeterministicTarball:
    def test_byte_identical(self, tmp_path: Path) -> None:
        root = _tree(tmp_path / "t")
        a = write_deterministic_tarball(tmp_path / "a.tar.gz", root, prefix="pkg-1.0.0")
        os.utime(root / "README", (12345, 12345))
        b = write_deterministic_tarball(tmp_path / "b.tar.gz", root, prefix="pkg-1.0.0")
        assert a.read_bytes() == b.read_bytes()
        assert sha256_file(a) == sha256_file(b)

    def test_normalized_members(self, tmp_path: Path) -> None:
        root = _tree(tmp_path / "t")
        archive = write_deterministic_tarball(tmp_path / "a.tar.gz", root, prefix="pkg-1.0.0")
        with tarfile.open(archive) as tar:
            members = {m.name: m for m in tar.getmembers()}
        assert list(members) == sorted(members)
        assert set(members) == {"pkg-1.0.0", "pkg-1.0.0/README", "pkg-1.0.0/bin", "pkg-1.0.0/bin/tool"}
        assert members["pkg-1.0.0/bin/tool"].mode == 0o755
        assert members["pkg-1.0.0/README"].mode == 0o644
        assert all(m.uid == 0 and m.gid == 0 and m.mtime == 0 for m in members.values())

    def test_safe_extract_round_trip(self, tmp_path: Path) -> None:
        root = _tree(tmp_path / "t")
        archive = write_deterministic_tarball(tmp_path / "a.tar.gz", root)
        safe_extract(archive, tmp_path / "out")
        assert (tmp_path / "out" / "README").read_text() == "hello\n"
        assert os.access(tmp_path / "out" / "bin" / "tool", os.X_OK)

    def test_safe_extract_rejects_traversal(self, tmp_path: Path) -> None:
        archive = tmp_path / "evil.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            info = tarfile.TarInfo("../escape")
            info.size = 1
            tar.addfile(info, io.BytesIO(b"x"))
        with pytest.raises(ValueError, match="路径非法"):
            safe_extract(archive, tmp_path / "out")
        assert not (tmp_path / "escape").exists()
