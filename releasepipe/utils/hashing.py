"""校验和工具

- sha256_file / sha256_bytes / sha256_text: 单文件与文本摘要
- tree_digest: 源码树摘要，作为 DependencyRef 的 source checksum
- checksum_line: sha256sum 兼容的 "<hex>  <name>" 行
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Iterable
from pathlib import Path

CHUNK_SIZE = 64 * 1024


def sha256_bytes(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def sha256_file(path: str | Path) -> str:
    """分块计算文件 SHA-256"""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def iter_tree(root: Path, exclude: Iterable[str] = ()) -> list[Path]:
    """按相对路径排序列出目录下全部文件、子目录与符号链接（不含 root 本身）"""
    skipped = set(exclude)
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath)
        for name in [*dirnames, *filenames]:
            path = base / name
            if path.relative_to(root).as_posix() in skipped:
                continue
            found.append(path)
    return sorted(found, key=lambda p: p.relative_to(root).as_posix())


def tree_digest(root: str | Path, exclude: Iterable[str] = ()) -> str:
    """计算源码树摘要

    每个条目贡献一行 "<相对路径>\\0<l|d|x|->\\0<内容摘要>"，按路径排序后整体做 SHA-256。
    目录（含空目录）以 d 记入，只有路径、条目类型、可执行位与内容参与计算，
    mtime / 属主等元数据不影响结果。
    """
    base = Path(root)
    digest = hashlib.sha256()
    for path in iter_tree(base, exclude):
        rel = path.relative_to(base).as_posix()
        if path.is_symlink():
            kind, content = "l", sha256_text(os.readlink(path))
        elif path.is_dir():
            kind, content = "d", ""
        else:
            kind = "x" if os.access(path, os.X_OK) else "-"
            content = sha256_file(path)
        digest.update(f"{rel}\0{kind}\0{content}\n".encode())
    return digest.hexdigest()


def checksum_line(checksum: str, filename: str) -> str:
    """sha256sum 文本格式（两个空格分隔）"""
    return f"{checksum}  {filename}\n"
