"""确定性归档工具

write_deterministic_tarball 产出的 .tar.gz 只取决于文件路径、内容与可执行位:
gzip 头 mtime=0、条目按名称排序、uid/gid 置 0、属主名置空、权限归一化。
同一输入两次打包逐字节相同，校验和可跨机器复现。
"""

from __future__ import annotations

import gzip
import io
import logging
import os
import tarfile
import tempfile
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
EXEC_MODE = 0o755
FILE_MODE = 0o644


def _normalized_info(name: str, *, kind: bytes, mode: int, size: int = 0) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name=name)
    info.type = kind
    info.mode = mode
    info.size = size
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info


def _collect_members(root: Path, prefix: str) -> list[tuple[str, Path]]:
    """收集归档条目 (归档内名称, 本地路径)，包含中间目录"""
    members: dict[str, Path] = {}
    if prefix:
        parts = PurePosixPath(prefix).parts
        for i in range(1, len(parts) + 1):
            members[str(PurePosixPath(*parts[:i]))] = root
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in [*dirnames, *filenames]:
            path = base / name
            rel = path.relative_to(root).as_posix()
            members[f"{prefix}/{rel}" if prefix else rel] = path
    return sorted(members.items())


def write_deterministic_tarball(dest: Path, root: Path, prefix: str = "") -> Path:
    """将 root 目录打包为 dest (.tar.gz)，归档内路径统一加 prefix 前缀

    先写同目录临时文件，完成后 os.replace，避免半截归档被读取。
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(dest.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as raw:
            with gzip.GzipFile(fileobj=raw, mode="wb", mtime=0, filename="") as gz:
                with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
                    for arcname, path in _collect_members(root, prefix):
                        _add_member(tar, arcname, path, is_prefix=path == root)
        os.chmod(tmp, FILE_MODE)
        os.replace(tmp, dest)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
    logger.debug("归档已写入: %s", dest)
    return dest


def _add_member(tar: tarfile.TarFile, arcname: str, path: Path, *, is_prefix: bool) -> None:
    if path.is_symlink() and not is_prefix:
        info = _normalized_info(arcname, kind=tarfile.SYMTYPE, mode=0o777)
        info.linkname = os.readlink(path)
        tar.addfile(info)
    elif path.is_dir():
        tar.addfile(_normalized_info(arcname, kind=tarfile.DIRTYPE, mode=DIR_MODE))
    else:
        payload = path.read_bytes()
        mode = EXEC_MODE if os.access(path, os.X_OK) else FILE_MODE
        info = _normalized_info(arcname, kind=tarfile.REGTYPE, mode=mode, size=len(payload))
        tar.addfile(info, io.BytesIO(payload))


def safe_extract(archive: Path, dest: Path) -> None:
    """解压 .tar.gz 到 dest，拒绝绝对路径、路径穿越与链接条目"""
    dest.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, mode="r:gz") as tar:
        members = tar.getmembers()
        for m in members:
            name = PurePosixPath(m.name)
            if name.is_absolute() or ".." in name.parts:
                raise ValueError(f"归档条目路径非法: {m.name} ({archive})")
            if m.issym() or m.islnk() or m.isdev():
                raise ValueError(f"归档包含不支持的条目类型: {m.name} ({archive})")
        for m in members:
            target = dest / m.name
            if m.isdir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            source = tar.extractfile(m)
            if source is None:
                continue
            with source, open(target, "wb") as out:
                out.write(source.read())
            os.chmod(target, EXEC_MODE if m.mode & 0o111 else FILE_MODE)
