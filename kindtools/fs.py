"""Host filesystem helpers that keep paths usable as container mounts."""

from __future__ import annotations

import os
import posixpath
import shutil
import stat
import sys
import tempfile


def temp_dir(dir: str | None = None, prefix: str = "") -> str:
    """Create a temporary directory whose path can be mounted into containers.

    On macOS a path under ``/var/`` is given as its ``/private/var/`` equivalent.
    """
    name = tempfile.mkdtemp(prefix=prefix, dir=dir or None)
    if sys.platform == "darwin" and name.startswith("/var/"):
        name = os.path.join("/private", name.lstrip("/"))
    return name


def is_abs(host_path: str) -> bool:
    """Report whether a path is absolute, counting POSIX absolute paths on any host."""
    return posixpath.isabs(host_path) or os.path.isabs(host_path)


def copy(src: str, dst: str) -> None:
    """Recursively copy files, directories and symlink targets from src to dst.

    Parent directories of dst are created; file modes are kept and symlinks
    are followed, like ``cp -r``.
    """
    info = os.lstat(src)
    os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
    _copy(src, dst, info)


def copy_file(src: str, dst: str) -> None:
    """Copy a single file from src to dst, keeping its mode."""
    _copy_file(src, dst, os.stat(src))


def _copy(src: str, dst: str, info: os.stat_result) -> None:
    if stat.S_ISLNK(info.st_mode):
        _copy_symlink(src, dst)
    elif stat.S_ISDIR(info.st_mode):
        _copy_dir(src, dst, info)
    else:
        _copy_file(src, dst, info)


def _copy_file(src: str, dst: str, info: os.stat_result) -> None:
    with open(src, "rb") as source:
        fd = os.open(dst, os.O_RDWR | os.O_CREAT | os.O_TRUNC, stat.S_IMODE(info.st_mode))
        with os.fdopen(fd, "wb") as target:
            shutil.copyfileobj(source, target)
            target.flush()
            os.fsync(target.fileno())


def _copy_symlink(src: str, dst: str) -> None:
    real_src = os.path.realpath(src, strict=True)
    _copy(real_src, dst, os.lstat(real_src))


def _copy_dir(src: str, dst: str, info: os.stat_result) -> None:
    os.makedirs(dst, mode=stat.S_IMODE(info.st_mode), exist_ok=True)
    with os.scandir(src) as it:
        entries = sorted(it, key=lambda entry: entry.name)
    for entry in entries:
        _copy(
            os.path.join(src, entry.name),
            os.path.join(dst, entry.name),
            entry.stat(follow_symlinks=False),
        )