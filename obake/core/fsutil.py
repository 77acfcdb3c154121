"""Filesystem helpers shared by the fetcher, executor and assembler."""

from __future__ import annotations

import os
import shutil
import stat
import sys
from pathlib import Path

_WRITE_BITS = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH


def make_read_only(root: Path) -> None:
    """Clear the write bits of every regular file under *root*."""
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            if not path.is_symlink():
                path.chmod(path.stat().st_mode & ~_WRITE_BITS)


def make_writable(root: Path) -> None:
    """Give the owner write permission on every regular file under *root*."""
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            if not path.is_symlink():
                path.chmod(path.stat().st_mode | stat.S_IWUSR)


def remove_tree(path: Path) -> None:
    """Delete a file or tree, including entries whose write bits were removed."""

    def _on_error(func, failed_path, _exc):
        parent = os.path.dirname(failed_path)
        os.chmod(parent, os.stat(parent).st_mode | stat.S_IWUSR)
        if not os.path.islink(failed_path) and os.path.exists(failed_path):
            os.chmod(failed_path, os.stat(failed_path).st_mode | stat.S_IWUSR)
        func(failed_path)

    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_on_error)
        else:
            shutil.rmtree(path, onerror=_on_error)
