"""Helpers for the directories where lidar log files are kept."""

from __future__ import annotations

import logging
import os
from typing import Union

logger = logging.getLogger(__name__)

TIME_KEY_LENGTH = 19

PathType = Union[str, "os.PathLike[str]"]


def dir_total_size(path: PathType) -> int:
    """Total size in bytes of a file, or of every file below a directory."""
    try:
        st = os.stat(path)
    except OSError:
        logger.error("get directory stat error: %s", path)
        return 0
    if os.path.isfile(path):
        return st.st_size
    if not os.path.isdir(path):
        logger.warning("unknown directory type: %s", path)
        return 0
    try:
        entries = os.listdir(path)
    except OSError:
        logger.error("opendir %s failed", path)
        return 0
    return sum(dir_total_size(os.path.join(path, name)) for name in entries)


def file_time_key(name: str) -> str:
    """The recording time at the start of a log file name."""
    if not name:
        raise ValueError("empty file name")
    return name[:TIME_KEY_LENGTH]


def _collect(path: PathType, found: list[tuple[str, str]]) -> None:
    with os.scandir(path) as entries:
        for entry in entries:
            if entry.is_symlink():
                continue
            if entry.is_file(follow_symlinks=False):
                if entry.name.startswith("."):
                    continue
                found.append((file_time_key(entry.name), entry.name))
            elif entry.is_dir(follow_symlinks=False):
                try:
                    _collect(entry.path, found)
                except OSError:
                    logger.error("opendir %s failed", entry.path)


def collect_file_names(path: PathType) -> list[tuple[str, str]]:
    """Visible file names below ``path`` as (time key, name) pairs, oldest first."""
    found: list[tuple[str, str]] = []
    _collect(path, found)
    return sorted(found, key=lambda pair: pair[0])


def _unhide(directory: str, name: str) -> bool:
    source = os.path.join(directory, name)
    target = os.path.join(directory, name[1:])
    if not os.path.exists(source):
        logger.warning("the file to be renamed: %s does not exist", name)
        return False
    if os.path.exists(target):
        try:
            os.remove(target)
        except OSError as exc:
            logger.warning("failed to remove the existing file %s: %s", name[1:], exc)
    try:
        os.rename(source, target)
    except OSError as exc:
        logger.warning("rename hidden file %s failed: %s", name, exc)
        return False
    return True


def change_hidden_files(path: PathType) -> list[str]:
    """Drop the leading dot of every hidden file below ``path``.

    Returns the new paths of the renamed files.
    """
    path = os.fspath(path)
    if not path:
        raise ValueError("empty directory name")
    renamed: list[str] = []
    with os.scandir(path) as entries:
        items = list(entries)
    for entry in items:
        if entry.is_symlink():
            continue
        if entry.is_file(follow_symlinks=False):
            if entry.name.startswith(".") and _unhide(path, entry.name):
                renamed.append(os.path.join(path, entry.name[1:]))
        elif entry.is_dir(follow_symlinks=False):
            try:
                renamed.extend(change_hidden_files(entry.path))
            except OSError:
                logger.error("opendir %s failed", entry.path)
    return renamed


def change_current_file_name(directory: PathType, name: str) -> bool:
    """Unhide one file in ``directory``; True when it was renamed."""
    if not name or not name.startswith("."):
        return False
    return _unhide(os.fspath(directory), name)


def delete_hidden_files(path: PathType) -> list[str]:
    """Remove every hidden file below ``path``; returns the removed paths."""
    removed: list[str] = []
    with os.scandir(path) as entries:
        items = list(entries)
    for entry in items:
        if entry.is_symlink():
            continue
        if entry.is_file(follow_symlinks=False):
            if entry.name.startswith("."):
                try:
                    os.remove(entry.path)
                    removed.append(entry.path)
                except OSError as exc:
                    logger.warning("remove %s failed: %s", entry.path, exc)
        elif entry.is_dir(follow_symlinks=False):
            try:
                removed.extend(delete_hidden_files(entry.path))
            except OSError:
                logger.error("opendir %s failed", entry.path)
    return removed


def make_directory(path: PathType) -> None:
    """Create one directory; raises OSError when it exists or can not be made."""
    os.mkdir(path, 0o777)


def directory_exists(path: PathType) -> bool:
    """Whether anything exists at ``path``."""
    return os.access(path, os.F_OK)