"""
Filesystem helpers for the retention safe.

Copying with an explicit modification time, tolerant deletion and the
naming scheme of table and copy files live here.
"""

import hashlib
import os
import shutil
from pathlib import Path
from typing import Optional, Tuple

from layersafe.storage.safe_errors import SafeIOError

TOKEN_LENGTH = 16
NAME_SEPARATOR = " -- "
TABLE_SUFFIX = ".ftab"
COPY_SUFFIX = ".dat"
MAX_NAME_LENGTH = 40


def canonical_path(path) -> Path:
    """Absolute, symlink-resolved form of a path used as tracking identity."""
    return Path(os.path.expanduser(str(path))).resolve()


def storage_token(source_path: Path) -> str:
    """Short deterministic digest of a source path."""
    digest = hashlib.sha256(str(source_path).encode("utf-8")).hexdigest()
    return digest[:TOKEN_LENGTH]


def abbreviate(name: str, limit: int = MAX_NAME_LENGTH) -> str:
    """Shorten a file name to at most ``limit`` characters, keeping its tail."""
    if len(name) <= limit:
        return name
    return "~" + name[-(limit - 1):]


def table_file_name(token: str, source_path: Path) -> str:
    return f"{token}{NAME_SEPARATOR}{abbreviate(source_path.name)}{TABLE_SUFFIX}"


def copy_file_name(token: str, time_ms: int) -> str:
    return f"{token}{NAME_SEPARATOR}{time_ms}{COPY_SUFFIX}"


def parse_copy_file_name(name: str) -> Optional[Tuple[str, int]]:
    """Split a copy file name into (token, millis); None if it is not one."""
    if not name.endswith(COPY_SUFFIX):
        return None
    stem = name[:-len(COPY_SUFFIX)]
    token, sep, millis = stem.partition(NAME_SEPARATOR)
    if not sep or not millis.isdigit():
        return None
    return token, int(millis)


def copy_with_mtime(source: Path, target: Path, time_ms: int) -> None:
    """
    Copy the bytes of ``source`` to ``target`` and stamp ``target`` with the
    given epoch-millisecond modification time.
    """
    if not source.is_file():
        raise SafeIOError(f"source file is not readable: {source}")
    try:
        shutil.copyfile(source, target)
        ns = time_ms * 1_000_000
        os.utime(target, ns=(ns, ns))
    except OSError as e:
        raise SafeIOError(f"failed to copy {source} to {target}: {e}") from e


def delete_file(path: Path) -> bool:
    """Delete a file; returns False when it did not exist."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise SafeIOError(f"failed to delete {path}: {e}") from e


def file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0
