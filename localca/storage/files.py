# localca/storage/files.py
"""
Artifact writes: restrictive permissions, no silent overwrite, atomic rename.
ArtifactWriter remembers what it wrote so a failed run can report partial files.
"""
import logging
import os
import tempfile
from typing import List

from localca.common.errors import AlreadyExistsError, PersistenceError

logger = logging.getLogger(__name__)

PRIVATE_MODE = 0o400
PUBLIC_MODE = 0o644


def fsync_dir(path: str) -> None:
    dirname = os.path.dirname(os.path.abspath(path))
    try:
        fd = os.open(dirname, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # some filesystems refuse fsync on directories
        pass
    finally:
        os.close(fd)


def atomic_write(path: str, data: bytes, mode: int = PUBLIC_MODE) -> None:
    """Write data to a temp file next to path, fsync, chmod, rename over path."""
    dirname = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(dirname, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix="." + os.path.basename(path) + ".", suffix=".tmp", dir=dirname)
    except OSError as e:
        raise PersistenceError(f"cannot write {path}: {e}", path=path) from e
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise PersistenceError(f"cannot write {path}: {e}", path=path) from e
    fsync_dir(path)


def refuse_existing(paths, overwrite: bool) -> None:
    if overwrite:
        return
    for p in paths:
        if p and os.path.exists(p):
            raise AlreadyExistsError(f"{p} already exists (use --force to overwrite)", path=p)


class ArtifactWriter:
    """Collects the paths written during one operation."""

    def __init__(self, overwrite: bool = False):
        self.overwrite = overwrite
        self.written: List[str] = []

    def write(self, path: str, data: bytes, private: bool = False) -> str:
        refuse_existing([path], self.overwrite)
        if os.path.exists(path):
            logger.info("replacing existing %s", path)
        atomic_write(path, data, PRIVATE_MODE if private else PUBLIC_MODE)
        self.written.append(path)
        logger.debug("wrote %s", path)
        return path
