# core/file_ops.py
"""Atomic writes, file identity and best-effort removal.

Everything that replaces a file on disk (rated images, thumbnails, sidecars,
the metadata cache) goes through ``atomic_write`` so readers only ever see the
old or the new content.
"""
import logging
import os
import shutil
import tempfile
from typing import Iterable, Optional

from core.errors import ImageIOError
from core.models import ImageFileIdentity

logger = logging.getLogger(__name__)


def file_identity(path: str) -> ImageFileIdentity:
    """Size and nanosecond mtime of path. Raises ImageIOError if it cannot be stat'ed."""
    try:
        st = os.stat(path)
    except OSError as e:
        raise ImageIOError(f"Cannot stat {path}: {e}") from e
    return ImageFileIdentity(path=path, file_size=st.st_size, modified_time=st.st_mtime_ns)


def atomic_write(path: str, data: bytes, copy_mode_from: Optional[str] = None) -> None:
    """Write data to a temp file in the target directory, then rename it over path.

    ``copy_mode_from`` copies permission bits from an existing file (normally
    path itself) onto the replacement.
    """
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if copy_mode_from is not None:
            shutil.copymode(copy_mode_from, tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        # why: also covers cancellation so no .tmp- files are left behind
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def remove_files(paths: Iterable[str]) -> int:
    """Remove every path, returning how many were deleted.

    Failures are logged and skipped.
    """
    removed = 0
    for path in paths:
        try:
            os.remove(path)
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
    return removed
