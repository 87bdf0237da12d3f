"""State file I/O: readers never observe a half-written document."""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path


def write_text_atomic(path: str | Path, text: str) -> Path:
    """Replace ``path`` with ``text``, creating parent directories as needed.

    The text lands in a sibling temp file that is fsynced and then renamed over
    the target, so a crash leaves either the old or the new document.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=target.parent,
        prefix=f".{target.name}.",
        suffix=".partial",
        delete=False,
    ) as handle:
        staging = Path(handle.name)
        try:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        except BaseException:
            handle.close()
            staging.unlink(missing_ok=True)
            raise
    try:
        os.replace(staging, target)
    except OSError:
        with contextlib.suppress(OSError):
            staging.unlink()
        raise
    _sync_dir(target.parent)
    return target


def read_text_if_exists(path: str | Path) -> str | None:
    """Return the file's text, or ``None`` when nothing has been written yet."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def _sync_dir(directory: Path) -> None:
    # Directory fsync persists the rename; Windows and some filesystems refuse it.
    if os.name == "nt":
        return
    with contextlib.suppress(OSError):
        fd = os.open(directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)


__all__ = ["read_text_if_exists", "write_text_atomic"]
