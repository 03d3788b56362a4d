"""Strategies that move content between the workspace and the store.

Saves are always dereferencing copies. Restores either symlink into the store
or hard-link file by file, degrading to a copy whenever the link is refused.
Every strategy honours ``dry_run``: the intended action is logged and nothing
on disk changes.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import shutil
from pathlib import Path

from persist.globs import walk_tree
from persist.schemas import LINK_FALLBACK, PersistWarning
from persist.store import remove_path

LOGGER = logging.getLogger(__name__)

# os.link failures that a plain copy can recover from
RECOVERABLE_LINK_ERRNOS = frozenset(
    {
        errno.EXDEV,
        errno.EPERM,
        errno.EACCES,
        errno.EMLINK,
        errno.ENOTSUP,
        errno.EOPNOTSUPP,
        errno.EEXIST,
    }
)


def is_recoverable_link_error(exc: OSError) -> bool:
    return getattr(exc, "errno", None) in RECOVERABLE_LINK_ERRNOS


def _copy_over(src: Path, dst: Path) -> None:
    if dst.is_symlink() or dst.is_dir():
        remove_path(dst)
    shutil.copy2(src, dst)


def _symlink(src: Path, dst: Path) -> None:
    try:
        os.symlink(src, dst)
    except OSError:
        # Some platforms refuse untyped links to directories.
        os.symlink(src, dst, target_is_directory=src.is_dir())


class Materializer:
    """Executes save/restore strategies and collects non-fatal warnings."""

    def __init__(self, *, dry_run: bool = False) -> None:
        self.dry_run = dry_run
        self.warnings: list[PersistWarning] = []

    async def copy_with_wipe(self, src: Path, dst: Path) -> None:
        """Mirror directory ``src`` into ``dst``, dropping whatever ``dst`` held."""

        if self.dry_run:
            LOGGER.info("(dry-run) would wipe '%s' and copy '%s/.' -> '%s/'", dst, src, dst)
            return
        if dst.is_symlink() or (os.path.lexists(dst) and not dst.is_dir()):
            # a file or link saved under this name earlier
            await asyncio.to_thread(remove_path, dst)
        await asyncio.to_thread(dst.mkdir, parents=True, exist_ok=True)
        await self._wipe_children(dst)
        await asyncio.to_thread(shutil.copytree, src, dst, symlinks=False, dirs_exist_ok=True)

    async def _wipe_children(self, directory: Path) -> None:
        children = await asyncio.to_thread(lambda: list(directory.iterdir()))
        results = await asyncio.gather(
            *(asyncio.to_thread(remove_path, child) for child in children),
            return_exceptions=True,
        )
        for child, result in zip(children, results):
            if isinstance(result, OSError):
                LOGGER.debug("Could not wipe %s before copy: %s", child, result)
            elif isinstance(result, BaseException):
                raise result

    async def copy_file(self, src: Path, dst: Path) -> None:
        """Overwrite-copy a single file, dereferencing symlinks."""

        if self.dry_run:
            LOGGER.info("(dry-run) would copy '%s' -> '%s'", src, dst)
            return
        await asyncio.to_thread(dst.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(_copy_over, src, dst)

    async def hardlink_or_copy_file(self, src: Path, dst: Path) -> None:
        """Hard-link ``dst`` to ``src``; copy instead when the link is refused."""

        await asyncio.to_thread(dst.parent.mkdir, parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(os.link, src, dst)
            return
        except OSError as exc:
            if not is_recoverable_link_error(exc):
                raise
            if exc.errno == errno.EEXIST and os.path.samefile(src, dst):
                return
            code = errno.errorcode.get(exc.errno, str(exc.errno))
        message = f"Hardlink failed ({code}); copying: {src} -> {dst}"
        LOGGER.warning(message, extra={"warning_code": LINK_FALLBACK})
        self.warnings.append(PersistWarning(code=LINK_FALLBACK, message=message, path=str(dst)))
        await asyncio.to_thread(_copy_over, src, dst)

    async def link_or_copy(self, src: Path, dst: Path) -> None:
        """Hard-link restore of a stored file or directory tree."""

        if self.dry_run:
            LOGGER.info("(dry-run) would hardlink/copy '%s' -> '%s'", src, dst)
            return
        await asyncio.to_thread(remove_path, dst)
        if src.is_dir():
            await self._materialize_dir_hard(src, dst)
        else:
            await self.hardlink_or_copy_file(src, dst)

    async def _materialize_dir_hard(self, src: Path, dst: Path) -> None:
        directories, files = await asyncio.to_thread(walk_tree, src)
        await asyncio.to_thread(dst.mkdir, parents=True, exist_ok=True)
        await asyncio.gather(
            *(asyncio.to_thread((dst / rel).mkdir, parents=True, exist_ok=True) for rel in directories)
        )
        for rel in files:
            await self.hardlink_or_copy_file(src / rel, dst / rel)

    async def symlink_restore(self, src: Path, dst: Path) -> None:
        """Replace ``dst`` with a symbolic link pointing at ``src``."""

        if self.dry_run:
            LOGGER.info("(dry-run) would symlink '%s' -> '%s'", dst, src)
            return
        await asyncio.to_thread(dst.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(remove_path, dst)
        await asyncio.to_thread(_symlink, src, dst)
