"""Pattern validation and expansion relative to a workspace or store subtree."""

from __future__ import annotations

import glob
import logging
import os
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Iterable

from persist.errors import InvalidPatternError

LOGGER = logging.getLogger(__name__)


def validate_pattern(pattern: str, *, label: str = "pattern") -> None:
    """Reject absolute patterns and any pattern with a ``..`` segment."""

    if not pattern:
        raise InvalidPatternError(f"Invalid {label} (empty)")
    absolute = (
        os.path.isabs(pattern)
        or PurePosixPath(pattern).is_absolute()
        or bool(PureWindowsPath(pattern).drive)
        or pattern.startswith("\\")
    )
    segments = pattern.replace("\\", "/").split("/")
    if absolute or ".." in segments:
        raise InvalidPatternError(f"Invalid {label} (absolute or contains '..'): {pattern}")


def validate_patterns(patterns: Iterable[str]) -> list[str]:
    checked = list(patterns)
    for pattern in checked:
        validate_pattern(pattern)
    return checked


def is_within(root: str | Path, candidate: str | Path) -> bool:
    """Lexical containment check; symlinks are not resolved."""

    base = os.path.abspath(root)
    target = os.path.abspath(candidate)
    return target == base or target.startswith(base.rstrip(os.sep) + os.sep)


def _matches(pattern: str, root: Path, *, mark_directories: bool) -> list[str]:
    found = glob.glob(pattern, root_dir=root, recursive=True, include_hidden=True)
    results: list[str] = []
    for rel in sorted(set(found)):
        bare = rel.rstrip("/" + os.sep)
        if not bare or bare == ".":
            continue
        full = root / bare
        is_dir = full.is_dir()
        rel_posix = Path(bare).as_posix()
        if not is_within(root, root / rel_posix):
            raise InvalidPatternError(f"Pattern {pattern!r} resolved outside its root: {rel_posix}")
        results.append(rel_posix + "/" if is_dir and mark_directories else rel_posix)
    return results


def expand(patterns: Iterable[str], root: str | Path, *, mark_directories: bool = True) -> list[str]:
    """Expand patterns under ``root`` into unique relative paths.

    Every pattern is validated before any globbing happens. Directories are
    marked with a trailing ``/`` unless ``mark_directories`` is off and
    symlinks are followed. Output order is stable for a given filesystem snapshot.
    """

    checked = validate_patterns(patterns)
    base = Path(root)
    seen: set[str] = set()
    results: list[str] = []
    for pattern in checked:
        for rel in _matches(pattern, base, mark_directories=mark_directories):
            if rel not in seen:
                seen.add(rel)
                results.append(rel)
    return results


def walk_tree(root: str | Path) -> tuple[list[str], list[str]]:
    """Return ``(directories, files)`` below ``root``, following symlinks.

    Used to flatten a stored directory before hard-linking it file by file.
    Symlinked directories that loop back onto an ancestor are not descended;
    a second path to a directory that is not an ancestor is walked normally.
    """

    base = Path(root)
    directories: list[str] = []
    files: list[str] = []
    # walk path -> (dev, ino) of every directory above it, itself excluded
    ancestry: dict[str, frozenset[tuple[int, int]]] = {}
    for current, dirnames, filenames in os.walk(base, followlinks=True):
        stat_result = os.stat(current)
        chain = ancestry.pop(current, frozenset()) | {(stat_result.st_dev, stat_result.st_ino)}
        rel_dir = Path(current).relative_to(base)
        kept: list[str] = []
        for name in sorted(dirnames):
            child = os.path.join(current, name)
            try:
                child_stat = os.stat(child)
            except OSError:
                LOGGER.debug("Skipping unreadable directory %s", child)
                continue
            if (child_stat.st_dev, child_stat.st_ino) in chain:
                LOGGER.debug("Skipping symlink loop at %s", child)
                continue
            ancestry[child] = chain
            kept.append(name)
            directories.append((rel_dir / name).as_posix())
        dirnames[:] = kept
        for name in sorted(filenames):
            candidate = Path(current) / name
            if candidate.is_file():
                files.append((rel_dir / name).as_posix())
            else:
                LOGGER.debug("Skipping non-regular or dangling entry %s", candidate)
    return directories, files
