"""Read-only directory summaries logged before destructive cleanup."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from persist.settings import ReportLimits

if TYPE_CHECKING:
    from persist.host import Host

LOGGER = logging.getLogger(__name__)

_UNITS = ("B", "KB", "MB", "GB", "TB")
LIST_DIR_SAMPLE = 50


def format_bytes(size: int) -> str:
    value = float(size)
    index = 0
    while value >= 1024 and index < len(_UNITS) - 1:
        value /= 1024
        index += 1
    decimals = 1 if value < 10 and index > 0 else 0
    return f"{value:.{decimals}f} {_UNITS[index]}"


@dataclass
class DirSummary:
    root: Path
    file_count: int = 0
    dir_count: int = 0
    link_count: int = 0
    total_bytes: int = 0
    sample_lines: list[str] = field(default_factory=list)

    @property
    def total_entries(self) -> int:
        return self.file_count + self.dir_count + self.link_count

    def as_dict(self) -> dict[str, object]:
        return {
            "root": str(self.root),
            "fileCount": self.file_count,
            "dirCount": self.dir_count,
            "linkCount": self.link_count,
            "totalBytes": self.total_bytes,
            "sampleLines": list(self.sample_lines),
        }


def summarize(root: str | Path, limits: ReportLimits = ReportLimits(max_entries=120, max_depth=3)) -> DirSummary | None:
    """Depth-first walk of ``root`` using an explicit stack.

    Directories below ``limits.max_depth`` are counted but not entered; the
    sample keeps the first ``limits.max_entries`` entries discovered. Symlinks
    are never followed. Returns ``None`` when ``root`` does not exist.
    """

    base = Path(root)
    if not os.path.lexists(base):
        return None
    summary = DirSummary(root=base)
    stack: list[tuple[Path, int, str]] = [(base, 0, "")]

    def _sample(line: str) -> None:
        if len(summary.sample_lines) < limits.max_entries:
            summary.sample_lines.append(line)

    while stack:
        directory, depth, rel = stack.pop()
        try:
            names = sorted(os.listdir(directory))
        except OSError:
            continue
        for name in names:
            full = directory / name
            rel_path = f"{rel}/{name}" if rel else name
            try:
                info = full.lstat()
            except OSError:
                continue
            if stat.S_ISDIR(info.st_mode):
                summary.dir_count += 1
                _sample(f"D  {rel_path}/")
                if depth < limits.max_depth:
                    stack.append((full, depth + 1, rel_path))
            elif stat.S_ISLNK(info.st_mode):
                summary.link_count += 1
                _sample(f"L  {rel_path} -> (symlink)")
            else:
                summary.file_count += 1
                summary.total_bytes += info.st_size
                _sample(f"F  {rel_path}  ({format_bytes(info.st_size)})")
    return summary


def report_dir(host: "Host", label: str, root: str, limits: ReportLimits, *, trace: bool = False) -> DirSummary | None:
    """Log a sanity report for ``root``; has no effect on control flow."""

    if not root:
        LOGGER.info("%s: <empty path>", label)
        return None
    if not os.path.lexists(root):
        LOGGER.info("%s: path does not exist -> %s", label, root)
        return None
    summary = summarize(root, limits)
    if summary is None:
        LOGGER.info("%s: <no data>", label)
        return None
    with host.group(f"persist: sanity report for {label} ({root})"):
        LOGGER.info(
            "entries: files=%d, dirs=%d, links=%d, total=%d",
            summary.file_count,
            summary.dir_count,
            summary.link_count,
            summary.total_entries,
        )
        LOGGER.info("approx size: %s", format_bytes(summary.total_bytes))
        if not summary.sample_lines:
            LOGGER.info("<empty>")
        else:
            hint = "" if trace else ", increase with 'trace: true'"
            LOGGER.info("sample (first %d%s):", len(summary.sample_lines), hint)
            for line in summary.sample_lines:
                LOGGER.info(line)
            if not trace:
                LOGGER.info("(enable 'trace: true' for deeper/longer listing)")
    return summary


def list_dir(path: Path) -> None:
    """Short verbose listing of a freshly materialized destination."""

    try:
        info = path.lstat()
    except OSError:
        LOGGER.info("path: %s (missing)", path)
        return
    if stat.S_ISDIR(info.st_mode):
        entries = sorted(os.listdir(path))
        LOGGER.info("path: %s", path)
        LOGGER.info("entries: %d", len(entries))
        if entries:
            LOGGER.info("\n".join(f" - {entry}" for entry in entries[:LIST_DIR_SAMPLE]))
    else:
        LOGGER.info("path: %s (file) size=%d", path, info.st_size)
