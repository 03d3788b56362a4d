from __future__ import annotations

import errno
import logging
import os
from pathlib import Path

import pytest

from persist import materialize
from persist.materialize import Materializer, is_recoverable_link_error
from persist.schemas import LINK_FALLBACK


def _tree(root: Path) -> None:
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("alpha", encoding="utf-8")
    (root / "sub" / "b.txt").write_text("beta", encoding="utf-8")


def _refuse_links(code: int, *, only: str | None = None):
    real_link = os.link

    def fake_link(src, dst, *args, **kwargs):  # noqa: ANN001
        if only is None or Path(src).name == only:
            raise OSError(code, os.strerror(code), str(src))
        return real_link(src, dst, *args, **kwargs)

    return fake_link


@pytest.mark.asyncio
async def test_copy_with_wipe_replaces_stale_contents(tmp_path: Path, snapshot) -> None:
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    _tree(src)
    (dst / "old").mkdir(parents=True)
    (dst / "stale.txt").write_text("stale", encoding="utf-8")

    await Materializer().copy_with_wipe(src, dst)

    assert snapshot(dst) == snapshot(src)


@pytest.mark.asyncio
async def test_copy_with_wipe_is_idempotent(tmp_path: Path, snapshot) -> None:
    src = tmp_path / "src"
    dst = tmp_path / "dst"
    _tree(src)
    materializer = Materializer()

    await materializer.copy_with_wipe(src, dst)
    first = snapshot(dst)
    await materializer.copy_with_wipe(src, dst)

    assert snapshot(dst) == first


@pytest.mark.asyncio
async def test_copy_with_wipe_dereferences_symlinks(tmp_path: Path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    outside = tmp_path / "outside.txt"
    outside.write_text("real bytes", encoding="utf-8")
    (src / "link.txt").symlink_to(outside)
    dst = tmp_path / "dst"

    await Materializer().copy_with_wipe(src, dst)

    copied = dst / "link.txt"
    assert not copied.is_symlink()
    assert copied.read_text(encoding="utf-8") == "real bytes"


@pytest.mark.asyncio
async def test_copy_file_overwrites_and_creates_parents(tmp_path: Path) -> None:
    src = tmp_path / "in.bin"
    src.write_bytes(b"new")
    dst = tmp_path / "nested" / "dir" / "out.bin"

    await Materializer().copy_file(src, dst)
    src.write_bytes(b"newer")
    await Materializer().copy_file(src, dst)

    assert dst.read_bytes() == b"newer"


@pytest.mark.asyncio
async def test_copy_file_replaces_symlink_destination(tmp_path: Path) -> None:
    src = tmp_path / "in.txt"
    src.write_text("fresh", encoding="utf-8")
    victim = tmp_path / "victim.txt"
    victim.write_text("untouched", encoding="utf-8")
    dst = tmp_path / "out.txt"
    dst.symlink_to(victim)

    await Materializer().copy_file(src, dst)

    assert not dst.is_symlink()
    assert dst.read_text(encoding="utf-8") == "fresh"
    assert victim.read_text(encoding="utf-8") == "untouched"


@pytest.mark.asyncio
async def test_link_or_copy_shares_inodes(tmp_path: Path) -> None:
    src = tmp_path / "stored"
    _tree(src)
    dst = tmp_path / "restored"
    materializer = Materializer()

    await materializer.link_or_copy(src, dst)

    assert os.stat(dst / "a.txt").st_ino == os.stat(src / "a.txt").st_ino
    assert os.stat(dst / "sub" / "b.txt").st_ino == os.stat(src / "sub" / "b.txt").st_ino
    assert materializer.warnings == []


@pytest.mark.asyncio
async def test_link_or_copy_replaces_existing_destination(tmp_path: Path) -> None:
    src = tmp_path / "stored.txt"
    src.write_text("stored", encoding="utf-8")
    dst = tmp_path / "restored.txt"
    dst.mkdir()
    (dst / "junk").write_text("junk", encoding="utf-8")

    await Materializer().link_or_copy(src, dst)

    assert dst.is_file()
    assert os.path.samefile(src, dst)


@pytest.mark.asyncio
async def test_cross_device_link_falls_back_to_copy(monkeypatch, tmp_path: Path, caplog) -> None:
    src = tmp_path / "stored.bin"
    src.write_bytes(b"payload")
    dst = tmp_path / "ws" / "restored.bin"
    monkeypatch.setattr(materialize.os, "link", _refuse_links(errno.EXDEV))
    materializer = Materializer()

    await materializer.hardlink_or_copy_file(src, dst)

    assert dst.read_bytes() == b"payload"
    assert os.stat(dst).st_ino != os.stat(src).st_ino
    assert [w.code for w in materializer.warnings] == [LINK_FALLBACK]
    assert "EXDEV" in materializer.warnings[0].message
    fallback = [r for r in caplog.records if getattr(r, "warning_code", None) == LINK_FALLBACK]
    assert fallback and fallback[0].levelno == logging.WARNING


@pytest.mark.asyncio
async def test_unrecoverable_link_error_propagates(monkeypatch, tmp_path: Path) -> None:
    src = tmp_path / "stored.bin"
    src.write_bytes(b"payload")
    monkeypatch.setattr(materialize.os, "link", _refuse_links(errno.EIO))

    with pytest.raises(OSError) as excinfo:
        await Materializer().hardlink_or_copy_file(src, tmp_path / "restored.bin")

    assert excinfo.value.errno == errno.EIO
    assert not (tmp_path / "restored.bin").exists()


@pytest.mark.asyncio
async def test_fallback_is_decided_per_file(monkeypatch, tmp_path: Path) -> None:
    src = tmp_path / "stored"
    _tree(src)
    dst = tmp_path / "restored"
    monkeypatch.setattr(materialize.os, "link", _refuse_links(errno.EXDEV, only="b.txt"))
    materializer = Materializer()

    await materializer.link_or_copy(src, dst)

    assert os.path.samefile(src / "a.txt", dst / "a.txt")
    assert not os.path.samefile(src / "sub" / "b.txt", dst / "sub" / "b.txt")
    assert (dst / "sub" / "b.txt").read_text(encoding="utf-8") == "beta"
    assert len(materializer.warnings) == 1
    assert materializer.warnings[0].path == str(dst / "sub" / "b.txt")


@pytest.mark.asyncio
async def test_existing_hardlink_is_left_alone(tmp_path: Path) -> None:
    src = tmp_path / "stored.txt"
    src.write_text("same", encoding="utf-8")
    dst = tmp_path / "restored.txt"
    os.link(src, dst)
    materializer = Materializer()

    await materializer.hardlink_or_copy_file(src, dst)

    assert os.path.samefile(src, dst)
    assert materializer.warnings == []


@pytest.mark.asyncio
async def test_symlink_restore_points_into_store(tmp_path: Path) -> None:
    src = tmp_path / "store" / "dir"
    _tree(src)
    dst = tmp_path / "ws" / "dir"
    dst.mkdir(parents=True)
    (dst / "leftover").write_text("x", encoding="utf-8")

    await Materializer().symlink_restore(src, dst)

    assert dst.is_symlink()
    assert Path(os.readlink(dst)) == src
    assert (dst / "sub" / "b.txt").read_text(encoding="utf-8") == "beta"


@pytest.mark.asyncio
async def test_dry_run_changes_nothing(tmp_path: Path, snapshot) -> None:
    src = tmp_path / "src"
    _tree(src)
    dst = tmp_path / "dst"
    (dst / "keep").mkdir(parents=True)
    before = snapshot(tmp_path)
    materializer = Materializer(dry_run=True)

    await materializer.copy_with_wipe(src, dst)
    await materializer.copy_file(src / "a.txt", dst / "a.txt")
    await materializer.link_or_copy(src, dst / "linked")
    await materializer.symlink_restore(src, tmp_path / "new" / "link")

    assert snapshot(tmp_path) == before


def test_recoverable_errno_classification() -> None:
    assert is_recoverable_link_error(OSError(errno.EXDEV, "cross-device"))
    assert is_recoverable_link_error(OSError(errno.EMLINK, "too many links"))
    assert not is_recoverable_link_error(OSError(errno.EIO, "io"))
    assert not is_recoverable_link_error(OSError("no errno"))


@pytest.mark.asyncio
async def test_link_or_copy_restores_directory_behind_sibling_alias(tmp_path: Path) -> None:
    src = tmp_path / "store" / "cache"
    (src / "real").mkdir(parents=True)
    (src / "real" / "data.txt").write_text("data", encoding="utf-8")
    (src / "alias").symlink_to(src / "real", target_is_directory=True)
    dst = tmp_path / "ws" / "cache"

    await Materializer().link_or_copy(src, dst)

    assert (dst / "real" / "data.txt").read_text(encoding="utf-8") == "data"
    assert (dst / "alias" / "data.txt").read_text(encoding="utf-8") == "data"
    assert os.path.samefile(dst / "real" / "data.txt", src / "real" / "data.txt")


@pytest.mark.asyncio
async def test_copy_with_wipe_replaces_file_saved_under_same_name(tmp_path: Path) -> None:
    src = tmp_path / "src"
    _tree(src)
    dst = tmp_path / "dst"
    dst.write_text("was a file", encoding="utf-8")

    await Materializer().copy_with_wipe(src, dst)

    assert dst.is_dir()
    assert (dst / "sub" / "b.txt").read_text(encoding="utf-8") == "beta"


@pytest.mark.asyncio
async def test_copy_with_wipe_replaces_symlink_without_touching_target(tmp_path: Path) -> None:
    src = tmp_path / "src"
    _tree(src)
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    (elsewhere / "keep.txt").write_text("keep", encoding="utf-8")
    dst = tmp_path / "dst"
    dst.symlink_to(elsewhere, target_is_directory=True)

    await Materializer().copy_with_wipe(src, dst)

    assert not dst.is_symlink()
    assert (dst / "a.txt").exists()
    assert (elsewhere / "keep.txt").read_text(encoding="utf-8") == "keep"
