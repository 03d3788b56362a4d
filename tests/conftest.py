from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator

import pytest

from persist.host import ActionsLogHandler
from persist.settings import HostEnvironment, LoggingSettings, ReportLimits, ReportSettings, Settings


@pytest.fixture(autouse=True)
def _reset_persist_logger(caplog: pytest.LogCaptureFixture) -> Iterator[None]:
    caplog.set_level(logging.DEBUG, logger="persist")
    yield
    logger = logging.getLogger("persist")
    for handler in list(logger.handlers):
        if isinstance(handler, ActionsLogHandler):
            logger.removeHandler(handler)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def store(tmp_path: Path) -> Path:
    path = tmp_path / "store"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(workspace: Path) -> Callable[..., Settings]:
    def _factory(
        *,
        repository: str = "org/app",
        ref_name: str = "main",
        run_id: str = "42",
        warning_log_path: Path | None = None,
        root: Path | None = None,
    ) -> Settings:
        return Settings(
            env_path=".env",
            host=HostEnvironment(
                repository=repository,
                ref_name=ref_name,
                run_id=run_id,
                workspace=root or workspace,
            ),
            report=ReportSettings(
                default=ReportLimits(max_entries=120, max_depth=3),
                verbose=ReportLimits(max_entries=300, max_depth=5),
                trace=ReportLimits(max_entries=1000, max_depth=10),
            ),
            logging=LoggingSettings(level="INFO", warning_log_path=warning_log_path),
        )

    return _factory


@pytest.fixture
def log_messages(caplog: pytest.LogCaptureFixture) -> Callable[[], list[str]]:
    def _messages() -> list[str]:
        return [record.getMessage() for record in caplog.records if record.name.startswith("persist")]

    return _messages


@pytest.fixture
def snapshot() -> Callable[[Path], dict[str, bytes | str]]:
    return tree_snapshot


def tree_snapshot(root: Path) -> dict[str, bytes | str]:
    """Map every entry below ``root`` to its bytes, ``<dir>`` or its link target."""

    snapshot: dict[str, bytes | str] = {}
    if not root.exists():
        return snapshot
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        if path.is_symlink():
            snapshot[rel] = f"-> {path.readlink()}"
        elif path.is_dir():
            snapshot[rel] = "<dir>"
        else:
            snapshot[rel] = path.read_bytes()
    return snapshot
