"""Store-root checks and removal helpers for the mounted artifact store."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from persist.errors import ConfigurationError, StoreUnavailableError

LOGGER = logging.getLogger(__name__)

PROBE_NAME = ".write_test"
MOUNT_HINT = "Hint: mount with container.options: -v /data/act_runner/store:/store:rw,z"


def require_absolute(store: str | Path) -> Path:
    raw = str(store)
    if not os.path.isabs(raw):
        raise ConfigurationError(f'Store must be an absolute path; got "{raw}"')
    return Path(raw)


def validate_store_root(store: str | Path) -> Path:
    """Require an absolute, existing store path (pre-phase check)."""

    root = require_absolute(store)
    raw = str(store)
    if not root.exists():
        raise StoreUnavailableError(f"Store not mounted: {raw}. {MOUNT_HINT}")
    return root


def ensure_writable(store: str | Path) -> None:
    """Create the store if needed and prove it accepts a write-then-delete probe."""

    root = Path(store)
    probe = root / PROBE_NAME
    try:
        root.mkdir(parents=True, exist_ok=True)
        probe.write_text("ok", encoding="utf-8")
        probe.unlink(missing_ok=True)
    except OSError as exc:
        raise StoreUnavailableError(f"Store not mounted or not writable: {root}") from exc


def remove_path(path: Path) -> None:
    """``rm -rf`` for one entry: links and files are unlinked, directories pruned."""

    if path.is_symlink() or (path.exists() and not path.is_dir()):
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)
