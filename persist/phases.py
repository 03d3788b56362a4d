"""Pre/main/post phase drivers.

Each phase runs in its own process. They share nothing but the current inputs,
the environment, and the :class:`~persist.state.PersistedState` record kept in
the host state channel.
"""

from __future__ import annotations

import contextlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import ContextManager

from persist.errors import ConfigurationError, InvalidPatternError, PersistError
from persist.globs import expand, is_within, validate_patterns
from persist.host import Host
from persist.materialize import Materializer
from persist.paths import resolve_dest_root, resolve_run_root, sanitize_repository
from persist.report import list_dir, report_dir
from persist.schemas import (
    NO_MATCH,
    CleanupInputs,
    LinkMode,
    Mode,
    PersistWarning,
    RestoreInputs,
    SaveInputs,
    Scope,
    parse_patterns,
    read_inputs,
)
from persist.settings import Settings, get_settings
from persist.state import MAIN_CHECKPOINT, PRE_CHECKPOINT, PersistedState, load_state, save_state
from persist.store import ensure_writable, remove_path, require_absolute, validate_store_root
from persist.warning_log import append_warning_log

LOGGER = logging.getLogger(__name__)

RUN_SCOPE_LABEL = "run-scope directory"


@dataclass
class MainOutcome:
    """What the main phase resolved and did."""

    mode: Mode
    dest_root: Path
    run_root: Path
    materialized: list[str] = field(default_factory=list)
    warnings: list[PersistWarning] = field(default_factory=list)


@dataclass
class PostOutcome:
    target: str | None = None
    removed: bool = False


def _truthy(value: str) -> bool:
    return value.strip().lower() == "true"


def _maybe_group(host: Host, title: str, enabled: bool) -> ContextManager[None]:
    return host.group(title) if enabled else contextlib.nullcontext()


def _covered(rel: str, done: list[str]) -> bool:
    return any(rel.startswith(parent + "/") for parent in done)


def run_pre(host: Host) -> PersistedState:
    """Validate the store and record the flags post will need."""

    inputs = read_inputs(host)
    store = validate_store_root(inputs.store)
    ensure_writable(store)
    LOGGER.info("Store OK: %s", inputs.store)
    state = PersistedState(
        pre_checked=True,
        verbose=inputs.verbose,
        trace=inputs.trace,
        dry_run=inputs.dry_run,
    )
    save_state(host, state, PRE_CHECKPOINT)
    return state


class _MainRun:
    def __init__(
        self,
        host: Host,
        inputs: SaveInputs | RestoreInputs,
        settings: Settings,
        outcome: MainOutcome,
    ) -> None:
        self.host = host
        self.inputs = inputs
        self.workspace = settings.host.workspace
        self.outcome = outcome
        self.materializer = Materializer(dry_run=inputs.dry_run)
        self.warnings: list[PersistWarning] = []

    def _no_match(self, message: str, pattern: str) -> None:
        LOGGER.warning(message, extra={"warning_code": NO_MATCH})
        self.warnings.append(PersistWarning(code=NO_MATCH, message=message, path=pattern))

    def _show(self, path: Path) -> None:
        if self.inputs.verbose and not self.inputs.dry_run:
            list_dir(path)

    async def save(self, patterns: list[str]) -> None:
        dest_root = self.outcome.dest_root
        done: list[str] = []
        with _maybe_group(self.host, "persist: resolve & copy (save)", self.inputs.verbose):
            for pattern in patterns:
                matches = expand([pattern], self.workspace)
                if not matches:
                    self._no_match(f"No matches for pattern: {pattern}", pattern)
                    continue
                for rel in matches:
                    bare = rel.rstrip("/")
                    if _covered(bare, done):
                        continue
                    src = self.workspace / bare
                    dst = dest_root / bare
                    if not is_within(dest_root, dst):
                        raise InvalidPatternError(f"Refusing to write outside dest root: {dst}")
                    store_rel = Path(os.path.relpath(dst, self.inputs.store)).as_posix()
                    if src.is_dir():
                        LOGGER.info("save dir: %s -> %s/", bare, store_rel)
                        await self.materializer.copy_with_wipe(src, dst)
                    else:
                        LOGGER.info("save file: %s -> %s", bare, store_rel)
                        await self.materializer.copy_file(src, dst)
                    self._show(dst)
                    done.append(bare)
        self.outcome.materialized.extend(done)

    async def restore(self, patterns: list[str]) -> None:
        link = self.inputs.link
        if link in (LinkMode.SOFT, LinkMode.SYMLINK):
            title = "persist: restore (soft links / symlinks)"
        elif link is LinkMode.HARD:
            title = "persist: restore (hard links; copy fallback if cross-device)"
        else:
            raise ConfigurationError(f"Unknown link mode: {link} (use 'soft' or 'hard')")

        dest_root = self.outcome.dest_root
        done: list[str] = []
        with _maybe_group(self.host, title, self.inputs.verbose):
            for pattern in patterns:
                matches = expand([pattern], dest_root)
                if not matches:
                    self._no_match(f"Nothing saved for {pattern}", pattern)
                    continue
                for rel in matches:
                    bare = rel.rstrip("/")
                    if _covered(bare, done):
                        continue
                    src = dest_root / bare
                    dst = self.workspace / bare
                    if not is_within(self.workspace, dst):
                        raise InvalidPatternError(f"Refusing to write outside workspace: {dst}")
                    if link is LinkMode.HARD:
                        LOGGER.info("restore: %s -> %s (hard)", bare, dst)
                        await self.materializer.link_or_copy(src, dst)
                    else:
                        LOGGER.info("link: %s -> %s", bare, src)
                        await self.materializer.symlink_restore(src, dst)
                    self._show(dst)
                    done.append(bare)
        self.outcome.materialized.extend(done)


async def run_main(host: Host, settings: Settings | None = None) -> MainOutcome:
    """Resolve roots, persist them, then save or restore the requested paths."""

    cfg = settings or get_settings()
    inputs = read_inputs(host)
    env = cfg.host
    if not env.repository:
        raise ConfigurationError("GITHUB_REPOSITORY is not set")
    require_absolute(inputs.store)

    dest_root = resolve_dest_root(inputs.scope, inputs.store, env.repository, env.ref_name, env.run_id)
    run_root = resolve_run_root(inputs.store, env.repository, env.ref_name, env.run_id)
    cleanup = isinstance(inputs, CleanupInputs)

    host.set_output("dest_root", str(run_root if cleanup else dest_root))
    state = PersistedState(
        dest_root=str(dest_root),
        run_root=str(run_root),
        scope=inputs.scope,
        dry_run=inputs.dry_run,
        cleanup=cleanup,
    )
    save_state(host, state, MAIN_CHECKPOINT + (("cleanup",) if cleanup else ()))

    outcome = MainOutcome(mode=Mode(inputs.mode), dest_root=dest_root, run_root=run_root)
    if isinstance(inputs, CleanupInputs):
        LOGGER.info("cleanup mode: nothing to do in main (deletion happens in post).")
        return outcome

    if not inputs.files.strip():
        LOGGER.info("No files specified, nothing to do.")
        return outcome
    patterns = parse_patterns(inputs.files)
    if not patterns:
        raise ConfigurationError("No files specified")
    validate_patterns(patterns)

    ensure_writable(inputs.store)

    if inputs.verbose:
        with host.group("persist: context"):
            LOGGER.info(
                "mode=%s repo=%s scope=%s link=%s",
                inputs.mode,
                sanitize_repository(env.repository),
                inputs.scope.value,
                inputs.link.value,
            )
            LOGGER.info("store=%s", inputs.store)
            LOGGER.info("dest_root=%s", dest_root)
            LOGGER.info("run_root=%s", run_root)
            LOGGER.info("workspace=%s", env.workspace)

    run = _MainRun(host, inputs, cfg, outcome)
    if isinstance(inputs, SaveInputs):
        await run.save(patterns)
    else:
        await run.restore(patterns)

    outcome.warnings = run.warnings + run.materializer.warnings
    append_warning_log(
        log_path=cfg.logging.warning_log_path,
        phase="main",
        repository=env.repository,
        run_id=env.run_id,
        dest_root=str(dest_root),
        warnings=outcome.warnings,
    )
    return outcome


def _remove_dir(path: str, *, dry_run: bool, label: str) -> bool:
    if not path:
        return False
    if not os.path.lexists(path):
        LOGGER.info("%s already removed or never created: %s", label, path)
        return False
    if dry_run:
        LOGGER.info("(dry-run) would remove %s: %s", label, path)
        return False
    LOGGER.info("Removing %s: %s", label, path)
    remove_path(Path(path))
    return True


def run_post(host: Host, settings: Settings | None = None) -> PostOutcome:
    """Delete the run-scope subtree when cleanup was requested."""

    cfg = settings or get_settings()
    state = load_state(host)
    verbose = _truthy(host.get_input("verbose")) or state.verbose
    trace = _truthy(host.get_input("trace")) or state.trace
    mode = host.get_input("mode").lower()
    limits = cfg.report.limits_for(verbose=verbose, trace=trace)

    if state.cleanup or mode == Mode.CLEANUP.value:
        target = state.run_root or ""
        report_dir(host, f"{RUN_SCOPE_LABEL} (pre-cleanup)", target, limits, trace=trace)
        with host.group("persist: cleanup (remove run-scope directory)"):
            removed = _remove_dir(target, dry_run=state.dry_run, label=RUN_SCOPE_LABEL)
        return PostOutcome(target=target, removed=removed)

    # Legacy path: run-scoped saves are always disposable.
    if state.scope is Scope.RUN and state.dest_root:
        report_dir(host, f"{RUN_SCOPE_LABEL} (pre-cleanup)", state.dest_root, limits, trace=trace)
        with host.group("persist: post-cleanup (remove run scope)"):
            removed = _remove_dir(state.dest_root, dry_run=state.dry_run, label=RUN_SCOPE_LABEL)
        return PostOutcome(target=state.dest_root, removed=removed)

    scope = state.scope.value if state.scope else "<none>"
    LOGGER.info("No cleanup requested; scope=%s; leaving files in place.", scope)
    return PostOutcome()


def pre_entry(host: Host) -> int:
    try:
        run_pre(host)
    except (PersistError, OSError) as exc:
        host.set_failed(str(exc))
        return 1
    return 0


async def main_entry(host: Host, settings: Settings | None = None) -> int:
    try:
        await run_main(host, settings)
    except (PersistError, OSError) as exc:
        host.set_failed(str(exc))
        return 1
    return 0


def post_entry(host: Host, settings: Settings | None = None) -> int:
    """Post never fails the job: every error is downgraded to a warning."""

    try:
        run_post(host, settings)
    except Exception as exc:  # noqa: BLE001 - cleanup is best-effort
        LOGGER.warning("Cleanup failed: %s", exc)
    return 0
