"""Destination-root derivation from (scope, store, repository, ref, run id)."""

from __future__ import annotations

import re
from pathlib import Path

from persist.errors import ConfigurationError
from persist.schemas import Scope

REPO_SEPARATOR_PLACEHOLDER = "__"


def sanitize_repository(repository: str) -> str:
    """Collapse ``owner/name`` into a single path segment (``owner__name``)."""

    safe = re.sub(r"[/\\]", REPO_SEPARATOR_PLACEHOLDER, repository.strip())
    if safe in {"", ".", ".."}:
        raise ConfigurationError(f"Repository identifier cannot be used as a path segment: {repository!r}")
    return safe


def _scope_suffix(scope: Scope, ref_name: str, run_id: str) -> list[str]:
    if scope is Scope.GLOBAL:
        return []
    if scope is Scope.BRANCH:
        parts = [part for part in re.split(r"[/\\]", ref_name) if part]
        if not parts:
            raise ConfigurationError("Branch scope requires a ref name (GITHUB_REF_NAME is empty)")
        if any(part in {".", ".."} for part in parts):
            raise ConfigurationError(f"Ref name cannot contain '.' or '..' segments: {ref_name!r}")
        return parts
    if not run_id:
        raise ConfigurationError("Run scope requires a run id (GITHUB_RUN_ID is empty)")
    return [f"run-{run_id}"]


def resolve_dest_root(
    scope: Scope | str,
    store: str | Path,
    repository: str,
    ref_name: str,
    run_id: str,
) -> Path:
    """Return ``store / sanitize(repository) / <scope suffix>``.

    ``global`` adds no suffix, ``branch`` adds the ref name, ``run`` adds
    ``run-<run id>``. Any other scope is a :class:`ConfigurationError`.
    """

    try:
        active = Scope(scope)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown scope '{scope}' (use 'global', 'branch', or 'run')") from exc
    root = Path(store) / sanitize_repository(repository)
    for part in _scope_suffix(active, ref_name, run_id.strip()):
        root = root / part
    return root


def resolve_run_root(store: str | Path, repository: str, ref_name: str, run_id: str) -> Path:
    """Destination root with the scope forced to ``run``; the cleanup target."""

    return resolve_dest_root(Scope.RUN, store, repository, ref_name, run_id)
