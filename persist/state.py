"""Cross-phase record persisted through the host state channel.

The pre, main and post phases run as separate processes. The only memory they
share is this flat record, written at fixed checkpoints and read back by post.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from pydantic import BaseModel, Field, ValidationError

from persist.schemas import Scope

if TYPE_CHECKING:
    from persist.host import Host

# model field -> host state key
STATE_KEYS = {
    "pre_checked": "preChecked",
    "dest_root": "destRoot",
    "run_root": "runRoot",
    "scope": "scope",
    "dry_run": "dryRun",
    "verbose": "verbose",
    "trace": "trace",
    "cleanup": "cleanup",
}
PRE_CHECKPOINT = ("pre_checked", "verbose", "trace", "dry_run")
MAIN_CHECKPOINT = ("dest_root", "run_root", "scope", "dry_run")


class PersistedState(BaseModel):
    pre_checked: bool = False
    dest_root: str | None = Field(default=None, description="Scope-derived destination root")
    run_root: str | None = Field(default=None, description="Run-exclusive root used by cleanup")
    scope: Scope | None = None
    dry_run: bool = False
    verbose: bool = False
    trace: bool = False
    cleanup: bool = False

    def to_entries(self, fields: Iterable[str]) -> dict[str, str]:
        """Serialize the named fields to host key/value strings."""

        entries: dict[str, str] = {}
        for field in fields:
            value = getattr(self, field)
            if value is None:
                continue
            if isinstance(value, bool):
                text = "true" if value else "false"
            elif isinstance(value, Scope):
                text = value.value
            else:
                text = str(value)
            entries[STATE_KEYS[field]] = text
        return entries

    @classmethod
    def from_entries(cls, entries: dict[str, str]) -> "PersistedState":
        raw: dict[str, object] = {}
        for field, key in STATE_KEYS.items():
            value = entries.get(key, "")
            if field in {"dest_root", "run_root", "scope"}:
                raw[field] = value or None
            else:
                raw[field] = value.strip().lower() == "true"
        try:
            return cls.model_validate(raw)
        except ValidationError:
            # An unknown scope string must not hide the roots post needs.
            raw["scope"] = None
            return cls.model_validate(raw)


def save_state(host: "Host", state: PersistedState, fields: Iterable[str]) -> None:
    for key, value in state.to_entries(fields).items():
        host.save_state(key, value)


def load_state(host: "Host") -> PersistedState:
    return PersistedState.from_entries({key: host.get_state(key) for key in STATE_KEYS.values()})
