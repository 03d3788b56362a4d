"""Pydantic models for action inputs and structured warnings."""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from persist.errors import ConfigurationError

if TYPE_CHECKING:
    from persist.host import Host


class Mode(str, Enum):
    SAVE = "save"
    RESTORE = "restore"
    CLEANUP = "cleanup"


class Scope(str, Enum):
    """Partitioning of the store: whole repository, per branch, or per run."""

    GLOBAL = "global"
    BRANCH = "branch"
    RUN = "run"


class LinkMode(str, Enum):
    SOFT = "soft"
    SYMLINK = "symlink"
    HARD = "hard"


class _InputsBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    store: str = Field(default="/store", description="Absolute path of the mounted store")
    scope: Scope = Field(default=Scope.RUN, description="Store partition for this invocation")
    link: LinkMode = Field(default=LinkMode.SOFT, description="Restore strategy")
    verbose: bool = False
    trace: bool = False
    dry_run: bool = Field(default=False, description="Report intended mutations without performing them")


class SaveInputs(_InputsBase):
    """Copy workspace paths into the store."""

    mode: Literal["save"] = "save"
    files: str = Field(default="", description="Newline-separated glob patterns relative to the workspace")


class RestoreInputs(_InputsBase):
    """Materialize stored paths back into the workspace."""

    mode: Literal["restore"] = "restore"
    files: str = Field(default="", description="Newline-separated glob patterns relative to the store subtree")


class CleanupInputs(_InputsBase):
    """Defer deletion of the run-scope subtree to the post phase."""

    mode: Literal["cleanup"] = "cleanup"

    @field_validator("scope")
    @classmethod
    def _reject_global(cls, value: Scope) -> Scope:
        if value is Scope.GLOBAL:
            raise ValueError("cleanup cannot target the global scope (use 'branch' or 'run')")
        return value


Inputs = Annotated[Union[SaveInputs, RestoreInputs, CleanupInputs], Field(discriminator="mode")]
_INPUTS_ADAPTER: TypeAdapter[Any] = TypeAdapter(Inputs)

# input name on the host -> model field
_INPUT_FIELDS = {
    "mode": "mode",
    "files": "files",
    "store": "store",
    "scope": "scope",
    "link": "link",
    "verbose": "verbose",
    "trace": "trace",
    "dry-run": "dry_run",
}
_CASE_FOLDED = {"mode", "scope", "link", "verbose", "trace", "dry_run"}


class PersistWarning(BaseModel):
    """Structured, non-fatal condition surfaced during a phase."""

    code: str = Field(description="Stable identifier (no-match, link-fallback)")
    message: str = Field(description="Human-friendly details")
    path: str | None = Field(default=None, description="Pattern or file the warning refers to")


NO_MATCH = "no-match"
LINK_FALLBACK = "link-fallback"


def parse_inputs(raw: Mapping[str, str]) -> SaveInputs | RestoreInputs | CleanupInputs:
    """Validate raw host inputs into the variant matching ``mode``.

    Empty values fall back to defaults. All validation issues are folded into a
    single :class:`ConfigurationError`.
    """

    payload: dict[str, Any] = {}
    for name, field in _INPUT_FIELDS.items():
        value = (raw.get(name) or "").strip()
        if not value:
            continue
        payload[field] = value.lower() if field in _CASE_FOLDED else value
    if "mode" not in payload:
        raise ConfigurationError("Invalid inputs:\nmode: input is required (save, restore, or cleanup)")
    try:
        return _INPUTS_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        issues = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"] if part not in {"save", "restore", "cleanup"})
            issues.append(f"{location or 'inputs'}: {error['msg']}")
        raise ConfigurationError("Invalid inputs:\n" + "\n".join(issues)) from exc


def read_inputs(host: "Host") -> SaveInputs | RestoreInputs | CleanupInputs:
    return parse_inputs({name: host.get_input(name) for name in _INPUT_FIELDS})


def parse_patterns(files: str) -> list[str]:
    """Split the ``files`` input into patterns, dropping comments and blanks."""

    patterns: list[str] = []
    for line in re.split(r"\r?\n", files):
        cleaned = re.sub(r"#.*$", "", line).strip()
        if cleaned:
            patterns.append(cleaned)
    return patterns
