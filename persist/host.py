"""Narrow adapters over the CI host's input, output, state and log channels."""

from __future__ import annotations

import logging
import os
import sys
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Iterator, Mapping, Protocol, TextIO

LOGGER = logging.getLogger(__name__)


class Host(Protocol):
    """What the phases need from the hosting CI platform."""

    def get_input(self, name: str) -> str: ...

    def get_state(self, name: str) -> str: ...

    def save_state(self, name: str, value: str) -> None: ...

    def set_output(self, name: str, value: str) -> None: ...

    def set_failed(self, message: str) -> None: ...

    def group(self, title: str) -> ContextManager[None]: ...


def _escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _escape_property(value: str) -> str:
    return _escape_data(value).replace(":", "%3A").replace(",", "%2C")


class ActionsHost:
    """GitHub-Actions-compatible host (also understood by Gitea/Forgejo runners)."""

    def __init__(self, *, environ: Mapping[str, str] | None = None, stream: TextIO | None = None) -> None:
        self._environ = environ if environ is not None else os.environ
        self._stream = stream
        self.exit_code = 0

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    def _command(self, command: str, message: str = "", **properties: str) -> None:
        props = ",".join(f"{key}={_escape_property(value)}" for key, value in properties.items())
        head = f"::{command} {props}" if props else f"::{command}"
        self.stream.write(f"{head}::{_escape_data(message)}\n")
        self.stream.flush()

    def get_input(self, name: str) -> str:
        key = f"INPUT_{name.replace(' ', '_').upper()}"
        return self._environ.get(key, "").strip()

    def get_state(self, name: str) -> str:
        return self._environ.get(f"STATE_{name}", "")

    def _append_file_command(self, env_key: str, name: str, value: str) -> bool:
        target = self._environ.get(env_key)
        if not target:
            return False
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        if delimiter in name or delimiter in value:  # pragma: no cover - astronomically unlikely
            raise ValueError("delimiter collision while writing host file command")
        with Path(target).open("a", encoding="utf-8") as handle:
            handle.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
        return True

    def save_state(self, name: str, value: str) -> None:
        if not self._append_file_command("GITHUB_STATE", name, value):
            self._command("save-state", value, name=name)

    def set_output(self, name: str, value: str) -> None:
        if not self._append_file_command("GITHUB_OUTPUT", name, value):
            self._command("set-output", value, name=name)

    def set_failed(self, message: str) -> None:
        self.exit_code = 1
        self._command("error", message)

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        self._command("group", title)
        try:
            yield
        finally:
            self._command("endgroup")


class MemoryHost:
    """Dictionary-backed host for embedding the phases in-process."""

    def __init__(self, inputs: dict[str, str] | None = None, state: dict[str, str] | None = None) -> None:
        self.inputs = dict(inputs or {})
        self.state = dict(state or {})
        self.outputs: dict[str, str] = {}
        self.failures: list[str] = []
        self.groups: list[str] = []

    def get_input(self, name: str) -> str:
        return self.inputs.get(name, "").strip()

    def get_state(self, name: str) -> str:
        return self.state.get(name, "")

    def save_state(self, name: str, value: str) -> None:
        self.state[name] = value

    def set_output(self, name: str, value: str) -> None:
        self.outputs[name] = value

    def set_failed(self, message: str) -> None:
        self.failures.append(message)

    @contextmanager
    def group(self, title: str) -> Iterator[None]:
        self.groups.append(title)
        yield


class ActionsLogHandler(logging.StreamHandler):
    """Render log records as workflow commands the runner understands."""

    _PREFIXES = {
        logging.DEBUG: "::debug::",
        logging.WARNING: "::warning::",
        logging.ERROR: "::error::",
        logging.CRITICAL: "::error::",
    }

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        prefix = self._PREFIXES.get(record.levelno)
        if prefix is None:
            return message
        return prefix + _escape_data(message)


def configure_logging(*, trace: bool = False, level: str = "INFO", stream: TextIO | None = None) -> logging.Logger:
    """Attach a single :class:`ActionsLogHandler` to the ``persist`` logger."""

    logger = logging.getLogger("persist")
    for handler in list(logger.handlers):
        if isinstance(handler, ActionsLogHandler):
            logger.removeHandler(handler)
    handler = ActionsLogHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if trace else getattr(logging, level.upper(), logging.INFO))
    if trace:
        LOGGER.debug("Trace enabled")
    return logger
