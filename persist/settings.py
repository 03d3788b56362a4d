"""Configuration helpers bound to python-decouple."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv


@dataclass(frozen=True)
class HostEnvironment:
    """Values supplied by the CI platform for the current run."""

    repository: str
    ref_name: str
    run_id: str
    workspace: Path


@dataclass(frozen=True)
class ReportLimits:
    max_entries: int
    max_depth: int


@dataclass(frozen=True)
class ReportSettings:
    """Traversal caps for the pre-cleanup sanity report."""

    default: ReportLimits
    verbose: ReportLimits
    trace: ReportLimits

    def limits_for(self, *, verbose: bool, trace: bool) -> ReportLimits:
        if trace:
            return self.trace
        if verbose:
            return self.verbose
        return self.default


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    warning_log_path: Path | None


@dataclass(frozen=True)
class Settings:
    env_path: str
    host: HostEnvironment
    report: ReportSettings
    logging: LoggingSettings


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a decouple config object anchored to the repository .env file.

    Real environment variables always win; the ``.env`` file only fills gaps and
    is optional.
    """

    if Path(env_path).is_file():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


def get_settings(env_path: str = ".env") -> Settings:
    """Build a fresh settings snapshot from the environment."""

    config = load_config(env_path)
    host = HostEnvironment(
        repository=config("GITHUB_REPOSITORY", default="").strip(),
        ref_name=config("GITHUB_REF_NAME", default="").strip(),
        run_id=config("GITHUB_RUN_ID", default="").strip(),
        workspace=Path(config("GITHUB_WORKSPACE", default="") or os.getcwd()),
    )
    report = ReportSettings(
        default=ReportLimits(
            max_entries=config("PERSIST_REPORT_MAX_ENTRIES", default=120, cast=int),
            max_depth=config("PERSIST_REPORT_MAX_DEPTH", default=3, cast=int),
        ),
        verbose=ReportLimits(max_entries=300, max_depth=5),
        trace=ReportLimits(max_entries=1000, max_depth=10),
    )
    warning_log = config("PERSIST_WARNING_LOG", default="")
    logging_settings = LoggingSettings(
        level=config("PERSIST_LOG_LEVEL", default="INFO").upper(),
        warning_log_path=Path(warning_log) if warning_log else None,
    )
    return Settings(env_path=env_path, host=host, report=report, logging=logging_settings)
