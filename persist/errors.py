"""Exception taxonomy shared by every phase."""

from __future__ import annotations


class PersistError(Exception):
    """Base class for failures that terminate a pre/main phase."""


class ConfigurationError(PersistError):
    """Bad mode/scope/link value, store path, or environment."""


class InvalidPatternError(ConfigurationError):
    """A file pattern is absolute or walks out of its root with ``..``."""


PatternInvalidError = InvalidPatternError


class StoreUnavailableError(PersistError):
    """The store root is not mounted or does not accept writes."""
