"""Exception hierarchy for mgit.

Fatal errors (configuration, selection, persistence) abort a command before
any repository work begins. ``RepositoryError`` is the only per-repository
error; the operations layer turns it into a ``Failed`` outcome.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ErrorKind, ExitOutcome


class MgitError(Exception):
    """Base class for all mgit errors."""


# =============================================================================
# Fatal errors
# =============================================================================


class ConfigError(MgitError):
    """Configuration file is unreadable or malformed."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class NotInitializedError(ConfigError):
    """No configuration file exists at the resolved location."""

    def __init__(self, path: Path):
        super().__init__("config file not found (run `mgit init` to create it)", path)


class SelectionError(MgitError):
    """A selection pattern could not be used."""


class InvalidPattern(SelectionError):
    """A selection pattern could not be compiled."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"invalid pattern `{pattern}`: {reason}")


class PersistError(MgitError):
    """Writing the configuration file failed; the previous file is untouched."""

    def __init__(self, path: Path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"failed to write config file `{path}`: {cause}")


class LaunchError(MgitError):
    """The editor program could not be started."""

    def __init__(self, program: str, cause: Exception):
        self.program = program
        self.cause = cause
        super().__init__(f"failed to launch editor `{program}`: {cause}")


# =============================================================================
# Registry errors
# =============================================================================


class RegistryError(MgitError):
    """Registry lookup or mutation failed."""


class DuplicateError(RegistryError):
    """An entry with the same name or path is already registered."""

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"a repository with {field} `{value}` already exists")


class NotFoundError(RegistryError):
    """No entry matches the given name."""

    def __init__(self, name: str, suggestions: list[str] | None = None):
        self.name = name
        self.suggestions = suggestions or []
        message = f"no repository named `{name}`"
        if self.suggestions:
            message += f"\ndid you mean one of these: {', '.join(self.suggestions)}?"
        super().__init__(message)


class AmbiguousNameError(RegistryError):
    """A name prefix matches more than one entry."""

    def __init__(self, prefix: str, candidates: list[str]):
        self.prefix = prefix
        self.candidates = candidates
        super().__init__(
            f"ambiguous name `{prefix}` (could match any of: {', '.join(candidates)})"
        )


# =============================================================================
# Per-repository errors
# =============================================================================


class RepositoryError(MgitError):
    """A git operation on one repository failed.

    Attributes:
        kind: Stable classification of the failure.
        message: Human readable description, usually git's own stderr.
        exit_code: Exit status of the failed process, when there was one.
        output: Captured output of a failed external command, when there was one.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        exit_code: int | None = None,
        output: ExitOutcome | None = None,
    ):
        self.kind = kind
        self.message = message
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)
