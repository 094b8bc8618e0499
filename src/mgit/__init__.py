"""mgit: run git operations across a registered fleet of repositories."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .cli import app
from .config import Config, Settings, load_config, resolve_config_path
from .editor import ConfigEditor
from .errors import (
    AmbiguousNameError,
    ConfigError,
    DuplicateError,
    InvalidPattern,
    MgitError,
    NotFoundError,
    NotInitializedError,
    PersistError,
    RepositoryError,
)
from .executor import FleetExecutor, ResultOrder
from .formatters import OutputFormatter
from .git import GitAdapter, RepositoryHandle, Shell
from .models import (
    ErrorKind,
    FleetResult,
    OperationOutcome,
    OutcomeKind,
    RepositoryEntry,
    StatusSnapshot,
    SyncStatus,
)
from .registry import Registry
from .report import FleetReport, FleetSummary, aggregate
from .schema import get_tool_schema
from .selector import compile_pattern, select

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "ErrorKind",
    "FleetResult",
    "OperationOutcome",
    "OutcomeKind",
    "RepositoryEntry",
    "StatusSnapshot",
    "SyncStatus",
    # Registry and config
    "Config",
    "ConfigEditor",
    "Registry",
    "Settings",
    # Execution
    "FleetExecutor",
    "FleetReport",
    "FleetSummary",
    "GitAdapter",
    "RepositoryHandle",
    "ResultOrder",
    "Shell",
    # Errors
    "AmbiguousNameError",
    "ConfigError",
    "DuplicateError",
    "InvalidPattern",
    "MgitError",
    "NotFoundError",
    "NotInitializedError",
    "PersistError",
    "RepositoryError",
    # Functions
    "aggregate",
    "compile_pattern",
    "get_tool_schema",
    "load_config",
    "resolve_config_path",
    "select",
    # Formatters
    "OutputFormatter",
]
