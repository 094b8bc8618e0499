"""Configuration discovery and loading.

The configuration is a TOML file listing the repositories of the fleet plus
default and per-glob settings. It is parsed with ``tomlkit`` so that the
same document can later be edited without disturbing hand-written
formatting (see ``mgit.editor``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError
from tomlkit.toml_document import TOMLDocument

from .errors import ConfigError, DuplicateError, NotInitializedError
from .executor import ResultOrder
from .git import Shell
from .models import RepositoryEntry
from .registry import Registry

logger = logging.getLogger(__name__)

CONFIG_PATH_VAR = "MGIT_CONFIG_PATH"
CONFIG_FILE_NAME = "config.toml"

TOP_LEVEL_KEYS = {"root", "defaults", "settings", "repos"}
DEFAULTS_KEYS = {"default-branch", "default-remote", "shell", "editor", "jobs", "order"}
SETTINGS_KEYS = {"default-branch", "default-remote", "shell", "editor", "ignore"}
ENTRY_KEYS = {"name", "path", "url", "remotes", "tags", "branch", "ignore"}


# =============================================================================
# Discovery
# =============================================================================


def resolve_config_path(override: Path | None = None) -> Path:
    """Resolve the configuration file location.

    Priority order:
    1. Explicit override (the ``--config`` option)
    2. $MGIT_CONFIG_PATH environment variable
    3. $XDG_CONFIG_HOME/mgit/config.toml (defaults to ~/.config)

    The path is returned whether or not the file exists.
    """
    if override is not None:
        return override.expanduser()

    env_path = os.environ.get(CONFIG_PATH_VAR)
    if env_path:
        return Path(env_path).expanduser()

    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    config_home = Path(xdg_home).expanduser() if xdg_home else Path.home() / ".config"
    return config_home / "mgit" / CONFIG_FILE_NAME


def normalize_path(raw: str | Path, base: Path) -> Path:
    """Expand variables and ``~``, anchor relative paths at ``base`` and normalize."""
    expanded = Path(os.path.expandvars(str(raw))).expanduser()
    if not expanded.is_absolute():
        expanded = base / expanded
    return Path(os.path.normpath(expanded))


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True)
class Settings:
    """Effective per-repository settings; ``None`` means unset."""

    default_branch: str | None = None
    default_remote: str | None = None
    shell: Shell | None = None
    editor: str | None = None
    ignore: bool | None = None

    def merge(self, other: Settings) -> Settings:
        """Return a copy where every value set in ``other`` wins."""
        return Settings(
            default_branch=other.default_branch or self.default_branch,
            default_remote=other.default_remote or self.default_remote,
            shell=other.shell or self.shell,
            editor=other.editor or self.editor,
            ignore=self.ignore if other.ignore is None else other.ignore,
        )


@dataclass(frozen=True)
class Config:
    """A loaded configuration file."""

    path: Path
    root: Path
    registry: Registry
    defaults: Settings = Settings()
    overrides: tuple[tuple[str, Settings], ...] = ()
    jobs: int = 0
    order: ResultOrder = ResultOrder.INPUT
    document: TOMLDocument = field(default_factory=tomlkit.document, repr=False, compare=False)

    def relative_path(self, path: Path) -> Path:
        try:
            return path.relative_to(self.root)
        except ValueError:
            return path

    def settings_for(self, entry: RepositoryEntry) -> Settings:
        """Merge defaults, matching glob overrides and the entry's own keys."""
        result = self.defaults
        candidates = (entry.name, self.relative_path(entry.path).as_posix(), entry.path.as_posix())
        for glob, settings in self.overrides:
            if any(fnmatchcase(candidate, glob) for candidate in candidates):
                logger.debug("settings `%s` apply to `%s`", glob, entry.name)
                result = result.merge(settings)
        own = Settings(default_branch=entry.branch, ignore=True if entry.ignore else None)
        return result.merge(own)

    def is_ignored(self, entry: RepositoryEntry) -> bool:
        return bool(self.settings_for(entry).ignore)

    def with_registry(self, registry: Registry) -> Config:
        return replace(self, registry=registry)


# =============================================================================
# Loading
# =============================================================================


def load_config(path: Path) -> Config:
    """Read and parse the configuration file at ``path``.

    Raises:
        NotInitializedError: The file does not exist.
        ConfigError: The file cannot be read or is not a valid configuration.
    """
    return parse_config(read_config_text(path), path)


def read_config_text(path: Path) -> str:
    if not path.exists():
        raise NotInitializedError(path)

    logger.debug("reading config from `%s`", path)
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to read file: {e}", path) from e


def parse_config(text: str, path: Path) -> Config:
    """Parse configuration text that was read from ``path``."""
    try:
        document = tomlkit.parse(text)
    except TOMLKitError as e:
        raise ConfigError(f"failed to parse TOML: {e}", path) from e

    data = document.unwrap()
    _check_keys(data, TOP_LEVEL_KEYS, "top level", path)

    root_value = data.get("root")
    if root_value is not None and not isinstance(root_value, str):
        raise ConfigError("`root` must be a string", path)
    root = normalize_path(root_value, path.parent) if root_value else path.parent.absolute()

    defaults_data = _expect_table(data.get("defaults", {}), "defaults", path)
    _check_keys(defaults_data, DEFAULTS_KEYS, "[defaults]", path)
    defaults = _parse_settings(defaults_data, "[defaults]", path)
    jobs = _parse_jobs(defaults_data.get("jobs", 0), path)
    order = _parse_enum(ResultOrder, defaults_data.get("order", "input"), "order", path)

    overrides = []
    for glob, table in _expect_table(data.get("settings", {}), "settings", path).items():
        context = f'[settings."{glob}"]'
        table = _expect_table(table, context, path)
        _check_keys(table, SETTINGS_KEYS, context, path)
        overrides.append((glob, _parse_settings(table, context, path)))

    repos = data.get("repos", [])
    if not isinstance(repos, list):
        raise ConfigError("`repos` must be an array of tables", path)

    entries = [parse_entry(item, root, path, i) for i, item in enumerate(repos)]
    try:
        registry = Registry(entries)
    except DuplicateError as e:
        raise ConfigError(str(e), path) from e

    return Config(
        path=path,
        root=root,
        registry=registry,
        defaults=defaults,
        overrides=tuple(overrides),
        jobs=jobs,
        order=order,
        document=document,
    )


def parse_entry(item: Any, root: Path, path: Path, index: int = 0) -> RepositoryEntry:
    """Build a ``RepositoryEntry`` from one ``[[repos]]`` table."""
    context = f"repos[{index}]"
    item = _expect_table(item, context, path)
    _check_keys(item, ENTRY_KEYS, context, path)

    raw_path = item.get("path")
    if not isinstance(raw_path, str) or not raw_path:
        raise ConfigError(f"{context}: `path` is required", path)
    entry_path = normalize_path(raw_path, root)

    name = item.get("name", entry_path.name)
    if not isinstance(name, str) or not name:
        raise ConfigError(f"{context}: `name` must be a non-empty string", path)

    remotes: dict[str, str] = {}
    if "url" in item:
        if "remotes" in item:
            raise ConfigError(f"{context}: use either `url` or `remotes`, not both", path)
        remotes["origin"] = _expect_str(item["url"], f"{context}.url", path)
    for remote, url in _expect_table(item.get("remotes", {}), f"{context}.remotes", path).items():
        remotes[remote] = _expect_str(url, f"{context}.remotes.{remote}", path)

    tags = item.get("tags", [])
    if not isinstance(tags, list) or not all(isinstance(t, str) and t for t in tags):
        raise ConfigError(f"{context}: `tags` must be an array of strings", path)

    branch = item.get("branch")
    if branch is not None:
        branch = _expect_str(branch, f"{context}.branch", path)

    ignore = item.get("ignore", False)
    if not isinstance(ignore, bool):
        raise ConfigError(f"{context}: `ignore` must be a boolean", path)

    return RepositoryEntry(
        name=name,
        path=entry_path,
        remotes=remotes,
        tags=frozenset(tags),
        branch=branch,
        ignore=ignore,
    )


def _parse_settings(table: dict, context: str, path: Path) -> Settings:
    ignore = table.get("ignore")
    if ignore is not None and not isinstance(ignore, bool):
        raise ConfigError(f"{context}: `ignore` must be a boolean", path)
    shell = table.get("shell")
    return Settings(
        default_branch=_optional_str(table.get("default-branch"), context, path),
        default_remote=_optional_str(table.get("default-remote"), context, path),
        shell=_parse_enum(Shell, shell, "shell", path) if shell is not None else None,
        editor=_optional_str(table.get("editor"), context, path),
        ignore=ignore,
    )


def _parse_jobs(value: Any, path: Path) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError("`jobs` must be a non-negative integer", path)
    return value


def _parse_enum(enum_type: Any, value: Any, key: str, path: Path) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum_type)
        raise ConfigError(
            f"invalid `{key}` value `{value}` (expected one of: {valid})", path
        ) from None


def _check_keys(table: dict, allowed: set[str], context: str, path: Path) -> None:
    unknown = sorted(set(table) - allowed)
    if unknown:
        raise ConfigError(f"{context}: unknown key(s): {', '.join(unknown)}", path)


def _expect_table(value: Any, context: str, path: Path) -> dict:
    if not isinstance(value, dict):
        raise ConfigError(f"{context}: expected a table", path)
    return value


def _expect_str(value: Any, context: str, path: Path) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{context}: expected a string", path)
    return value


def _optional_str(value: Any, context: str, path: Path) -> str | None:
    if value is None:
        return None
    return _expect_str(value, context, path)
