"""Format-preserving edits of the configuration file.

Mutations patch the parsed ``tomlkit`` document in place, so comments and
formatting outside the edited ``[[repos]]`` table survive byte for byte.
``persist`` writes to a temporary file in the same directory and renames it
over the original, so the file on disk is either fully updated or untouched.
"""

from __future__ import annotations

import logging
import os
import re
import stat
import tempfile
from dataclasses import replace
from pathlib import Path

import tomlkit
from tomlkit.items import AoT, Array, Comment, Table, Whitespace

from .config import Config, parse_config, read_config_text
from .errors import ConfigError, PersistError
from .models import RepositoryEntry
from .registry import Registry

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = """\
# mgit configuration
#
# root = "~/src"            # base directory for relative repository paths
#
# [defaults]
# default-branch = "main"
# default-remote = "origin"
# shell = "sh"
# editor = "code"           # program for `mgit edit`
# jobs = 0                  # 0 = number of CPUs
# order = "input"           # or "completion"
#
# [settings."vendor/*"]
# ignore = true
#
# [[repos]]
# name = "api"
# path = "api"
# remotes = { origin = "git@example.com:me/api.git" }
# tags = ["work"]
"""

_UNSET = object()


class ConfigEditor:
    """Apply registry mutations to a configuration file.

    Mutations take effect in memory immediately; nothing is written until
    ``persist`` succeeds. A failed ``persist`` rolls the editor back to the
    last state that was written.
    """

    def __init__(self, path: Path, text: str):
        self.path = path
        self._persisted_text = text
        self._config = parse_config(text, path)
        self._document = self._config.document

    @classmethod
    def load(cls, path: Path) -> ConfigEditor:
        return cls(path, read_config_text(path))

    @classmethod
    def create(cls, path: Path) -> ConfigEditor:
        """Start a new configuration that does not exist on disk yet."""
        if path.exists():
            raise ConfigError("config file already exists", path)
        editor = cls(path, DEFAULT_CONFIG)
        editor._persisted_text = ""
        return editor

    @property
    def config(self) -> Config:
        return self._config

    @property
    def registry(self) -> Registry:
        return self._config.registry

    @property
    def text(self) -> str:
        return self._document.as_string()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add(self, entry: RepositoryEntry) -> Registry:
        """Append ``entry``.

        Raises:
            DuplicateError: The name or path is already registered.
        """
        registry = self.registry.add(entry)
        self._repos(create=True).append(self._entry_table(entry))
        logger.info("added `%s` at `%s`", entry.name, entry.path)
        return self._update(registry)

    def remove(self, name: str) -> Registry:
        """Remove the entry called ``name``.

        Raises:
            NotFoundError: No such entry.
        """
        index = self.registry.index_of(name)
        registry = self.registry.remove(name)
        repos = self._repos()
        _carry_trailing_trivia(repos, index)
        del repos[index]
        logger.info("removed `%s`", name)
        return self._update(registry)

    def edit(
        self,
        name: str,
        *,
        add_tags: tuple[str, ...] = (),
        remove_tags: tuple[str, ...] = (),
        branch: object = _UNSET,
        ignore: bool | None = None,
    ) -> Registry:
        """Change tags, branch policy or ignore flag of one entry.

        ``branch=None`` clears the branch policy; leaving it out keeps it.

        Raises:
            NotFoundError: No such entry.
        """
        index = self.registry.index_of(name)
        entry = self.registry.entries[index]
        table = self._repos()[index]

        tags = [str(t) for t in table.get("tags", []) if t not in remove_tags]
        tags += [t for t in add_tags if t not in tags]
        if add_tags or remove_tags:
            if tags:
                table["tags"] = tags
            elif "tags" in table:
                del table["tags"]
        entry = replace(entry, tags=frozenset(tags))

        if branch is not _UNSET:
            if branch is None:
                if "branch" in table:
                    del table["branch"]
            else:
                table["branch"] = str(branch)
            entry = replace(entry, branch=branch)

        if ignore is not None:
            if ignore:
                table["ignore"] = True
            elif "ignore" in table:
                del table["ignore"]
            entry = replace(entry, ignore=ignore)

        return self._update(self.registry.replace(name, entry))

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def persist(self) -> None:
        """Atomically write the document back to ``self.path``.

        Raises:
            PersistError: The write failed. The previous file is unchanged and
                the editor is rolled back to it.
        """
        content = self.text
        temp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=self.path.parent,
                delete=False,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                encoding="utf-8",
            ) as f:
                temp_path = Path(f.name)
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            # NamedTemporaryFile creates the file as 0600
            os.chmod(temp_path, self._file_mode())

            # Path.replace() is atomic on both POSIX and Windows
            temp_path.replace(self.path)
        except OSError as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            self._rollback()
            raise PersistError(self.path, e) from e

        logger.debug("wrote config to `%s`", self.path)
        self._persisted_text = content

    def _file_mode(self) -> int:
        """Mode of the existing file, or what a fresh file gets under the umask."""
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            umask = os.umask(0)
            os.umask(umask)
            return 0o666 & ~umask

    def _rollback(self) -> None:
        text = self._persisted_text or DEFAULT_CONFIG
        self._config = parse_config(text, self.path)
        self._document = self._config.document

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _update(self, registry: Registry) -> Registry:
        self._config = self._config.with_registry(registry)
        return registry

    def _repos(self, create: bool = False) -> AoT:
        repos = self._document.get("repos")
        if repos is None or (isinstance(repos, Array) and not repos and create):
            if not create:
                raise ConfigError("no `[[repos]]` tables to edit", self.path)
            self._document["repos"] = tomlkit.aot()
            repos = self._document["repos"]
        if not isinstance(repos, AoT):
            raise ConfigError("`repos` must be written as `[[repos]]` tables to be edited", self.path)
        return repos

    def _entry_table(self, entry: RepositoryEntry) -> Table:
        table = tomlkit.table()
        table.add("name", entry.name)
        table.add("path", self._serialize_path(entry.path))
        if entry.remotes:
            remotes = tomlkit.inline_table()
            remotes.update(entry.remotes)
            table.add("remotes", remotes)
        if entry.tags:
            table.add("tags", sorted(entry.tags))
        if entry.branch:
            table.add("branch", entry.branch)
        if entry.ignore:
            table.add("ignore", True)
        return table

    def _serialize_path(self, path: Path) -> str:
        """Store paths under the root relative to it, others absolute."""
        relative = self._config.relative_path(path)
        return relative.as_posix() if not relative.is_absolute() else str(path)


_LEADING_BLANK_LINES = re.compile(r"\A(?:[ \t]*\r?\n)+")


def _trailing_trivia(table: Table) -> list[Comment | Whitespace]:
    """Comments and blank lines after the last key of ``table``.

    tomlkit attaches a comment written above a ``[[repos]]`` header to the
    table before it.
    """
    body = table.value.body
    if body and isinstance(body[-1][1], Table):
        return _trailing_trivia(body[-1][1])
    index = len(body)
    while index:
        key, item = body[index - 1]
        if key is not None or not isinstance(item, (Comment, Whitespace)):
            break
        index -= 1
    return [item for _, item in body[index:]]


def _carry_trailing_trivia(repos: AoT, index: int) -> None:
    """Hand the trailing comments of ``repos[index]`` to its neighbour before it is deleted."""
    trailing = _trailing_trivia(repos[index])
    if not any(isinstance(item, Comment) for item in trailing):
        return
    if index + 1 < len(repos):
        following = repos[index + 1]
        text = "".join(item.as_string() for item in trailing)
        following.trivia.indent = _LEADING_BLANK_LINES.sub("", text) + following.trivia.indent
    elif index > 0:
        previous = repos[index - 1]
        for item in trailing:
            previous.add(item)
