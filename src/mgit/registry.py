"""Ordered, uniquely keyed collection of repository entries."""

from __future__ import annotations

import difflib
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from .errors import AmbiguousNameError, DuplicateError, NotFoundError
from .models import RepositoryEntry

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 4
SUGGESTION_CUTOFF = 0.6


class Registry:
    """Declared repositories in insertion order.

    Registries are treated as values: ``add``, ``remove`` and ``replace``
    return a new registry and leave the receiver untouched, so a registry
    handed to the executor can be shared between workers without locking.
    """

    def __init__(self, entries: Iterable[RepositoryEntry] = ()):
        self._entries: tuple[RepositoryEntry, ...] = ()
        self._by_name: dict[str, int] = {}
        self._by_path: dict[Path, int] = {}
        for entry in entries:
            self._append(entry)

    def _append(self, entry: RepositoryEntry) -> None:
        if entry.name in self._by_name:
            raise DuplicateError("name", entry.name)
        if entry.path in self._by_path:
            raise DuplicateError("path", str(entry.path))
        index = len(self._entries)
        self._entries = (*self._entries, entry)
        self._by_name[entry.name] = index
        self._by_path[entry.path] = index

    def __iter__(self) -> Iterator[RepositoryEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __repr__(self) -> str:
        return f"Registry({[e.name for e in self._entries]!r})"

    @property
    def entries(self) -> tuple[RepositoryEntry, ...]:
        return self._entries

    @property
    def names(self) -> list[str]:
        return [e.name for e in self._entries]

    def index_of(self, name: str) -> int:
        try:
            return self._by_name[name]
        except KeyError:
            raise NotFoundError(name, self.suggest(name)) from None

    def get(self, name: str) -> RepositoryEntry:
        return self._entries[self.index_of(name)]

    def find_by_path(self, path: Path) -> RepositoryEntry | None:
        index = self._by_path.get(path)
        return None if index is None else self._entries[index]

    # -------------------------------------------------------------------------
    # Mutations (return new registries)
    # -------------------------------------------------------------------------

    def add(self, entry: RepositoryEntry) -> Registry:
        registry = Registry(self._entries)
        registry._append(entry)
        return registry

    def remove(self, name: str) -> Registry:
        index = self.index_of(name)
        return Registry(e for i, e in enumerate(self._entries) if i != index)

    def replace(self, name: str, entry: RepositoryEntry) -> Registry:
        index = self.index_of(name)
        entries = list(self._entries)
        entries[index] = entry
        return Registry(entries)

    # -------------------------------------------------------------------------
    # Name resolution
    # -------------------------------------------------------------------------

    def resolve(self, name: str) -> RepositoryEntry:
        """Resolve an exact name or a unique name prefix.

        An exact match always wins, even when the name is also a prefix of
        other entries.

        Raises:
            AmbiguousNameError: The prefix matches several entries.
            NotFoundError: Nothing matches; carries close-match suggestions.
        """
        if name in self._by_name:
            return self.get(name)

        candidates = sorted(e.name for e in self._entries if e.name.startswith(name))
        if len(candidates) == 1:
            logger.debug("resolved `%s` to `%s`", name, candidates[0])
            return self.get(candidates[0])
        if candidates:
            raise AmbiguousNameError(name, candidates)
        raise NotFoundError(name, self.suggest(name))

    def suggest(self, name: str) -> list[str]:
        return difflib.get_close_matches(
            name, self.names, n=MAX_SUGGESTIONS, cutoff=SUGGESTION_CUTOFF
        )
