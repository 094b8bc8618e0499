"""Compile selection patterns into predicates over registry entries.

Pattern syntax::

    api|web             name contains "api" OR name contains "web"
    b* c*               name matches b* AND name matches c*
    tag:work !tag:old   tagged "work" and not tagged "old"
    tag:work,backend    tagged both "work" and "backend"
    path:/srv/*         absolute path glob (also any bare term with a "/")
    name:svc-?          explicit name glob
    =api                exact name; also selects the entry when ignored

Name globs and substrings are case-insensitive; paths and tags are not.
`|`, `,` and spaces inside a `[...]` class belong to the class.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from fnmatch import translate

from .errors import InvalidPattern
from .models import RepositoryEntry

GLOB_CHARS = frozenset("*?[")
PREFIXES = ("tag", "path", "name")

Predicate = Callable[[RepositoryEntry], bool]


@dataclass(frozen=True)
class Term:
    """One compiled term of an alternative."""

    predicate: Predicate
    negated: bool = False
    exact_name: str | None = None

    def __call__(self, entry: RepositoryEntry) -> bool:
        return self.predicate(entry) != self.negated


@dataclass(frozen=True)
class SelectionPredicate:
    """An immutable compiled pattern; safe to share between threads."""

    pattern: str
    alternatives: tuple[tuple[Term, ...], ...]

    @property
    def matches_all(self) -> bool:
        return not self.alternatives

    def __call__(self, entry: RepositoryEntry) -> bool:
        if self.matches_all:
            return True
        return any(all(term(entry) for term in terms) for terms in self.alternatives)

    def names_explicitly(self, entry: RepositoryEntry) -> bool:
        """True if an alternative selecting ``entry`` names it with ``=name``."""
        return any(
            all(term(entry) for term in terms)
            and any(t.exact_name == entry.name and not t.negated for t in terms)
            for terms in self.alternatives
        )


def compile_pattern(pattern: str) -> SelectionPredicate:
    """Compile ``pattern``; an empty pattern selects every entry.

    Raises:
        InvalidPattern: The expression is malformed.
    """
    if not pattern.strip():
        return SelectionPredicate(pattern, ())

    alternatives = []
    for alternative in _split_outside_classes(pattern, lambda char: char == "|"):
        words = [word for word in _split_outside_classes(alternative, str.isspace) if word]
        if not words:
            raise InvalidPattern(pattern, "empty alternative")
        alternatives.append(tuple(_compile_term(pattern, word) for word in words))
    return SelectionPredicate(pattern, tuple(alternatives))


def select(
    entries: Iterable[RepositoryEntry],
    pattern: str | SelectionPredicate = "",
    *,
    include_ignored: bool = False,
    is_ignored: Predicate | None = None,
) -> list[RepositoryEntry]:
    """Return the matching entries, in registry order.

    Args:
        entries: Registry (or any ordered iterable of entries).
        pattern: Pattern text or an already compiled predicate.
        include_ignored: Keep entries that are marked as ignored.
        is_ignored: How to decide that an entry is ignored; defaults to the
            entry's own ``ignore`` flag.
    """
    predicate = pattern if isinstance(pattern, SelectionPredicate) else compile_pattern(pattern)
    ignored = is_ignored or (lambda entry: entry.ignore)

    selected = []
    for entry in entries:
        if not predicate(entry):
            continue
        if not include_ignored and ignored(entry) and not predicate.names_explicitly(entry):
            continue
        selected.append(entry)
    return selected


# =============================================================================
# Term compilation
# =============================================================================


def _compile_term(pattern: str, word: str) -> Term:
    negated = word.startswith("!")
    if negated:
        word = word[1:]
    if not word:
        raise InvalidPattern(pattern, "empty term after `!`")

    if word.startswith("="):
        name = word[1:]
        if not name:
            raise InvalidPattern(pattern, "empty name after `=`")
        return Term(lambda entry: entry.name == name, negated, exact_name=name)

    if word.startswith("#"):
        return Term(_tag_predicate(pattern, word[1:]), negated)

    prefix, sep, value = word.partition(":")
    # A single letter is a drive (C:/src), not a prefix
    if sep and prefix.isalpha() and len(prefix) > 1:
        if prefix not in PREFIXES:
            raise InvalidPattern(pattern, f"unknown prefix `{prefix}:`")
        if not value:
            raise InvalidPattern(pattern, f"empty value after `{prefix}:`")
        if prefix == "tag":
            return Term(_tag_predicate(pattern, value), negated)
        if prefix == "path":
            return Term(_path_predicate(pattern, value), negated)
        return Term(_name_predicate(pattern, value), negated)

    if "/" in word:
        return Term(_path_predicate(pattern, word), negated)
    if GLOB_CHARS & set(word):
        return Term(_name_predicate(pattern, word), negated)

    needle = word.casefold()
    return Term(lambda entry: needle in entry.name.casefold(), negated)


def _compile_glob(pattern: str, glob: str, flags: int = 0) -> re.Pattern[str]:
    _check_brackets(pattern, glob)
    return re.compile(translate(glob), flags)


def _class_end(text: str, start: int) -> int:
    """Index of the ``]`` closing the class opened at ``start``, or -1."""
    j = start + 1
    if j < len(text) and text[j] in "!^":
        j += 1
    if j < len(text) and text[j] == "]":
        j += 1
    return text.find("]", j)


def _split_outside_classes(text: str, is_separator: Callable[[str], bool]) -> list[str]:
    """Split ``text`` at separators, leaving ``[...]`` classes whole."""
    parts = []
    start = i = 0
    while i < len(text):
        if text[i] == "[":
            end = _class_end(text, i)
            if end != -1:
                i = end + 1
                continue
        if is_separator(text[i]):
            parts.append(text[start:i])
            start = i + 1
        i += 1
    parts.append(text[start:])
    return parts


def _check_brackets(pattern: str, glob: str) -> None:
    """Reject unterminated ``[`` classes, which fnmatch would treat literally."""
    i = 0
    while i < len(glob):
        if glob[i] == "[":
            end = _class_end(glob, i)
            if end == -1:
                raise InvalidPattern(pattern, f"unterminated character class in `{glob}`")
            i = end
        i += 1


def _name_predicate(pattern: str, glob: str) -> Predicate:
    regex = _compile_glob(pattern, glob, re.IGNORECASE)
    return lambda entry: regex.match(entry.name) is not None


def _path_predicate(pattern: str, glob: str) -> Predicate:
    regex = _compile_glob(pattern, glob)
    return lambda entry: regex.match(entry.path.as_posix()) is not None


def _tag_predicate(pattern: str, value: str) -> Predicate:
    globs = _split_outside_classes(value, lambda char: char == ",")
    if not all(globs):
        raise InvalidPattern(pattern, f"empty tag in `{value}`")
    regexes = [_compile_glob(pattern, glob) for glob in globs]
    return lambda entry: all(
        any(regex.match(tag) for tag in entry.tags) for regex in regexes
    )
