"""Built-in fleet operations.

Each factory returns an ``Operation``: a function from a registry entry to
an ``OperationOutcome``. The repository handle is opened and released inside
the operation, so it never leaves the worker thread that runs it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .config import Settings
from .errors import RepositoryError
from .executor import Operation
from .git import GitAdapter, RepositoryHandle, Shell
from .models import OperationOutcome, RepositoryEntry

logger = logging.getLogger(__name__)

SettingsLookup = Callable[[RepositoryEntry], Settings]


def entry_settings(entry: RepositoryEntry) -> Settings:
    """Settings derived from the entry alone, for use without a config."""
    return Settings(default_branch=entry.branch, ignore=entry.ignore)


def run_with_handle(
    adapter: GitAdapter,
    entry: RepositoryEntry,
    action: Callable[[RepositoryHandle], Any],
) -> OperationOutcome:
    """Open the entry's repository, run ``action`` and classify the result."""
    try:
        with adapter.open(entry.path) as handle:
            payload = action(handle)
    except RepositoryError as e:
        logger.info("%s: %s (%s)", entry.name, e.message, e.kind.value)
        return OperationOutcome.failed(e.kind, e.message, e.output)
    return OperationOutcome.success(payload)


def status_operation(
    adapter: GitAdapter,
    fetch_first: bool = False,
    settings_for: SettingsLookup = entry_settings,
) -> Operation:
    """Report HEAD, upstream and work tree state, optionally fetching first."""

    def action(entry: RepositoryEntry) -> OperationOutcome:
        def status(handle: RepositoryHandle):
            if fetch_first:
                adapter.fetch(handle, settings_for(entry).default_remote)
            return adapter.status(handle)

        return run_with_handle(adapter, entry, status)

    return action


def fetch_operation(
    adapter: GitAdapter,
    remote: str | None = None,
    settings_for: SettingsLookup = entry_settings,
) -> Operation:
    """Fetch ``remote``, else the configured default remote, else every remote."""

    def action(entry: RepositoryEntry) -> OperationOutcome:
        target = remote or settings_for(entry).default_remote
        return run_with_handle(adapter, entry, lambda handle: adapter.fetch(handle, target))

    return action


def sync_operation(
    adapter: GitAdapter,
    switch: bool = False,
    settings_for: SettingsLookup = entry_settings,
) -> Operation:
    """Fetch and fast-forward onto the upstream of the default branch."""

    def action(entry: RepositoryEntry) -> OperationOutcome:
        settings = settings_for(entry)
        return run_with_handle(
            adapter,
            entry,
            lambda handle: adapter.sync(
                handle,
                remote=settings.default_remote,
                branch=settings.default_branch,
                switch=switch,
            ),
        )

    return action


def checkout_operation(adapter: GitAdapter, ref: str) -> Operation:
    def action(entry: RepositoryEntry) -> OperationOutcome:
        return run_with_handle(adapter, entry, lambda handle: adapter.checkout(handle, ref))

    return action


def exec_operation(
    adapter: GitAdapter,
    command: list[str],
    shell: Shell | None = None,
    settings_for: SettingsLookup = entry_settings,
) -> Operation:
    """Run ``command`` in each work tree; a non-zero exit is a failure."""
    if not command:
        raise ValueError("empty command")

    def action(entry: RepositoryEntry) -> OperationOutcome:
        chosen = shell or settings_for(entry).shell or Shell.default()
        return run_with_handle(
            adapter, entry, lambda handle: adapter.run(handle, command, chosen)
        )

    return action
