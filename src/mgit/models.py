"""Domain models shared by the registry, the git adapter and the executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

# =============================================================================
# Registry entries
# =============================================================================


@dataclass(frozen=True)
class RepositoryEntry:
    """One declared repository.

    ``path`` is always absolute and normalized; the registry guarantees that
    both ``name`` and ``path`` are unique.
    """

    name: str
    path: Path
    remotes: dict[str, str] = field(default_factory=dict, hash=False, compare=True)
    tags: frozenset[str] = frozenset()
    branch: str | None = None
    ignore: bool = False

    @property
    def default_remote_url(self) -> str:
        if "origin" in self.remotes:
            return self.remotes["origin"]
        return next(iter(self.remotes.values()), "")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "remotes": dict(self.remotes),
            "tags": sorted(self.tags),
            "branch": self.branch,
            "ignore": self.ignore,
        }


# =============================================================================
# Outcomes
# =============================================================================


class OutcomeKind(StrEnum):
    """Top-level result of one operation on one repository."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorKind(StrEnum):
    """Stable classification of per-repository failures."""

    NOT_A_REPOSITORY = "not_a_repository"
    CORRUPT_REPOSITORY = "corrupt_repository"
    NETWORK_FAILURE = "network_failure"
    AUTH_FAILURE = "auth_failure"
    DIRTY_WORKING_TREE = "dirty_working_tree"
    EXTERNAL_COMMAND_NON_ZERO_EXIT = "external_command_non_zero_exit"
    NO_UPSTREAM = "no_upstream"
    WRONG_BRANCH = "wrong_branch"
    NOT_FAST_FORWARD = "not_fast_forward"
    GIT_ERROR = "git_error"
    INTERNAL_ERROR = "internal_error"

    @property
    def is_transient(self) -> bool:
        return self is ErrorKind.NETWORK_FAILURE


@dataclass(frozen=True)
class OperationOutcome:
    """Tagged result for one repository: success, failure or skip."""

    kind: OutcomeKind
    payload: Any = None
    error_kind: ErrorKind | None = None
    message: str = ""

    @classmethod
    def success(cls, payload: Any = None) -> OperationOutcome:
        return cls(OutcomeKind.SUCCESS, payload=payload)

    @classmethod
    def failed(
        cls, error_kind: ErrorKind, message: str, payload: Any = None
    ) -> OperationOutcome:
        return cls(OutcomeKind.FAILED, payload=payload, error_kind=error_kind, message=message)

    @classmethod
    def skipped(cls, reason: str) -> OperationOutcome:
        return cls(OutcomeKind.SKIPPED, message=reason)

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.kind == OutcomeKind.FAILED

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"kind": self.kind.value}
        if self.kind == OutcomeKind.SUCCESS:
            data["result"] = self.payload.to_dict() if hasattr(self.payload, "to_dict") else None
        elif self.kind == OutcomeKind.FAILED:
            data["error"] = self.error_kind.value if self.error_kind else None
            data["message"] = self.message
            if hasattr(self.payload, "to_dict"):
                data["output"] = self.payload.to_dict()
        else:
            data["reason"] = self.message
        return data


@dataclass(frozen=True)
class FleetResult:
    """An outcome tagged with its entry and its position in the input."""

    index: int
    entry: RepositoryEntry
    outcome: OperationOutcome

    def to_dict(self) -> dict:
        return {
            "name": self.entry.name,
            "path": str(self.entry.path),
            **self.outcome.to_dict(),
        }


# =============================================================================
# Operation payloads
# =============================================================================


class UpstreamState(StrEnum):
    """Relationship between the current branch and its upstream."""

    NONE = "none"
    TRACKING = "tracking"
    GONE = "gone"


class SyncStatus(StrEnum):
    """Repository sync status with remote."""

    CLEAN = "clean"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    NO_UPSTREAM = "no_upstream"
    GONE = "gone"
    DETACHED = "detached"


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time status of a repository's HEAD, upstream and work tree."""

    branch: str = ""
    detached: bool = False
    upstream: str = ""
    upstream_state: UpstreamState = UpstreamState.NONE
    ahead_count: int = 0
    behind_count: int = 0
    staged_count: int = 0
    unstaged_count: int = 0
    untracked_count: int = 0
    conflicted_count: int = 0
    last_commit_date: datetime | None = None

    @property
    def is_dirty(self) -> bool:
        """Tracked changes in the index or work tree (untracked files excluded)."""
        return self.staged_count > 0 or self.unstaged_count > 0 or self.conflicted_count > 0

    @property
    def sync_status(self) -> SyncStatus:
        if self.detached:
            return SyncStatus.DETACHED
        if self.upstream_state == UpstreamState.NONE:
            return SyncStatus.NO_UPSTREAM
        if self.upstream_state == UpstreamState.GONE:
            return SyncStatus.GONE
        if self.ahead_count > 0 and self.behind_count > 0:
            return SyncStatus.DIVERGED
        if self.ahead_count > 0:
            return SyncStatus.AHEAD
        if self.behind_count > 0:
            return SyncStatus.BEHIND
        return SyncStatus.CLEAN

    def describe(self) -> str:
        head = f"({self.branch})" if self.detached else self.branch
        parts = [head, self.sync_status.value.replace("_", " ")]
        if self.is_dirty or self.untracked_count:
            parts.append("dirty")
        return ", ".join(parts)

    def to_dict(self) -> dict:
        return {
            "branch": self.branch,
            "detached": self.detached,
            "upstream": self.upstream,
            "upstream_state": self.upstream_state.value,
            "sync_status": self.sync_status.value,
            "ahead_count": self.ahead_count,
            "behind_count": self.behind_count,
            "staged_count": self.staged_count,
            "unstaged_count": self.unstaged_count,
            "untracked_count": self.untracked_count,
            "conflicted_count": self.conflicted_count,
            "last_commit_date": (
                self.last_commit_date.isoformat() if self.last_commit_date else None
            ),
        }


@dataclass(frozen=True)
class FetchResult:
    """Result of fetching one remote (or all of them)."""

    remote: str
    updated_refs: int = 0

    def describe(self) -> str:
        if self.updated_refs == 0:
            return f"fetched {self.remote}, no new refs"
        return f"fetched {self.remote}, {self.updated_refs} ref(s) updated"

    def to_dict(self) -> dict:
        return {"remote": self.remote, "updated_refs": self.updated_refs}


class SyncState(StrEnum):
    """What a sync did to the current branch."""

    UP_TO_DATE = "up_to_date"
    FAST_FORWARDED = "fast_forwarded"


@dataclass(frozen=True)
class SyncResult:
    state: SyncState
    branch: str
    switched: bool = False

    def describe(self) -> str:
        if self.state == SyncState.FAST_FORWARDED:
            text = f"fast-forwarded branch `{self.branch}`"
        else:
            text = f"branch `{self.branch}` is up to date"
        if self.switched:
            text = f"switched to `{self.branch}`; {text}"
        return text

    def to_dict(self) -> dict:
        return {"state": self.state.value, "branch": self.branch, "switched": self.switched}


@dataclass(frozen=True)
class CheckoutResult:
    ref: str
    previous: str = ""

    def describe(self) -> str:
        if self.previous == self.ref:
            return f"already on `{self.ref}`"
        return f"checked out `{self.ref}`"

    def to_dict(self) -> dict:
        return {"ref": self.ref, "previous": self.previous}


@dataclass(frozen=True)
class ExitOutcome:
    """Exit status and captured output of an external command."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        """Everything the command printed, stdout first."""
        return "\n".join(text.rstrip("\n") for text in (self.stdout, self.stderr) if text.strip())

    def describe(self) -> str:
        return f"exited with {self.exit_code}"

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }
