"""Repository handle adapter over the ``git`` executable.

Every failure of a repository operation is a ``RepositoryError`` with a
stable ``ErrorKind``; callers never see ``subprocess`` or OS exceptions.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import StrEnum
from pathlib import Path

from .errors import LaunchError, RepositoryError
from .models import (
    CheckoutResult,
    ErrorKind,
    ExitOutcome,
    FetchResult,
    StatusSnapshot,
    SyncResult,
    SyncState,
    UpstreamState,
)

logger = logging.getLogger(__name__)

# Matched against lowercased stderr. Auth is checked before network because
# git reports auth problems with generic transport wording as well.
AUTH_PATTERNS = (
    "authentication failed",
    "permission denied (publickey",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid username or password",
    "http basic: access denied",
    "returned error: 401",
    "returned error: 403",
    "host key verification failed",
)
NETWORK_PATTERNS = (
    "could not resolve host",
    "could not resolve hostname",
    "temporary failure in name resolution",
    "connection timed out",
    "operation timed out",
    "connection refused",
    "connection reset",
    "network is unreachable",
    "no route to host",
    "failed to connect",
    "unable to access",
    "the remote end hung up unexpectedly",
    "early eof",
    "could not read from remote repository",
)
CORRUPT_PATTERNS = (
    "corrupt",
    "bad object",
    "bad signature",
    "broken link from",
    "index file smaller than expected",
    "invalid object",
    "unable to read tree",
)
NOT_A_REPOSITORY_PATTERNS = ("not a git repository",)


def classify_git_error(stderr: str) -> ErrorKind:
    """Map git's stderr to an ``ErrorKind``."""
    text = stderr.lower()
    for kind, patterns in (
        (ErrorKind.AUTH_FAILURE, AUTH_PATTERNS),
        (ErrorKind.NETWORK_FAILURE, NETWORK_PATTERNS),
        (ErrorKind.CORRUPT_REPOSITORY, CORRUPT_PATTERNS),
        (ErrorKind.NOT_A_REPOSITORY, NOT_A_REPOSITORY_PATTERNS),
    ):
        if any(pattern in text for pattern in patterns):
            return kind
    return ErrorKind.GIT_ERROR


# =============================================================================
# Shells for external commands
# =============================================================================


class Shell(StrEnum):
    """Shell used to run ``exec`` commands inside a work tree."""

    NONE = "none"
    SH = "sh"
    BASH = "bash"
    CMD = "cmd"
    POWERSHELL = "powershell"
    PWSH = "pwsh"

    @classmethod
    def default(cls) -> Shell:
        return cls.CMD if sys.platform == "win32" else cls.SH

    def argv(self, command: list[str]) -> list[str]:
        """Build the process argument vector for ``command``.

        A single argument is passed to the shell verbatim so that pipes and
        redirections keep working; several arguments are quoted and joined.
        """
        if not command:
            raise ValueError("empty command")
        if self is Shell.NONE:
            return list(command)

        script = command[0] if len(command) == 1 else _join(command, self)
        match self:
            case Shell.SH:
                return ["/bin/sh", "-c", script]
            case Shell.BASH:
                return ["bash", "-c", script]
            case Shell.CMD:
                return ["cmd", "/S", "/C", script]
            case Shell.POWERSHELL:
                return ["powershell", "-Command", script]
            case Shell.PWSH:
                return ["pwsh", "-Command", script]
        raise AssertionError(self)

    def editor_argv(self, program: str, path: Path) -> list[str]:
        """Argument vector that opens ``path`` in ``program``.

        ``program`` may carry its own flags, e.g. ``code --new-window``.
        """
        if self is Shell.NONE:
            return [*shlex.split(program), str(path)]
        return self.argv([f"{program} {_join([str(path)], self)}"])


def _join(command: list[str], shell: Shell) -> str:
    if shell in (Shell.SH, Shell.BASH):
        return shlex.join(command)
    return subprocess.list2cmdline(command)


def launch_editor(program: str, path: Path, shell: Shell) -> subprocess.Popen:
    """Start ``program`` on ``path`` without waiting for it to exit."""
    argv = shell.editor_argv(program, path)
    logger.debug("spawning `%s`", " ".join(argv))
    try:
        process = subprocess.Popen(argv, cwd=path if path.is_dir() else None)
    except OSError as e:
        raise LaunchError(program, e) from e
    logger.debug("spawned editor with PID %d", process.pid)
    return process


# =============================================================================
# Handles
# =============================================================================


class RepositoryHandle:
    """An opened repository, owned by exactly one worker.

    Handles are obtained from ``GitAdapter.open`` and closed when the
    ``with`` block exits.
    """

    def __init__(self, path: Path, git_dir: Path):
        self._path = path
        self._git_dir = git_dir
        self._closed = False

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<RepositoryHandle {self._path} ({state})>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def path(self) -> Path:
        self._check_open()
        return self._path

    @property
    def git_dir(self) -> Path:
        self._check_open()
        return self._git_dir

    def close(self) -> None:
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError(f"repository handle for `{self._path}` is closed")


# =============================================================================
# Adapter
# =============================================================================


class GitAdapter:
    """Uniform operation interface over the git command line."""

    def __init__(self, git: str = "git", env: dict[str, str] | None = None):
        self.git = git
        self.env = dict(os.environ if env is None else env)
        # Never block a worker on a credential prompt; keep messages parseable.
        self.env["GIT_TERMINAL_PROMPT"] = "0"
        self.env["LC_ALL"] = "C"

    def _run(
        self, cwd: Path, *args: str, check: bool = True
    ) -> subprocess.CompletedProcess:
        """Run a git command in ``cwd``.

        With ``check`` a non-zero exit raises a classified ``RepositoryError``.
        """
        logger.debug("running `git %s` in `%s`", " ".join(args), cwd)
        try:
            result = subprocess.run(
                [self.git, *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                env=self.env,
                check=False,
            )
        except FileNotFoundError as e:
            if not cwd.is_dir():
                raise RepositoryError(
                    ErrorKind.NOT_A_REPOSITORY, f"path `{cwd}` does not exist"
                ) from e
            raise RepositoryError(ErrorKind.GIT_ERROR, f"failed to run git: {e}") from e
        except OSError as e:
            raise RepositoryError(
                ErrorKind.NOT_A_REPOSITORY, f"cannot enter `{cwd}`: {e.strerror}"
            ) from e
        if check and result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "git exited with an error"
            raise RepositoryError(classify_git_error(message), message, result.returncode)
        return result

    # -------------------------------------------------------------------------
    # Opening
    # -------------------------------------------------------------------------

    @contextmanager
    def open(self, path: Path) -> Iterator[RepositoryHandle]:
        """Open the repository whose work tree is ``path``.

        Raises:
            RepositoryError: ``NOT_A_REPOSITORY`` when the path is missing or
                holds no repository, ``CORRUPT_REPOSITORY`` when a repository
                is present but git cannot read it.
        """
        handle = self._open(path)
        logger.debug("opened repo at `%s`", path)
        try:
            yield handle
        finally:
            handle.close()

    def _open(self, path: Path) -> RepositoryHandle:
        if not path.exists():
            raise RepositoryError(ErrorKind.NOT_A_REPOSITORY, f"path `{path}` does not exist")
        if not path.is_dir():
            raise RepositoryError(ErrorKind.NOT_A_REPOSITORY, f"path `{path}` is not a directory")

        result = self._run(path, "rev-parse", "--show-toplevel", "--absolute-git-dir", check=False)
        if result.returncode != 0:
            message = result.stderr.strip()
            kind = classify_git_error(message)
            if kind == ErrorKind.NOT_A_REPOSITORY and (path / ".git").exists():
                kind = ErrorKind.CORRUPT_REPOSITORY
            elif kind == ErrorKind.GIT_ERROR and "work tree" in message:
                kind = ErrorKind.NOT_A_REPOSITORY
            raise RepositoryError(kind, message or f"failed to open repo at `{path}`")

        lines = result.stdout.strip().splitlines()
        if len(lines) != 2:
            raise RepositoryError(ErrorKind.CORRUPT_REPOSITORY, f"failed to open repo at `{path}`")
        top_level, git_dir = Path(lines[0]), Path(lines[1])
        if top_level.resolve() != path.resolve():
            raise RepositoryError(
                ErrorKind.NOT_A_REPOSITORY,
                f"`{path}` is not a repository root (inside `{top_level}`)",
            )
        return RepositoryHandle(path, git_dir)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def status(self, handle: RepositoryHandle) -> StatusSnapshot:
        """Read HEAD, upstream and work tree state.

        Uses 'git status --porcelain=v2 --branch' to minimize subprocess calls.
        """
        result = self._run(handle.path, "status", "--porcelain=v2", "--branch")

        info: dict = {
            "branch": "",
            "detached": False,
            "upstream": "",
            "upstream_state": UpstreamState.NONE,
            "ahead_count": 0,
            "behind_count": 0,
            "staged_count": 0,
            "unstaged_count": 0,
            "untracked_count": 0,
            "conflicted_count": 0,
        }
        has_ab = False
        for line in result.stdout.splitlines():
            if line.startswith("# branch.head "):
                head = line[len("# branch.head ") :]
                if head == "(detached)":
                    info["detached"] = True
                else:
                    info["branch"] = head
            elif line.startswith("# branch.upstream "):
                info["upstream"] = line[len("# branch.upstream ") :]
            elif line.startswith("# branch.ab "):
                # Format: # branch.ab +<ahead> -<behind>
                parts = line.split()
                if len(parts) == 4:
                    has_ab = True
                    info["ahead_count"] = abs(int(parts[2]))
                    info["behind_count"] = abs(int(parts[3]))
            elif line.startswith("1 ") or line.startswith("2 "):
                # Changed entry: XY sub mH mI mW hH hI path
                xy = line[2:4]
                if xy[0] != ".":
                    info["staged_count"] += 1
                if xy[1] != ".":
                    info["unstaged_count"] += 1
            elif line.startswith("u "):
                info["conflicted_count"] += 1
            elif line.startswith("? "):
                info["untracked_count"] += 1

        if info["upstream"]:
            # The upstream is configured but the ref no longer exists
            info["upstream_state"] = UpstreamState.TRACKING if has_ab else UpstreamState.GONE
        if info["detached"]:
            info["branch"] = self._describe_head(handle)

        return StatusSnapshot(last_commit_date=self._last_commit_date(handle), **info)

    def _describe_head(self, handle: RepositoryHandle) -> str:
        result = self._run(handle.path, "describe", "--tags", "--always", check=False)
        return result.stdout.strip() if result.returncode == 0 else "HEAD"

    def _last_commit_date(self, handle: RepositoryHandle) -> datetime | None:
        # Fails on an unborn branch
        result = self._run(handle.path, "log", "-1", "--format=%cI", check=False)
        if result.returncode == 0 and result.stdout.strip():
            return datetime.fromisoformat(result.stdout.strip())
        return None

    def remotes(self, handle: RepositoryHandle) -> dict[str, str]:
        """Get all remotes with their fetch URLs, in git's order."""
        result = self._run(handle.path, "remote")
        remotes = {}
        for name in (n.strip() for n in result.stdout.splitlines()):
            if not name:
                continue
            url = self._run(handle.path, "remote", "get-url", name, check=False)
            remotes[name] = url.stdout.strip() if url.returncode == 0 else ""
        return remotes

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def fetch(self, handle: RepositoryHandle, remote: str | None = None) -> FetchResult:
        """Fetch one remote, or every remote when ``remote`` is None."""
        names = list(self.remotes(handle))
        if not names:
            raise RepositoryError(ErrorKind.GIT_ERROR, "no remotes")
        if remote is not None and remote not in names:
            raise RepositoryError(ErrorKind.GIT_ERROR, f"no remote named `{remote}`")

        target = ["--all"] if remote is None else [remote]
        result = self._run(handle.path, "fetch", "--prune", "--tags", *target)
        updated = sum(1 for line in result.stderr.splitlines() if " -> " in line)
        return FetchResult(remote=remote or "all", updated_refs=updated)

    def checkout(self, handle: RepositoryHandle, ref: str) -> CheckoutResult:
        """Check out ``ref``, refusing to touch a dirty work tree."""
        snapshot = self.status(handle)
        if snapshot.is_dirty:
            raise RepositoryError(
                ErrorKind.DIRTY_WORKING_TREE, "working tree has uncommitted changes"
            )
        if not snapshot.detached and snapshot.branch == ref:
            return CheckoutResult(ref=ref, previous=ref)
        self._run(handle.path, "checkout", "--quiet", ref)
        return CheckoutResult(ref=ref, previous=snapshot.branch)

    def create_branch(
        self, handle: RepositoryHandle, name: str, start: str | None = None
    ) -> CheckoutResult:
        """Create branch ``name`` at ``start`` (default HEAD) and switch to it."""
        previous = self.status(handle).branch
        args = ["checkout", "--quiet", "-b", name]
        if start:
            args.append(start)
        self._run(handle.path, *args)
        return CheckoutResult(ref=name, previous=previous)

    def sync(
        self,
        handle: RepositoryHandle,
        remote: str | None = None,
        branch: str | None = None,
        switch: bool = False,
    ) -> SyncResult:
        """Fetch, then fast-forward the current branch to its upstream.

        When ``branch`` is given the repository must be on it; with
        ``switch`` the branch is checked out first instead of failing.
        """
        self.fetch(handle, remote)

        snapshot = self.status(handle)
        if snapshot.is_dirty:
            raise RepositoryError(
                ErrorKind.DIRTY_WORKING_TREE, "working tree has uncommitted changes"
            )

        switched = False
        on_branch = not snapshot.detached and (branch is None or snapshot.branch == branch)
        if not on_branch:
            if not switch or branch is None:
                expected = f"default branch `{branch}`" if branch else "a branch"
                raise RepositoryError(
                    ErrorKind.WRONG_BRANCH, f"not on {expected} (HEAD is `{snapshot.branch}`)"
                )
            self._run(handle.path, "checkout", "--quiet", branch)
            snapshot = self.status(handle)
            switched = True

        if snapshot.upstream_state == UpstreamState.NONE:
            raise RepositoryError(ErrorKind.NO_UPSTREAM, "no upstream branch")
        if snapshot.upstream_state == UpstreamState.GONE:
            raise RepositoryError(
                ErrorKind.NO_UPSTREAM, f"upstream branch `{snapshot.upstream}` is gone"
            )

        if snapshot.behind_count == 0:
            return SyncResult(SyncState.UP_TO_DATE, snapshot.branch, switched)
        if snapshot.ahead_count > 0:
            raise RepositoryError(
                ErrorKind.NOT_FAST_FORWARD,
                f"branch `{snapshot.branch}` has diverged "
                f"({snapshot.ahead_count} ahead, {snapshot.behind_count} behind)",
            )
        self._run(handle.path, "merge", "--ff-only", "--quiet", "@{u}")
        return SyncResult(SyncState.FAST_FORWARDED, snapshot.branch, switched)

    def run(
        self, handle: RepositoryHandle, command: list[str], shell: Shell = Shell.SH
    ) -> ExitOutcome:
        """Run an external command in the work tree.

        Raises:
            RepositoryError: ``EXTERNAL_COMMAND_NON_ZERO_EXIT`` when the
                command cannot be started or exits with a non-zero status.
        """
        argv = shell.argv(command)
        display = " ".join(command)
        logger.debug("running `%s` in `%s`", display, handle.path)
        try:
            result = subprocess.run(
                argv, cwd=handle.path, capture_output=True, text=True, check=False
            )
        except OSError as e:
            raise RepositoryError(
                ErrorKind.EXTERNAL_COMMAND_NON_ZERO_EXIT, f"failed to spawn command: {e}", 127
            ) from e

        outcome = ExitOutcome(
            command=display,
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
        if result.returncode != 0:
            tail = (result.stderr.strip() or result.stdout.strip()).splitlines()[-1:]
            message = f"process exited with {result.returncode}"
            if tail:
                message += f": {tail[0]}"
            raise RepositoryError(
                ErrorKind.EXTERNAL_COMMAND_NON_ZERO_EXIT, message, result.returncode, outcome
            )
        return outcome

    def clone(self, url: str, path: Path) -> None:
        """Clone ``url`` into ``path``, which must not exist yet."""
        if path.exists():
            raise RepositoryError(ErrorKind.GIT_ERROR, f"destination `{path}` already exists")
        path.parent.mkdir(parents=True, exist_ok=True)
        self._run(path.parent, "clone", "--quiet", url, str(path))
