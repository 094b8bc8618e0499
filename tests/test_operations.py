import os
from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import Upstream, commit_file, entry, git, requires_git

from mgit.config import Settings
from mgit.executor import FleetExecutor
from mgit.git import GitAdapter, Shell
from mgit.models import (
    CheckoutResult,
    ErrorKind,
    ExitOutcome,
    FetchResult,
    OutcomeKind,
    StatusSnapshot,
    SyncState,
)
from mgit.operations import (
    checkout_operation,
    entry_settings,
    exec_operation,
    fetch_operation,
    status_operation,
    sync_operation,
)


@pytest.fixture
def adapter() -> GitAdapter:
    return GitAdapter()


class TestEntrySettings:
    def test_uses_entry_branch_and_ignore(self) -> None:
        settings = entry_settings(entry("a", branch="develop", ignore=True))
        assert settings == Settings(default_branch="develop", ignore=True)


class TestExecOperation:
    def test_empty_command_rejected(self, adapter: GitAdapter) -> None:
        with pytest.raises(ValueError):
            exec_operation(adapter, [])


@requires_git
class TestOperations:
    def test_missing_repository_is_failed_outcome(self, adapter: GitAdapter, tmp_path: Path) -> None:
        outcome = status_operation(adapter)(entry("gone", tmp_path / "gone"))
        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_kind == ErrorKind.NOT_A_REPOSITORY

    def test_status(self, adapter: GitAdapter, make_repo: Callable[..., Path]) -> None:
        outcome = status_operation(adapter)(entry("r", make_repo()))
        assert outcome.is_success
        assert isinstance(outcome.payload, StatusSnapshot)
        assert outcome.payload.branch == "main"

    def test_status_twice_is_stable(self, adapter: GitAdapter, make_repo: Callable[..., Path]) -> None:
        entries = [entry("a", make_repo("a")), entry("b", make_repo("b"))]
        op = status_operation(adapter)
        first = FleetExecutor(concurrency=2).execute(entries, op)
        second = FleetExecutor(concurrency=2).execute(entries, op)
        assert [r.outcome.kind for r in first.results] == [r.outcome.kind for r in second.results]
        assert [r.outcome.payload for r in first.results] == [r.outcome.payload for r in second.results]

    def test_status_with_fetch_sees_new_commits(self, adapter: GitAdapter, upstream: Upstream) -> None:
        commit_file(upstream.pusher, "new.txt")
        git(upstream.pusher, "push", "--quiet", "origin", "main")

        outcome = status_operation(adapter, fetch_first=True)(entry("c", upstream.clone))
        assert outcome.payload.behind_count == 1

    def test_fetch_uses_configured_remote(self, adapter: GitAdapter, upstream: Upstream) -> None:
        def settings_for(e):
            return Settings(default_remote="origin")

        outcome = fetch_operation(adapter, settings_for=settings_for)(entry("c", upstream.clone))
        assert outcome.payload == FetchResult(remote="origin", updated_refs=0)

    def test_fetch_explicit_remote_wins(self, adapter: GitAdapter, upstream: Upstream) -> None:
        def settings_for(e):
            return Settings(default_remote="upstream")

        outcome = fetch_operation(adapter, "origin", settings_for)(entry("c", upstream.clone))
        assert outcome.is_success

    def test_sync_uses_entry_branch(self, adapter: GitAdapter, upstream: Upstream) -> None:
        git(upstream.clone, "checkout", "--quiet", "-b", "topic")
        op = sync_operation(adapter)

        outcome = op(entry("c", upstream.clone, branch="main"))
        assert outcome.error_kind == ErrorKind.WRONG_BRANCH

    def test_sync_switch(self, adapter: GitAdapter, upstream: Upstream) -> None:
        git(upstream.clone, "checkout", "--quiet", "-b", "topic")
        outcome = sync_operation(adapter, switch=True)(entry("c", upstream.clone, branch="main"))
        assert outcome.payload.state == SyncState.UP_TO_DATE
        assert outcome.payload.switched

    def test_checkout(self, adapter: GitAdapter, make_repo: Callable[..., Path]) -> None:
        repo = make_repo()
        git(repo, "branch", "release")
        outcome = checkout_operation(adapter, "release")(entry("r", repo))
        assert outcome.payload == CheckoutResult(ref="release", previous="main")

    def test_exec(self, adapter: GitAdapter, make_repo: Callable[..., Path]) -> None:
        outcome = exec_operation(adapter, ["git", "status", "--short"])(entry("r", make_repo()))
        assert isinstance(outcome.payload, ExitOutcome)
        assert outcome.payload.exit_code == 0

    def test_exec_failure_is_contained(self, adapter: GitAdapter, make_repo: Callable[..., Path]) -> None:
        entries = [entry("a", make_repo("a")), entry("b", make_repo("b"))]
        git(entries[1].path, "checkout", "--quiet", "-b", "other")
        op = exec_operation(adapter, ["git", "rev-parse", "--verify", "--quiet", "refs/heads/other"])

        report = FleetExecutor(concurrency=2).execute(entries, op)

        assert [r.outcome.kind for r in report.results] == [OutcomeKind.FAILED, OutcomeKind.SUCCESS]
        assert report.results[0].outcome.error_kind == ErrorKind.EXTERNAL_COMMAND_NON_ZERO_EXIT

    @pytest.mark.skipif(os.name != "posix", reason="uses sh")
    def test_exec_failure_keeps_all_output(
        self, adapter: GitAdapter, make_repo: Callable[..., Path]
    ) -> None:
        script = "echo first-line; echo second-line; echo oops >&2; exit 3"
        op = exec_operation(adapter, [script], Shell.SH)
        outcome = op(entry("r", make_repo()))

        assert outcome.error_kind == ErrorKind.EXTERNAL_COMMAND_NON_ZERO_EXIT
        assert outcome.message == "process exited with 3: oops"
        data = outcome.to_dict()
        assert data["output"]["exit_code"] == 3
        assert data["output"]["stdout"] == "first-line\nsecond-line\n"
        assert data["output"]["stderr"] == "oops\n"
