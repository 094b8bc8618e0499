"""Shared test fixtures for mgit tests."""

import os
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest

from mgit.models import OperationOutcome, RepositoryEntry

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")

GIT_IDENTITY = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@example.com",
}


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` for test setup and return its stdout."""
    env = {**os.environ, **GIT_IDENTITY}
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, env=env, check=True
    )
    return result.stdout


def commit_file(repo: Path, name: str = "README.md", content: str = "hello\n", message: str = "update") -> None:
    (repo / name).write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "--quiet", "-m", message)


@dataclass(frozen=True, slots=True)
class Upstream:
    """A bare origin, a clone tracking it and a second clone used to push."""

    origin: Path
    clone: Path
    pusher: Path


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from the user's config and git settings."""
    monkeypatch.delenv("MGIT_CONFIG_PATH", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating a repository with one commit on `main`."""

    def _make(name: str = "repo", parent: Path | None = None) -> Path:
        path = (parent or tmp_path) / name
        path.mkdir(parents=True)
        git(path, "init", "--quiet", "-b", "main")
        commit_file(path, message="initial")
        return path

    return _make


@pytest.fixture
def upstream(tmp_path: Path, make_repo: Callable[..., Path]) -> Upstream:
    """Create origin.git plus two clones of it that track `origin/main`."""
    seed = make_repo("seed")
    origin = tmp_path / "origin.git"
    git(tmp_path, "init", "--quiet", "--bare", "-b", "main", str(origin))
    git(seed, "push", "--quiet", str(origin), "main")

    clone = tmp_path / "clone"
    pusher = tmp_path / "pusher"
    git(tmp_path, "clone", "--quiet", str(origin), str(clone))
    git(tmp_path, "clone", "--quiet", str(origin), str(pusher))
    return Upstream(origin=origin, clone=clone, pusher=pusher)


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "config" / "config.toml"


@pytest.fixture
def write_config(config_path: Path) -> Callable[[str], Path]:
    def _write(text: str) -> Path:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(text, encoding="utf-8")
        return config_path

    return _write


def entry(name: str, path: str | Path | None = None, **kwargs) -> RepositoryEntry:
    """Build an entry with an absolute path derived from the name."""
    return RepositoryEntry(name=name, path=Path(path or f"/fleet/{name.lower()}"), **kwargs)


def succeed(e: RepositoryEntry) -> OperationOutcome:
    return OperationOutcome.success(e.name)
