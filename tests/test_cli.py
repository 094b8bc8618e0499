import hashlib
import json
from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import Upstream, git, requires_git
from typer.testing import CliRunner

from mgit import __version__
from mgit.cli import app, parse_remotes
from mgit.config import load_config
from mgit.git import Shell

runner = CliRunner()


def invoke(config_path: Path, *args: str):
    return runner.invoke(app, ["--config", str(config_path), *args])


@pytest.fixture
def initialized(config_path: Path) -> Path:
    result = invoke(config_path, "init")
    assert result.exit_code == 0, result.output
    return config_path


class TestGlobalOptions:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.strip() == f"mgit {__version__}"

    def test_schema(self) -> None:
        result = runner.invoke(app, ["--schema"])
        assert result.exit_code == 0
        schema = json.loads(result.stdout)
        assert schema["name"] == "mgit"
        assert {t["name"] for t in schema["tools"]} >= {"status", "fetch", "sync", "checkout", "exec"}

    def test_config_from_environment(
        self, config_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MGIT_CONFIG_PATH", str(config_path))
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert config_path.exists()


class TestParseRemotes:
    def test_bare_url_is_origin(self) -> None:
        assert parse_remotes(["git@example.com:me/a.git"]) == {"origin": "git@example.com:me/a.git"}

    def test_named_remote(self) -> None:
        assert parse_remotes(["upstream=https://example.com/a.git"]) == {
            "upstream": "https://example.com/a.git"
        }

    def test_equals_inside_url_is_not_a_name(self) -> None:
        url = "https://example.com/a.git?ref=main"
        assert parse_remotes([url]) == {"origin": url}


class TestRegistryCommands:
    def test_init_twice_fails(self, initialized: Path) -> None:
        result = invoke(initialized, "init")
        assert result.exit_code == 2
        assert "error:" in result.output

    def test_missing_config_is_fatal(self, config_path: Path) -> None:
        result = invoke(config_path, "list")
        assert result.exit_code == 2
        assert "mgit init" in result.output

    def test_add_and_list(self, initialized: Path, tmp_path: Path) -> None:
        result = invoke(
            initialized,
            "add",
            str(tmp_path / "api"),
            "--remote",
            "git@example.com:me/api.git",
            "--tag",
            "work",
            "--branch",
            "develop",
        )
        assert result.exit_code == 0, result.output

        result = invoke(initialized, "list", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["count"] == 1
        repo = data["repositories"][0]
        assert repo["name"] == "api"
        assert repo["path"] == str(tmp_path / "api")
        assert repo["remotes"] == {"origin": "git@example.com:me/api.git"}
        assert repo["tags"] == ["work"]
        assert repo["branch"] == "develop"

    def test_add_duplicate_is_fatal(self, initialized: Path, tmp_path: Path) -> None:
        assert invoke(initialized, "add", str(tmp_path / "a")).exit_code == 0
        result = invoke(initialized, "add", str(tmp_path / "b"), "--name", "a")
        assert result.exit_code == 2
        assert "already exists" in result.output

    @requires_git
    def test_add_reads_remotes_from_repository(self, initialized: Path, upstream: Upstream) -> None:
        result = invoke(initialized, "add", str(upstream.clone))
        assert result.exit_code == 0, result.output
        entry = load_config(initialized).registry.get("clone")
        assert entry.remotes == {"origin": str(upstream.origin)}

    @requires_git
    def test_add_with_clone(self, initialized: Path, upstream: Upstream, tmp_path: Path) -> None:
        target = tmp_path / "cloned"
        result = invoke(initialized, "add", str(target), "--clone", str(upstream.origin))
        assert result.exit_code == 0, result.output
        assert (target / "README.md").exists()
        assert load_config(initialized).registry.get("cloned").remotes == {
            "origin": str(upstream.origin)
        }

    def test_remove(self, initialized: Path, tmp_path: Path) -> None:
        invoke(initialized, "add", str(tmp_path / "a"))
        result = invoke(initialized, "remove", "a")
        assert result.exit_code == 0
        assert len(load_config(initialized).registry) == 0

    def test_remove_unknown_leaves_file_untouched(self, initialized: Path, tmp_path: Path) -> None:
        invoke(initialized, "add", str(tmp_path / "a"))
        before = hashlib.sha256(initialized.read_bytes()).hexdigest()

        result = invoke(initialized, "remove", "B")

        assert result.exit_code == 2
        assert "no repository named `B`" in result.output
        assert hashlib.sha256(initialized.read_bytes()).hexdigest() == before

    def test_tag(self, initialized: Path, tmp_path: Path) -> None:
        invoke(initialized, "add", str(tmp_path / "a"), "--tag", "old")
        result = invoke(initialized, "tag", "a", "--add", "new", "--remove", "old")
        assert result.exit_code == 0
        assert result.stdout.split() == ["new"]
        assert load_config(initialized).registry.get("a").tags == {"new"}

    def test_resolve_prefix(self, initialized: Path, tmp_path: Path) -> None:
        invoke(initialized, "add", str(tmp_path / "api"))
        invoke(initialized, "add", str(tmp_path / "web"))
        result = invoke(initialized, "resolve", "we")
        assert result.exit_code == 0
        assert result.stdout.strip() == str(tmp_path / "web")

    def test_resolve_unknown_suggests(self, initialized: Path, tmp_path: Path) -> None:
        invoke(initialized, "add", str(tmp_path / "worker"))
        result = invoke(initialized, "resolve", "wrker")
        assert result.exit_code == 2
        assert "worker" in result.output

    def test_list_paths(self, initialized: Path, tmp_path: Path) -> None:
        invoke(initialized, "add", str(tmp_path / "a"))
        invoke(initialized, "add", str(tmp_path / "b"))
        result = invoke(initialized, "list", "--paths", "--match", "b")
        assert result.stdout.splitlines() == [str(tmp_path / "b")]


@requires_git
class TestFleetCommands:
    @pytest.fixture
    def fleet(
        self, initialized: Path, make_repo: Callable[..., Path], tmp_path: Path
    ) -> Path:
        for name in ("A", "B", "C"):
            assert invoke(initialized, "add", str(make_repo(name.lower()))).exit_code == 0
        # Registered but never created
        assert invoke(initialized, "add", str(tmp_path / "missing")).exit_code == 0
        return initialized

    def test_status_json_reports_every_selected_repository(self, fleet: Path) -> None:
        result = invoke(fleet, "status", "--json", "--match", "a|b|c")
        assert result.exit_code == 0, result.output

        data = json.loads(result.stdout)
        assert data["operation"] == "status"
        assert [r["name"] for r in data["results"]] == ["a", "b", "c"]
        assert all(r["kind"] == "success" for r in data["results"])
        assert data["results"][0]["result"]["branch"] == "main"

    def test_failure_sets_exit_code(self, fleet: Path) -> None:
        result = invoke(fleet, "status", "--json", "-J", "2")
        assert result.exit_code == 1

        data = json.loads(result.stdout)
        failed = [r for r in data["results"] if r["kind"] == "failed"]
        assert [(r["name"], r["error"]) for r in failed] == [("missing", "not_a_repository")]
        assert data["summary"]["succeeded"] == 3

    def test_invalid_pattern_is_fatal(self, fleet: Path) -> None:
        result = invoke(fleet, "status", "--match", "a||b")
        assert result.exit_code == 2
        assert "invalid pattern" in result.output

    def test_empty_selection_succeeds(self, fleet: Path) -> None:
        result = invoke(fleet, "status", "--match", "nothing-matches")
        assert result.exit_code == 0
        assert "No repositories" in result.output

    def test_console_output_lists_repositories(self, fleet: Path) -> None:
        result = invoke(fleet, "status", "--sequential", "--match", "=a")
        assert result.exit_code == 0
        assert "main" in result.output
        assert "Total:" in result.output

    def test_completion_order(self, fleet: Path) -> None:
        result = invoke(fleet, "status", "--json", "--order", "completion", "-m", "a|b")
        data = json.loads(result.stdout)
        assert [r["name"] for r in data["results"]] == ["a", "b"]

    def test_exec(self, fleet: Path) -> None:
        result = invoke(fleet, "exec", "--json", "-m", "a", "git", "rev-parse", "--abbrev-ref", "HEAD")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["results"][0]["result"]["stdout"].strip() == "main"

    def test_failed_exec_reports_output(self, fleet: Path) -> None:
        result = invoke(fleet, "exec", "--json", "-m", "a", "git", "rev-parse", "--verify", "nope")
        assert result.exit_code == 1
        failure = json.loads(result.stdout)["results"][0]
        assert failure["error"] == "external_command_non_zero_exit"
        assert failure["output"]["exit_code"] == 128
        assert "Needed a single revision" in failure["output"]["stderr"]

    def test_checkout_unknown_ref_fails_per_repository(self, fleet: Path) -> None:
        result = invoke(fleet, "checkout", "--json", "-m", "a|b", "no-such-branch")
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert [r["error"] for r in data["results"]] == ["git_error", "git_error"]

    def test_fetch_without_remotes_fails(self, fleet: Path) -> None:
        result = invoke(fleet, "fetch", "--json", "-m", "=a")
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["results"][0]["message"] == "no remotes"

    def test_sync_up_to_date(self, initialized: Path, upstream: Upstream) -> None:
        invoke(initialized, "add", str(upstream.clone), "--branch", "main")
        result = invoke(initialized, "sync", "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["results"][0]["result"]["state"] == "up_to_date"

    def test_ignored_repositories_are_skipped_by_default(
        self, fleet: Path, make_repo: Callable[..., Path]
    ) -> None:
        text = fleet.read_text()
        fleet.write_text(text + '\n[settings."missing"]\nignore = true\n')

        result = invoke(fleet, "status", "--json")
        assert result.exit_code == 0
        assert "missing" not in [r["name"] for r in json.loads(result.stdout)["results"]]

        result = invoke(fleet, "status", "--json", "--include-ignored")
        assert result.exit_code == 1


class TestEditCommand:
    @pytest.fixture
    def launched(self, monkeypatch: pytest.MonkeyPatch) -> list[tuple]:
        calls: list[tuple] = []
        monkeypatch.setattr("mgit.cli.launch_editor", lambda *args: calls.append(args))
        return calls

    def test_opens_resolved_repository(
        self, initialized: Path, tmp_path: Path, launched: list[tuple]
    ) -> None:
        invoke(initialized, "add", str(tmp_path / "api"))
        result = invoke(initialized, "edit", "ap", "--editor", "code --wait")
        assert result.exit_code == 0, result.output
        assert launched == [("code --wait", tmp_path / "api", Shell.default())]

    def test_editor_and_shell_from_settings(
        self, initialized: Path, tmp_path: Path, launched: list[tuple]
    ) -> None:
        invoke(initialized, "add", str(tmp_path / "api"))
        text = initialized.read_text()
        initialized.write_text(text + '\n[settings."api"]\neditor = "vim"\nshell = "bash"\n')

        result = invoke(initialized, "edit", "api")
        assert result.exit_code == 0, result.output
        assert launched == [("vim", tmp_path / "api", Shell.BASH)]

    def test_opens_config_file(self, initialized: Path, launched: list[tuple]) -> None:
        result = invoke(initialized, "edit", "--config", "--editor", "nano")
        assert result.exit_code == 0, result.output
        assert launched[0][:2] == ("nano", initialized)

    def test_missing_editor_is_fatal(
        self, initialized: Path, tmp_path: Path, launched: list[tuple]
    ) -> None:
        invoke(initialized, "add", str(tmp_path / "api"))
        result = invoke(initialized, "edit", "api")
        assert result.exit_code == 2
        assert "`editor` setting" in result.output
        assert launched == []

    @pytest.mark.parametrize(
        "args",
        [
            [],
            ["api", "--config"],
            ["--config", "--branch", "feature"],
        ],
    )
    def test_invalid_arguments(
        self, initialized: Path, launched: list[tuple], args: list[str]
    ) -> None:
        result = invoke(initialized, "edit", "--editor", "vim", *args)
        assert result.exit_code == 2
        assert launched == []

    @requires_git
    def test_creates_branch_first(
        self,
        initialized: Path,
        make_repo: Callable[..., Path],
        launched: list[tuple],
    ) -> None:
        repo = make_repo("api")
        invoke(initialized, "add", str(repo))

        result = invoke(initialized, "edit", "api", "--editor", "vim", "--branch", "feature")

        assert result.exit_code == 0, result.output
        assert git(repo, "rev-parse", "--abbrev-ref", "HEAD").strip() == "feature"
        assert launched[0][1] == repo
