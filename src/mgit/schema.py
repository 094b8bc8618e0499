"""MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__

_FLEET_PROPERTIES = {
    "match": {
        "type": "string",
        "description": "Selection pattern: `|` separates alternatives, spaces join terms, `!` negates; terms are `tag:T` (or `#T`), `path:GLOB`, `name:GLOB`, `=NAME`, or a bare name glob/substring",
        "default": "",
    },
    "jobs": {
        "type": "integer",
        "description": "Number of parallel workers (0 = number of CPUs)",
        "minimum": 0,
    },
    "sequential": {
        "type": "boolean",
        "description": "Run sequentially instead of parallel",
        "default": False,
    },
    "order": {
        "type": "string",
        "enum": ["input", "completion"],
        "description": "Emit results in registry order or as they complete",
    },
    "json": {
        "type": "boolean",
        "description": "Output as JSON for machine parsing",
        "default": False,
    },
    "include_ignored": {
        "type": "boolean",
        "description": "Include repositories marked as ignored",
        "default": False,
    },
}

_REPORT_SCHEMA = {
    "type": "object",
    "properties": {
        "operation": {"type": "string"},
        "results": {
            "type": "array",
            "description": "One item per selected repository, in registry order",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "path": {"type": "string"},
                    "kind": {
                        "type": "string",
                        "enum": ["success", "failed", "skipped"],
                    },
                    "result": {
                        "type": "object",
                        "description": "Operation payload (only for success)",
                    },
                    "error": {
                        "type": "string",
                        "enum": [
                            "not_a_repository",
                            "corrupt_repository",
                            "network_failure",
                            "auth_failure",
                            "dirty_working_tree",
                            "external_command_non_zero_exit",
                            "no_upstream",
                            "wrong_branch",
                            "not_fast_forward",
                            "git_error",
                            "internal_error",
                        ],
                        "description": "Failure kind (only for failed)",
                    },
                    "message": {"type": "string"},
                    "output": {
                        "type": "object",
                        "description": "Exit code, stdout and stderr of a failed exec command",
                    },
                    "reason": {
                        "type": "string",
                        "description": "Why the repository was skipped (only for skipped)",
                    },
                },
            },
        },
        "summary": {
            "type": "object",
            "properties": {
                "total": {"type": "integer"},
                "succeeded": {"type": "integer"},
                "failed": {"type": "integer"},
                "skipped": {"type": "integer"},
            },
        },
        "errors": {
            "type": "object",
            "description": "Count of failures by error kind",
        },
    },
}


def _fleet_tool(name: str, description: str, extra: dict | None = None, required: list | None = None) -> dict:
    properties = dict(extra or {})
    properties.update(_FLEET_PROPERTIES)
    return {
        "name": name,
        "description": description,
        "inputSchema": {
            "type": "object",
            "properties": properties,
            "required": required or [],
        },
        "outputSchema": _REPORT_SCHEMA,
    }


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    status = _fleet_tool(
        "status",
        "Show branch, upstream sync state (ahead/behind/diverged/gone), working tree counts (staged/unstaged/untracked/conflicted) and last commit date of each selected repository.",
        {
            "fetch": {
                "type": "boolean",
                "description": "Fetch the default remote before reading status",
                "default": False,
            }
        },
    )
    status["examples"] = [
        {"description": "Status of every repository", "command": "mgit status --json"},
        {"description": "Status of repositories tagged work", "command": "mgit status -m tag:work --json"},
    ]

    fetch = _fleet_tool(
        "fetch",
        "Fetch remotes (with --prune and --tags) of each selected repository without touching local branches.",
        {
            "remote": {
                "type": "string",
                "description": "Remote to fetch (default: configured default remote, else all remotes)",
            }
        },
    )

    sync = _fleet_tool(
        "sync",
        "Fetch, then fast-forward the default branch onto its upstream. Never merges or rebases: dirty work trees, other branches, missing upstreams and diverged histories are reported as failures.",
        {
            "switch": {
                "type": "boolean",
                "description": "Check out the default branch first when on another branch",
                "default": False,
            }
        },
    )
    sync["examples"] = [
        {"description": "Sync everything except vendored repositories", "command": "mgit sync -m '!path:vendor/*' --json"},
    ]

    checkout = _fleet_tool(
        "checkout",
        "Check out a branch, tag or commit in each selected repository. Dirty work trees are refused.",
        {"ref": {"type": "string", "description": "Branch, tag or commit"}},
        required=["ref"],
    )

    exec_tool = _fleet_tool(
        "exec",
        "Run a command in each selected work tree. A non-zero exit status is reported as a failure of that repository.",
        {
            "command": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Command and arguments; a single argument is passed to the shell verbatim",
            },
            "shell": {
                "type": "string",
                "enum": ["none", "sh", "bash", "cmd", "powershell", "pwsh"],
                "description": "Shell used to run the command",
            },
        },
        required=["command"],
    )
    exec_tool["examples"] = [
        {"description": "Show the last commit everywhere", "command": "mgit exec --json -- git log -1 --oneline"},
    ]

    return {
        "name": "mgit",
        "version": __version__,
        "description": "Run git operations across a registered fleet of repositories. Repositories are declared in a TOML configuration file, selected with patterns, and processed in parallel with per-repository failure isolation.",
        "usage": "mgit [global options] <command> [options]",
        "tools": [
            status,
            fetch,
            sync,
            checkout,
            exec_tool,
            {
                "name": "list",
                "description": "List registered repositories, including ignored ones.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "match": _FLEET_PROPERTIES["match"],
                        "json": _FLEET_PROPERTIES["json"],
                        "paths": {
                            "type": "boolean",
                            "description": "Output only paths (one per line)",
                            "default": False,
                        },
                    },
                    "required": [],
                },
                "examples": [
                    {"description": "List every repository", "command": "mgit list --json"},
                    {"description": "Pick a repository with fzf", "command": "mgit list --paths | fzf"},
                ],
            },
            {
                "name": "resolve",
                "description": "Print the path of a repository given its name or a unique name prefix.",
                "inputSchema": {
                    "type": "object",
                    "properties": {"name": {"type": "string"}},
                    "required": ["name"],
                },
            },
            {
                "name": "edit",
                "description": "Open a repository (or the configuration file) in the configured editor. Returns immediately; the editor keeps running.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "target": {"type": "string", "description": "Name or unique name prefix"},
                        "editor": {"type": "string", "description": "Editor program override"},
                        "branch": {"type": "string", "description": "Create and switch to this branch first"},
                        "config": {"type": "boolean", "description": "Open the configuration file"},
                    },
                },
            },
            {
                "name": "add",
                "description": "Register a repository in the configuration file, optionally cloning it first. Remotes are read from the repository when not given.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "path": {"type": "string"},
                        "name": {"type": "string"},
                        "remote": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "URL (origin) or NAME=URL",
                        },
                        "tag": {"type": "array", "items": {"type": "string"}},
                        "branch": {"type": "string"},
                        "clone": {"type": "string", "description": "URL to clone into path first"},
                    },
                    "required": ["path"],
                },
            },
            {
                "name": "remove",
                "description": "Unregister a repository. The work tree is not deleted.",
                "inputSchema": {
                    "type": "object",
                    "properties": {"name": {"type": "string"}},
                    "required": ["name"],
                },
            },
            {
                "name": "tag",
                "description": "Add or remove tags of a repository; prints the resulting tags.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "add": {"type": "array", "items": {"type": "string"}},
                        "remove": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["name"],
                },
            },
            {
                "name": "init",
                "description": "Create an empty configuration file. Fails when it already exists.",
                "inputSchema": {"type": "object", "properties": {}, "required": []},
            },
        ],
        "globalOptions": {
            "--config, -c": "Configuration file path",
            "--verbose, -v": "Log progress information",
            "--debug": "Log git invocations",
            "--quiet, -q": "Disable logging",
            "--json, -j": "Output in JSON format (recommended for AI agents)",
            "--sequential, -s": "Run operations sequentially instead of parallel",
        },
        "configAutoResolution": {
            "description": "When --config is not specified, mgit looks for the configuration file here",
            "priority": [
                "$MGIT_CONFIG_PATH environment variable",
                "$XDG_CONFIG_HOME/mgit/config.toml (default ~/.config/mgit/config.toml)",
            ],
        },
        "exitCodes": {
            "0": "Every selected repository succeeded",
            "1": "At least one repository failed or was skipped",
            "2": "Fatal error (configuration, pattern, unknown name, write failure)",
        },
        "notes": [
            "All fleet commands support --json for machine-readable output",
            "One failing repository never aborts the others",
            "Results are reported in registry order unless --order completion is given",
            "Use 'status --json' first to understand the current state before making changes",
        ],
    }
