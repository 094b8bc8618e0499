"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
import textwrap
from datetime import datetime
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .models import (
    ErrorKind,
    ExitOutcome,
    FleetResult,
    OutcomeKind,
    StatusSnapshot,
    SyncStatus,
)

if TYPE_CHECKING:
    from .config import Config
    from .models import RepositoryEntry
    from .report import FleetReport

MESSAGE_WIDTH = 60


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, data: dict) -> None:
        # Bypass rich so long lines are never wrapped
        print(json.dumps(data, indent=2, default=str))

    # -------------------------------------------------------------------------
    # Fleet results
    # -------------------------------------------------------------------------

    def print_result(self, result: FleetResult, name_width: int = 0, console: Console | None = None):
        """Print one result line as soon as it is emitted."""
        if self.use_json:
            return
        name = escape(result.entry.name.ljust(name_width))
        console = console or self.console
        console.print(f"[cyan]{name}[/]  {self._outcome_display(result)}")

        payload = result.outcome.payload
        if isinstance(payload, ExitOutcome) and payload.output:
            console.print(
                textwrap.indent(payload.output, "    "),
                markup=False,
                highlight=False,
                soft_wrap=True,
            )

    def _outcome_display(self, result: FleetResult) -> str:
        outcome = result.outcome
        match outcome.kind:
            case OutcomeKind.SUCCESS:
                if isinstance(outcome.payload, StatusSnapshot):
                    return self._status_display(outcome.payload)
                text = outcome.payload.describe() if outcome.payload is not None else "OK"
                return f"[green]✓[/] {escape(text[:MESSAGE_WIDTH])}"
            case OutcomeKind.FAILED:
                first_line = outcome.message.splitlines()[0] if outcome.message else "failed"
                kind = outcome.error_kind.value if outcome.error_kind else "error"
                return f"[red]✗ {escape(first_line[:MESSAGE_WIDTH])}[/] [dim]({kind})[/]"
            case _:
                return f"[yellow]- {escape(outcome.message)}[/]"

    def _status_display(self, status: StatusSnapshot) -> str:
        branch = self._get_branch_display(status)
        sync = self._get_sync_icon(status)
        tree = self._get_working_tree_display(status)
        last = self._format_date(status.last_commit_date)
        return f"{branch}  {sync}  {tree}  {last}"

    def _get_branch_display(self, status: StatusSnapshot) -> str:
        if status.detached:
            return f"[bold magenta]({escape(status.branch)})[/]"
        return f"[blue]{escape(status.branch)}[/]"

    def _get_sync_icon(self, status: StatusSnapshot) -> str:
        """Get sync status icon."""
        match status.sync_status:
            case SyncStatus.CLEAN:
                return "[cyan]≡[/]"
            case SyncStatus.AHEAD:
                return f"[green]{status.ahead_count}↑[/]"
            case SyncStatus.BEHIND:
                return f"[red]{status.behind_count}↓[/]"
            case SyncStatus.DIVERGED:
                return f"[yellow]{status.behind_count}↓ {status.ahead_count}↑[/]"
            case SyncStatus.GONE:
                return "[red]×[/]"
            case SyncStatus.NO_UPSTREAM:
                return "[dim]no upstream[/]"
            case SyncStatus.DETACHED:
                return "[dim]detached[/]"
            case _:
                return "[dim]?[/]"

    def _get_working_tree_display(self, status: StatusSnapshot) -> str:
        """Get working tree status display."""
        if not status.is_dirty and status.untracked_count == 0:
            return "[green]clean[/]"

        parts = []
        if status.conflicted_count > 0:
            parts.append(f"[bold red]!{status.conflicted_count}[/]")
        if status.staged_count > 0:
            parts.append(f"[green]+{status.staged_count}[/]")
        if status.unstaged_count > 0:
            parts.append(f"[yellow]~{status.unstaged_count}[/]")
        if status.untracked_count > 0:
            parts.append(f"[red]?{status.untracked_count}[/]")

        return " ".join(parts)

    def _format_date(self, dt: datetime | None) -> str:
        """Format datetime for display."""
        if dt is None:
            return "[dim]no commits[/]"

        now = datetime.now(dt.tzinfo)
        delta = now - dt

        if delta.days == 0:
            hours = delta.seconds // 3600
            if hours == 0:
                minutes = delta.seconds // 60
                return f"[green]{minutes}m ago[/]"
            return f"[green]{hours}h ago[/]"
        elif delta.days == 1:
            return "[green]yesterday[/]"
        elif delta.days < 7:
            return f"[yellow]{delta.days}d ago[/]"
        elif delta.days < 30:
            weeks = delta.days // 7
            return f"[yellow]{weeks}w ago[/]"
        else:
            return f"[red]{dt.strftime('%Y-%m-%d')}[/]"

    def print_report(self, report: FleetReport, operation: str):
        """Print the final report: a JSON document or the summary line."""
        if self.use_json:
            self._print_json({"operation": operation, **report.to_dict()})
        else:
            self._print_summary(report, operation)

    def _print_summary(self, report: FleetReport, operation: str):
        summary = report.summary
        if summary.total == 0:
            self.console.print(f"[dim]No repositories to {operation}[/]")
            return

        parts = [f"[bold]Total:[/] {summary.total}"]
        if summary.succeeded > 0:
            parts.append(f"[green]✓ Succeeded:[/] {summary.succeeded}")
        if summary.failed > 0:
            parts.append(f"[red]✗ Failed:[/] {summary.failed}")
        if summary.skipped > 0:
            parts.append(f"[yellow]- Skipped:[/] {summary.skipped}")

        self.console.print()
        self.console.print(" | ".join(parts))

        if report.errors:
            details = ", ".join(
                f"{kind.value.replace('_', ' ')}: {count}" for kind, count in report.errors.items()
            )
            self.console.print(f"[dim]Failures by kind: {details}[/]")
            if ErrorKind.NETWORK_FAILURE in report.errors:
                self.console.print("[dim]Network failures are usually transient; retry later.[/]")

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def print_repo_list(self, entries: list[RepositoryEntry], config: Config):
        """Print the selected registry entries."""
        if self.use_json:
            self._print_json(
                {
                    "config": str(config.path),
                    "root": str(config.root),
                    "count": len(entries),
                    "repositories": [e.to_dict() for e in entries],
                }
            )
            return

        if not entries:
            self.console.print("[dim]No repositories registered[/]")
            return

        table = Table(title=f"Repositories: {config.path}")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Path")
        table.add_column("Tags")
        table.add_column("Branch")
        table.add_column("Remote", style="dim")

        for entry in entries:
            name = escape(entry.name)
            if config.is_ignored(entry):
                name = f"[dim]{name} (ignored)[/]"
            table.add_row(
                name,
                escape(str(config.relative_path(entry.path))),
                escape(", ".join(sorted(entry.tags))),
                escape(config.settings_for(entry).default_branch or ""),
                escape(entry.default_remote_url),
            )

        self.console.print(table)
        self.console.print(f"\n[bold]Total:[/] {len(entries)}")
