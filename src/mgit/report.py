"""Aggregate per-repository outcomes into a fleet report."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field

from .models import ErrorKind, FleetResult, OutcomeKind


@dataclass(frozen=True)
class FleetSummary:
    """Counts of outcomes by kind."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FleetReport:
    """Ordered per-repository results of one batch, plus summary counts."""

    results: tuple[FleetResult, ...] = ()
    summary: FleetSummary = FleetSummary()
    errors: dict[ErrorKind, int] = field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        return self.summary.failed > 0

    @property
    def all_succeeded(self) -> bool:
        return self.summary.succeeded == self.summary.total

    @property
    def exit_code(self) -> int:
        """0 only if every selected repository succeeded."""
        return 0 if self.all_succeeded else 1

    def failures(self) -> list[FleetResult]:
        return [r for r in self.results if r.outcome.kind == OutcomeKind.FAILED]

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
            "errors": {kind.value: count for kind, count in self.errors.items()},
        }


def aggregate(results: Iterable[FleetResult]) -> FleetReport:
    """Build a report in input order, whatever order results arrived in."""
    ordered = tuple(sorted(results, key=lambda r: r.index))
    kinds = Counter(r.outcome.kind for r in ordered)
    errors = Counter(
        r.outcome.error_kind
        for r in ordered
        if r.outcome.kind == OutcomeKind.FAILED and r.outcome.error_kind is not None
    )
    summary = FleetSummary(
        total=len(ordered),
        succeeded=kinds[OutcomeKind.SUCCESS],
        failed=kinds[OutcomeKind.FAILED],
        skipped=kinds[OutcomeKind.SKIPPED],
    )
    return FleetReport(
        results=ordered,
        summary=summary,
        errors={kind: errors[kind] for kind in ErrorKind if errors[kind]},
    )
