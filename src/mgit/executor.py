"""Fleet executor: run one operation per repository on a bounded worker pool.

The executor guarantees that every input entry produces exactly one
``FleetResult``:

- an exception escaping the operation becomes a ``Failed`` outcome with
  ``ErrorKind.INTERNAL_ERROR`` instead of aborting the batch;
- once the stop event is set no new units are launched, running units are
  allowed to finish, and every unlaunched entry is reported as ``Skipped``.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import StrEnum

from .models import ErrorKind, FleetResult, OperationOutcome, RepositoryEntry
from .report import FleetReport, aggregate

logger = logging.getLogger(__name__)

Operation = Callable[[RepositoryEntry], OperationOutcome]
ResultCallback = Callable[[FleetResult], None]

STOPPED_REASON = "stopped before start"


class ResultOrder(StrEnum):
    """Order in which results are emitted."""

    INPUT = "input"  # default: reproducible reports
    COMPLETION = "completion"  # lowest latency for interactive use


def default_concurrency() -> int:
    return os.cpu_count() or 1


def run_unit(op: Operation, entry: RepositoryEntry) -> OperationOutcome:
    """Run ``op`` for one entry, containing any failure in the outcome."""
    try:
        outcome = op(entry)
    except Exception as e:
        logger.exception("unexpected error while processing `%s`", entry.name)
        return OperationOutcome.failed(ErrorKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}")
    if not isinstance(outcome, OperationOutcome):
        return OperationOutcome.failed(
            ErrorKind.INTERNAL_ERROR,
            f"operation returned {type(outcome).__name__}, not an outcome",
        )
    return outcome


class FleetExecutor:
    """Dispatch an operation across repositories in parallel.

    Args:
        concurrency: Number of workers. ``None`` or ``0`` uses the CPU count.
        order: Emission order of results.
        stop_event: Checked before each launch; setting it drains the batch.
    """

    def __init__(
        self,
        concurrency: int | None = None,
        order: ResultOrder = ResultOrder.INPUT,
        stop_event: threading.Event | None = None,
    ):
        if concurrency is not None and concurrency < 0:
            raise ValueError(f"concurrency must be >= 0, got {concurrency}")
        self.concurrency = concurrency or default_concurrency()
        self.order = order
        self.stop_event = stop_event if stop_event is not None else threading.Event()

    def stop(self) -> None:
        """Stop launching new units; running units finish normally."""
        self.stop_event.set()

    def execute(
        self,
        entries: Iterable[RepositoryEntry],
        op: Operation,
        on_result: ResultCallback | None = None,
    ) -> FleetReport:
        """Run ``op`` for every entry and aggregate the results."""
        return aggregate(self.iter_results(entries, op, on_result))

    def iter_results(
        self,
        entries: Iterable[RepositoryEntry],
        op: Operation,
        on_result: ResultCallback | None = None,
    ) -> Iterator[FleetResult]:
        """Lazily yield one result per entry according to ``self.order``."""
        entries = list(entries)
        if not entries:
            return

        buffered: dict[int, FleetResult] = {}
        next_emit = 0

        def emit(result: FleetResult) -> Iterator[FleetResult]:
            nonlocal next_emit
            if self.order == ResultOrder.COMPLETION:
                ready = [result]
            else:
                # Hold results back until every earlier entry has completed
                buffered[result.index] = result
                ready = []
                while next_emit in buffered:
                    ready.append(buffered.pop(next_emit))
                    next_emit += 1
            for item in ready:
                if on_result is not None:
                    on_result(item)
                yield item

        workers = min(self.concurrency, len(entries))
        logger.debug("dispatching %d unit(s) on %d worker(s)", len(entries), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mgit") as pool:
            pending: dict[Future[OperationOutcome], int] = {}
            next_launch = 0

            while next_launch < len(entries) or pending:
                while (
                    next_launch < len(entries)
                    and len(pending) < workers
                    and not self.stop_event.is_set()
                ):
                    future = pool.submit(run_unit, op, entries[next_launch])
                    pending[future] = next_launch
                    next_launch += 1

                if self.stop_event.is_set() and next_launch < len(entries):
                    logger.info("stop requested; skipping %d unit(s)", len(entries) - next_launch)
                    for index in range(next_launch, len(entries)):
                        skipped = OperationOutcome.skipped(STOPPED_REASON)
                        yield from emit(FleetResult(index, entries[index], skipped))
                    next_launch = len(entries)

                if not pending:
                    continue

                try:
                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    logger.warning(
                        "interrupted; waiting for %d running operation(s) to finish",
                        len(pending),
                    )
                    self.stop_event.set()
                    continue

                for future in sorted(done, key=pending.__getitem__):
                    index = pending.pop(future)
                    yield from emit(FleetResult(index, entries[index], future.result()))
