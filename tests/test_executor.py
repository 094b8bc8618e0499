import threading
import time
from collections import Counter

import pytest
from conftest import entry, succeed

from mgit.executor import STOPPED_REASON, FleetExecutor, ResultOrder, run_unit
from mgit.models import ErrorKind, OperationOutcome, OutcomeKind, RepositoryEntry
from mgit.registry import Registry
from mgit.selector import select


def fleet(n: int) -> list[RepositoryEntry]:
    return [entry(f"repo{i}") for i in range(n)]


class TestRunUnit:
    def test_returns_outcome(self) -> None:
        assert run_unit(succeed, entry("a")).is_success

    def test_exception_becomes_internal_error(self) -> None:
        def boom(e: RepositoryEntry) -> OperationOutcome:
            raise RuntimeError("kaboom")

        outcome = run_unit(boom, entry("a"))
        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_kind == ErrorKind.INTERNAL_ERROR
        assert outcome.message == "RuntimeError: kaboom"

    def test_non_outcome_return_is_internal_error(self) -> None:
        outcome = run_unit(lambda e: "oops", entry("a"))
        assert outcome.error_kind == ErrorKind.INTERNAL_ERROR


class TestFleetExecutor:
    def test_rejects_negative_concurrency(self) -> None:
        with pytest.raises(ValueError, match="concurrency"):
            FleetExecutor(concurrency=-1)

    def test_zero_means_cpu_count(self) -> None:
        assert FleetExecutor(concurrency=0).concurrency >= 1

    def test_empty_batch(self) -> None:
        report = FleetExecutor(concurrency=2).execute([], succeed)
        assert report.results == ()
        assert report.exit_code == 0

    def test_every_entry_yields_exactly_one_result(self) -> None:
        entries = fleet(25)
        report = FleetExecutor(concurrency=3).execute(entries, succeed)

        assert len(report.results) == 25
        assert Counter(r.index for r in report.results) == Counter(range(25))
        assert [r.entry.name for r in report.results] == [e.name for e in entries]

    def test_worker_bound_is_respected(self) -> None:
        lock = threading.Lock()
        running = 0
        peak = 0

        def op(e: RepositoryEntry) -> OperationOutcome:
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.01)
            with lock:
                running -= 1
            return OperationOutcome.success()

        FleetExecutor(concurrency=2).execute(fleet(10), op)
        assert peak <= 2

    def test_input_order_despite_completion_order(self) -> None:
        def op(e: RepositoryEntry) -> OperationOutcome:
            # Earlier entries finish last
            time.sleep(0.05 if e.name == "repo0" else 0)
            return OperationOutcome.success(e.name)

        emitted = []
        report = FleetExecutor(concurrency=4, order=ResultOrder.INPUT).execute(
            fleet(4), op, on_result=lambda r: emitted.append(r.entry.name)
        )
        assert emitted == ["repo0", "repo1", "repo2", "repo3"]
        assert [r.entry.name for r in report.results] == emitted

    def test_completion_order_emits_as_finished(self) -> None:
        release = threading.Event()

        def op(e: RepositoryEntry) -> OperationOutcome:
            if e.name == "repo0":
                release.wait(timeout=5)
            return OperationOutcome.success()

        emitted = []

        def on_result(result) -> None:
            emitted.append(result.entry.name)
            if len(emitted) == 1:
                release.set()

        report = FleetExecutor(concurrency=2, order=ResultOrder.COMPLETION).execute(
            fleet(2), op, on_result=on_result
        )
        assert emitted == ["repo1", "repo0"]
        # The report is in input order either way
        assert [r.entry.name for r in report.results] == ["repo0", "repo1"]

    def test_failure_is_contained(self) -> None:
        def op(e: RepositoryEntry) -> OperationOutcome:
            if e.name == "repo3":
                raise KeyError("missing")
            if e.name == "repo5":
                return OperationOutcome.failed(ErrorKind.NETWORK_FAILURE, "timeout")
            return OperationOutcome.success()

        report = FleetExecutor(concurrency=3).execute(fleet(8), op)

        failed = {r.entry.name: r.outcome.error_kind for r in report.failures()}
        assert failed == {"repo3": ErrorKind.INTERNAL_ERROR, "repo5": ErrorKind.NETWORK_FAILURE}
        assert report.summary.succeeded == 6
        assert report.exit_code == 1

    def test_stop_skips_unlaunched_entries(self) -> None:
        executor = FleetExecutor(concurrency=1)

        def op(e: RepositoryEntry) -> OperationOutcome:
            if e.name == "repo1":
                executor.stop()
            return OperationOutcome.success()

        report = executor.execute(fleet(5), op)

        kinds = [r.outcome.kind for r in report.results]
        assert kinds == [OutcomeKind.SUCCESS] * 2 + [OutcomeKind.SKIPPED] * 3
        assert report.results[-1].outcome.message == STOPPED_REASON
        assert report.summary.skipped == 3
        assert report.exit_code == 1

    def test_stop_before_start_skips_everything(self) -> None:
        stop = threading.Event()
        stop.set()
        report = FleetExecutor(concurrency=2, stop_event=stop).execute(fleet(3), succeed)
        assert report.summary.skipped == 3

    def test_iter_results_is_lazy(self) -> None:
        results = FleetExecutor(concurrency=2).iter_results(fleet(3), succeed)
        assert [r.index for r in results] == [0, 1, 2]


class TestScenario:
    def test_network_failure_in_selected_subset(self) -> None:
        registry = Registry([entry("A", "/a"), entry("B", "/b"), entry("C", "/c")])
        selected = select(registry, "b*|c*")

        def op(e: RepositoryEntry) -> OperationOutcome:
            if e.name == "B":
                return OperationOutcome.failed(ErrorKind.NETWORK_FAILURE, "could not resolve host")
            return OperationOutcome.success()

        report = FleetExecutor(concurrency=2).execute(selected, op)

        assert [(r.entry.name, r.outcome.kind) for r in report.results] == [
            ("B", OutcomeKind.FAILED),
            ("C", OutcomeKind.SUCCESS),
        ]
        assert report.results[0].outcome.error_kind == ErrorKind.NETWORK_FAILURE
        assert report.errors == {ErrorKind.NETWORK_FAILURE: 1}
        assert report.exit_code != 0
