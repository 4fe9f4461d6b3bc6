import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

from loguru import logger

from compaction_monitor.exceptions import (
    CompactionInvariantError,
    CompactionRetryExhaustedError,
)
from compaction_monitor.executors import PartitionSpec
from compaction_monitor.models import (
    CompactionKind,
    CompactionQuery,
    PollOutcome,
    PollStatus,
    RetryPolicy,
    RetryReport,
    StatusColumns,
    StatusPollingConfig,
    StatusRecord,
)
from compaction_monitor.status_snapshot import filter_compactions, parse_status_snapshot

StatusSource = Callable[[], Sequence[Sequence[Any]]]
CompactionTrigger = Callable[[str, CompactionKind, Optional[PartitionSpec]], Any]


class CompletionPoller:
    """Waits for a single compaction to finish by polling the status listing.

    Precondition: automatic compaction is disabled for the polled table, so at
    most one compaction of the requested kind can be listed after the trigger.
    Seeing more than one raises ``CompactionInvariantError``.
    """

    def __init__(
        self,
        status_source: StatusSource,
        config: Optional[StatusPollingConfig] = None,
        on_status_change: Optional[Callable[[PollOutcome], Any]] = None,
        columns: Optional[StatusColumns] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.status_source = status_source
        self.config = config or StatusPollingConfig()
        self.on_status_change = on_status_change
        self.columns = columns or StatusColumns()
        self.clock = clock
        self.sleep = sleep
        self.logger = logger

    def _get_snapshot_once(self) -> List[StatusRecord]:
        """Takes a fresh snapshot of the status listing"""
        return parse_status_snapshot(self.status_source())

    def _evaluate(
        self, query: CompactionQuery, compactions: List[StatusRecord], elapsed_time: float
    ) -> PollOutcome:
        if len(compactions) > 1:
            self.logger.error(
                f"Found {len(compactions)} {query.kind.value} compactions for "
                f"{query.table_name}: {compactions}"
            )
            raise CompactionInvariantError(query.table_name, compactions)

        if not compactions:
            return PollOutcome(status=PollStatus.not_started, elapsed_time=elapsed_time)

        record = compactions[0]
        state = record.get(self.columns.state)
        if state == "succeeded":
            return PollOutcome(
                status=PollStatus.succeeded, record=record, elapsed_time=elapsed_time
            )
        if state == "failed":
            return PollOutcome(
                status=PollStatus.failed,
                record=record,
                reason=f"Compaction has failed: {record}",
                elapsed_time=elapsed_time,
            )
        return PollOutcome(
            status=PollStatus.running, record=record, elapsed_time=elapsed_time
        )

    def _handle_status_change(
        self, outcome: PollOutcome, last_status: Optional[PollStatus]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if last_status == outcome.status:
            return
        self.logger.debug(f"Compaction status changed to {outcome.status.value}")
        if self.on_status_change is not None:
            self.on_status_change(outcome)

    def _log_unstarted(self, query: CompactionQuery, records: List[StatusRecord]) -> None:
        existing = filter_compactions(
            records,
            CompactionQuery(table_name=query.table_name, kind=query.kind),
            self.columns,
        )
        self.logger.info(
            f"Compaction has not started yet. Existing compactions: {existing}"
        )

    def poll_until_complete(self, query: CompactionQuery) -> PollOutcome:
        """Poll the status listing until the compaction succeeds, fails or the timeout elapses"""
        loop_start = self.clock()
        last_status: Optional[PollStatus] = None

        while True:
            records = self._get_snapshot_once()
            compactions = filter_compactions(records, query, self.columns)
            elapsed_time = self.clock() - loop_start
            outcome = self._evaluate(query, compactions, elapsed_time)

            self._handle_status_change(outcome, last_status)
            last_status = outcome.status

            if outcome.is_terminal:
                if outcome.status == PollStatus.failed:
                    self.logger.info(outcome.reason)
                return outcome
            if outcome.status == PollStatus.not_started:
                self._log_unstarted(query, records)

            if elapsed_time > self.config.timeout:
                self.logger.info(
                    f"Waiting for compaction has timed out after {elapsed_time:.1f}s: "
                    f"{outcome.record}"
                )
                timed_out = PollOutcome(
                    status=PollStatus.timed_out,
                    record=outcome.record,
                    reason=f"Compaction has timed out in state {outcome.status.value}",
                    elapsed_time=elapsed_time,
                )
                self._handle_status_change(timed_out, last_status)
                return timed_out

            # compaction takes a couple of seconds, no need to check more often
            self.sleep(self.config.poll_interval)


class RetryScheduler:
    """Re-runs a whole operation until it succeeds or the retry policy is exhausted"""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.clock = clock
        self.sleep = sleep
        self.logger = logger

    def _is_exhausted(self, attempts: int, elapsed_time: float) -> bool:
        if self.policy.max_attempts is not None and attempts >= self.policy.max_attempts:
            return True
        if self.policy.max_duration is not None and elapsed_time >= self.policy.max_duration:
            return True
        return False

    def run(self, operation: Callable[[], PollOutcome], description: str) -> RetryReport:
        start = self.clock()
        attempts = 0

        while True:
            attempts += 1
            last_cause: Any
            try:
                outcome = operation()
            except CompactionInvariantError:
                raise
            except Exception as e:
                self.logger.warning(f"Attempt {attempts} of {description} raised: {e!r}")
                last_cause = e
            else:
                if outcome.is_success:
                    elapsed_time = self.clock() - start
                    self.logger.info(
                        f"Finished {description} in {elapsed_time:.2f}s ({attempts} tries)"
                    )
                    return RetryReport(
                        attempts=attempts, elapsed_time=elapsed_time, outcome=outcome
                    )
                self.logger.warning(
                    f"Attempt {attempts} of {description} ended as "
                    f"{outcome.status.value}: {outcome.reason}"
                )
                last_cause = outcome.reason or outcome.status.value

            elapsed_time = self.clock() - start
            if self._is_exhausted(attempts, elapsed_time):
                self.logger.error(
                    f"Giving up on {description} after {attempts} attempts "
                    f"in {elapsed_time:.2f}s"
                )
                error = CompactionRetryExhaustedError(description, attempts, last_cause)
                if isinstance(last_cause, BaseException):
                    raise error from last_cause
                raise error

            if self.policy.delay:
                self.sleep(self.policy.delay)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CompactionMonitor:
    """Triggers a compaction and waits for it, re-issuing the trigger on failure"""

    def __init__(
        self,
        trigger: CompactionTrigger,
        status_source: StatusSource,
        polling_config: Optional[StatusPollingConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        on_status_change: Optional[Callable[[PollOutcome], Any]] = None,
        columns: Optional[StatusColumns] = None,
        now: Callable[[], datetime] = _utc_now,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.trigger = trigger
        self.status_source = status_source
        self.now = now
        self.poller = CompletionPoller(
            status_source,
            config=polling_config,
            on_status_change=on_status_change,
            columns=columns,
            clock=clock,
            sleep=sleep,
        )
        self.scheduler = RetryScheduler(retry_policy, clock=clock, sleep=sleep)
        self.logger = logger

    def _try_compacting(
        self,
        table_name: str,
        kind: CompactionKind,
        partition: Optional[PartitionSpec],
    ) -> PollOutcome:
        before_compaction_start = self.now()
        self.trigger(table_name, kind, partition)

        started = filter_compactions(
            parse_status_snapshot(self.status_source()),
            CompactionQuery(table_name=table_name, kind=kind),
            self.poller.columns,
        )
        self.logger.info(
            f"Started compactions after {before_compaction_start.isoformat()}: {started}"
        )

        query = CompactionQuery(
            table_name=table_name, kind=kind, not_before=before_compaction_start
        )
        return self.poller.poll_until_complete(query)

    def compact_and_wait(
        self,
        table_name: str,
        kind: CompactionKind,
        partition: Optional[PartitionSpec] = None,
    ) -> RetryReport:
        kind = CompactionKind(kind)
        self.logger.info(f"Running {kind.value} compaction on {table_name}")
        return self.scheduler.run(
            lambda: self._try_compacting(table_name, kind, partition),
            description=f"{kind.value} compaction of table {table_name}",
        )
