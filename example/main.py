import sys

from compaction_monitor.compaction_monitor import CompactionMonitor
from compaction_monitor.exceptions import CompactionRetryExhaustedError, VerificationError
from compaction_monitor.executors import (
    HiveCompactionTrigger,
    ShowCompactionsSource,
    SqlAlchemyQueryExecutor,
)
from compaction_monitor.models import CompactionKind, RetryPolicy, StatusPollingConfig
from compaction_monitor.verifier import DualBackendVerifier
from loguru import logger
from metastore_simulator import MetastoreSimulator


def status_changed(outcome):
    print(f"Status changed to: {outcome.status.value}")
    print(f"Elapsed time: {outcome.elapsed_time:.6f}s")


def main():
    logger.remove()
    logger.add(sys.stderr, level="INFO")

    metastore = MetastoreSimulator(completion_time=5.0, error_rate=0.3)
    monitor = CompactionMonitor(
        HiveCompactionTrigger(metastore),
        ShowCompactionsSource(metastore),
        polling_config=StatusPollingConfig(poll_interval=1.0, timeout=15.0),
        retry_policy=RetryPolicy(max_duration=60.0),
        on_status_change=status_changed,
    )

    try:
        report = monitor.compact_and_wait("demo_table", CompactionKind.MINOR)
        print(f"Compaction finished after {report.attempts} attempt(s)")
        print(f"Total time: {report.elapsed_time:.6f}s")
    except CompactionRetryExhaustedError as e:
        print(f"Compaction did not finish: {e}")

    first = SqlAlchemyQueryExecutor("first", "sqlite://")
    second = SqlAlchemyQueryExecutor("second", "sqlite://")
    for backend, rows in ((first, "(1, 'a'), (1, 'a')"), (second, "(1, 'a')")):
        backend.execute("CREATE TABLE demo_table (col INTEGER, fcol TEXT)")
        backend.execute(f"INSERT INTO demo_table VALUES {rows}")

    try:
        DualBackendVerifier(first, second).verify_select(
            "SELECT col, fcol FROM demo_table", "true", (1, "a"), (1, "a")
        )
    except VerificationError as e:
        print(e)


if __name__ == "__main__":
    main()
