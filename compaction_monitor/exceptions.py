from typing import List, Optional, Union

from compaction_monitor.models import BackendMismatch, StatusRecord


class CompactionMonitorError(Exception):
    pass


class CompactionInvariantError(CompactionMonitorError):
    """More than one compaction matched; auto-compaction must be disabled for the table"""

    def __init__(self, table_name: str, records: List[StatusRecord]):
        self.table_name = table_name
        self.records = records
        super().__init__(
            f"Expected at most 1 compaction for table {table_name}, "
            f"found {len(records)}: {records}"
        )


class CompactionRetryExhaustedError(CompactionMonitorError):
    def __init__(
        self,
        description: str,
        attempts: int,
        last_cause: Optional[Union[str, BaseException]] = None,
    ):
        self.description = description
        self.attempts = attempts
        self.last_cause = last_cause
        super().__init__(
            f"Could not complete {description} in {attempts} attempts, "
            f"last cause: {last_cause}"
        )


class VerificationError(AssertionError):
    def __init__(self, query: str, mismatches: List[BackendMismatch]):
        self.query = query
        self.mismatches = mismatches
        lines = [f"Result mismatch for query: {query}"]
        for mismatch in mismatches:
            lines.extend(
                [
                    f"[{mismatch.backend}]",
                    f"  actual:     {mismatch.actual_rows}",
                    f"  expected:   {mismatch.expected_rows}",
                    f"  missing:    {mismatch.missing_rows}",
                    f"  unexpected: {mismatch.unexpected_rows}",
                ]
            )
        super().__init__("\n".join(lines))
