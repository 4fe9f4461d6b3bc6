import random
import re
import time
from typing import Any, Callable, List, Optional

from loguru import logger

COMPACT_PATTERN = re.compile(
    r"^\s*ALTER\s+TABLE\s+(?P<table>\S+)\s*(?P<partition>PARTITION\s*\(.*\))?\s*"
    r"COMPACT\s+'(?P<kind>\w+)'\s*$",
    re.IGNORECASE,
)
CURSOR_COLUMNS = [
    "compactionid",
    "dbname",
    "tabname",
    "partname",
    "type",
    "state",
    "starttime",
]
# Hive sends this as the first data row of SHOW COMPACTIONS
SHOW_COMPACTIONS_HEADER = [
    "CompactionId",
    "Database",
    "Table",
    "Partition",
    "Type",
    "State",
    "Start Time",
]


class SimulatedCompaction:
    def __init__(self, compaction_id: int, table: str, partition: str, kind: str, requested_at: float):
        self.compaction_id = compaction_id
        self.table = table
        self.partition = partition
        self.kind = kind
        self.requested_at = requested_at
        self.final_state: Optional[str] = None


class MetastoreSimulator:
    """In-memory stand-in for a Hive metastore that runs compactions in the background.

    A requested compaction is ``initiated`` (no start time yet) for
    ``start_delay`` seconds, ``working`` until ``completion_time`` seconds have
    passed and then ``succeeded``, or ``failed`` with probability ``error_rate``.
    """

    def __init__(
        self,
        completion_time: float = 10.0,
        error_rate: float = 0.1,
        start_delay: float = 1.0,
        clock: Callable[[], float] = time.time,
        name: str = "hive",
    ):
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.start_delay = start_delay
        self.clock = clock
        self.name = name
        self.compactions: List[SimulatedCompaction] = []
        self.trigger_count = 0
        self.logger = logger

    def _state_of(self, compaction: SimulatedCompaction) -> str:
        if compaction.final_state is not None:
            return compaction.final_state

        elapsed = self.clock() - compaction.requested_at
        if elapsed < self.start_delay:
            return "initiated"
        if elapsed < self.completion_time:
            return "working"

        if random.random() < self.error_rate:
            self.logger.info(f"Compaction {compaction.compaction_id} failed")
            compaction.final_state = "failed"
        else:
            self.logger.info(f"Compaction {compaction.compaction_id} succeeded")
            compaction.final_state = "succeeded"
        return compaction.final_state

    def _start_time_of(self, compaction: SimulatedCompaction, state: str) -> str:
        if state == "initiated":
            return "---"
        return str(int((compaction.requested_at + self.start_delay) * 1000))

    def execute(self, sql: str) -> None:
        match = COMPACT_PATTERN.match(sql)
        if match is None:
            raise ValueError(f"Unsupported statement: {sql}")

        self.trigger_count += 1
        compaction = SimulatedCompaction(
            compaction_id=len(self.compactions) + 1,
            table=match.group("table").lower(),
            partition=match.group("partition") or "---",
            kind=match.group("kind").upper(),
            requested_at=self.clock(),
        )
        self.compactions.append(compaction)
        self.logger.info(
            f"Enqueued {compaction.kind} compaction {compaction.compaction_id} "
            f"for {compaction.table}"
        )

    def fetch_rows(self, sql: str) -> List[tuple]:
        """Rows of ``SHOW COMPACTIONS``, starting with Hive's own header row"""
        if sql.strip().upper() != "SHOW COMPACTIONS":
            raise ValueError(f"Unsupported query: {sql}")

        rows: List[tuple] = [tuple(SHOW_COMPACTIONS_HEADER)]
        for compaction in self.compactions:
            state = self._state_of(compaction)
            rows.append(
                (
                    str(compaction.compaction_id),
                    "default",
                    compaction.table,
                    compaction.partition,
                    compaction.kind,
                    state,
                    self._start_time_of(compaction, state),
                )
            )
        return rows

    def fetch_table(self, sql: str) -> List[List[Any]]:
        """Cursor column names followed by the rows, header row included"""
        return [list(CURSOR_COLUMNS)] + [list(row) for row in self.fetch_rows(sql)]
