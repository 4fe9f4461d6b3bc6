from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

StatusRecord = Dict[str, str]


class CompactionKind(str, Enum):
    MAJOR = "MAJOR"
    MINOR = "MINOR"


class PollStatus(str, Enum):
    not_started = "not_started"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"


TERMINAL_STATUSES = (PollStatus.succeeded, PollStatus.failed, PollStatus.timed_out)


class StatusColumns(BaseModel):
    """Column names of the status listing, as returned by ``SHOW COMPACTIONS``"""

    model_config = ConfigDict(frozen=True)

    table: str = "table"
    type: str = "type"
    state: str = "state"
    start_time: str = "start time"


class CompactionQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    table_name: str
    kind: CompactionKind
    # only compactions started at or after this instant are considered
    not_before: Optional[datetime] = None


class PollOutcome(BaseModel):
    status: PollStatus
    record: Optional[StatusRecord] = None
    reason: Optional[str] = None
    elapsed_time: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status == PollStatus.succeeded

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class StatusPollingConfig(BaseModel):
    poll_interval: float = 1.0
    timeout: float = 120.0  # 2 minutes

    @model_validator(mode="after")
    def check_positive(self) -> "StatusPollingConfig":
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        return self


class RetryPolicy(BaseModel):
    """Bounds for re-issuing a whole trigger-and-wait sequence.

    At least one of ``max_duration`` and ``max_attempts`` must be set so that
    retrying always terminates.
    """

    max_duration: Optional[float] = 360.0  # 6 minutes
    max_attempts: Optional[int] = None
    delay: float = 0.0

    @model_validator(mode="after")
    def check_bounded(self) -> "RetryPolicy":
        if self.max_duration is None and self.max_attempts is None:
            raise ValueError("either max_duration or max_attempts must be set")
        if self.max_duration is not None and self.max_duration <= 0:
            raise ValueError("max_duration must be positive")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")
        return self


class RetryReport(BaseModel):
    attempts: int
    elapsed_time: float
    outcome: PollOutcome


class VerificationRequest(BaseModel):
    query: str
    predicate: str = "true"
    expected_rows: List[tuple] = Field(default_factory=list)

    @property
    def full_query(self) -> str:
        return f"{self.query} WHERE {self.predicate}"


class BackendMismatch(BaseModel):
    backend: str
    actual_rows: List[Any]
    expected_rows: List[Any]
    missing_rows: List[Any]
    unexpected_rows: List[Any]
