from typing import Any, List, Mapping, Optional, Protocol, Union

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from compaction_monitor.models import CompactionKind


class QueryExecutor(Protocol):
    name: str

    def execute(self, sql: str) -> None: ...

    def fetch_table(self, sql: str) -> List[List[Any]]: ...

    def fetch_rows(self, sql: str) -> List[tuple]: ...


class SqlAlchemyQueryExecutor:
    """Runs SQL text verbatim against any SQLAlchemy engine (trino://, hive://, sqlite://, ...)"""

    def __init__(self, name: str, engine: Union[Engine, str]):
        self.name = name
        self.engine = create_engine(engine) if isinstance(engine, str) else engine
        self.logger = logger

    def execute(self, sql: str) -> None:
        self.logger.debug(f"[{self.name}] {sql}")
        with self.engine.begin() as connection:
            connection.exec_driver_sql(sql)

    def fetch_table(self, sql: str) -> List[List[Any]]:
        """Returns the column names as the first row, followed by the data rows"""
        self.logger.debug(f"[{self.name}] {sql}")
        with self.engine.connect() as connection:
            result = connection.exec_driver_sql(sql)
            header: List[Any] = list(result.keys())
            return [header] + [list(row) for row in result]

    def fetch_rows(self, sql: str) -> List[tuple]:
        self.logger.debug(f"[{self.name}] {sql}")
        with self.engine.connect() as connection:
            return [tuple(row) for row in connection.exec_driver_sql(sql)]

    def __repr__(self) -> str:
        return f"SqlAlchemyQueryExecutor(name={self.name!r}, url={self.engine.url!r})"


PartitionSpec = Union[str, Mapping[str, Any]]


def render_partition(partition: Optional[PartitionSpec]) -> str:
    if not partition:
        return ""
    if isinstance(partition, str):
        return partition
    values = ", ".join(
        f"{key}='{str(value).replace(chr(39), chr(39) * 2)}'"
        for key, value in partition.items()
    )
    return f"PARTITION ({values})"


def build_compaction_statement(
    table_name: str,
    kind: CompactionKind,
    partition: Optional[PartitionSpec] = None,
) -> str:
    qualifier = render_partition(partition)
    target = f"{table_name} {qualifier}" if qualifier else table_name
    return f"ALTER TABLE {target} COMPACT '{CompactionKind(kind).value}'"


class HiveCompactionTrigger:
    def __init__(self, executor: QueryExecutor):
        self.executor = executor
        self.logger = logger

    def __call__(
        self,
        table_name: str,
        kind: CompactionKind,
        partition: Optional[PartitionSpec] = None,
    ) -> None:
        statement = build_compaction_statement(table_name, kind, partition)
        self.logger.info(f"Requesting compaction on {self.executor.name}: {statement}")
        self.executor.execute(statement)


class ShowCompactionsSource:
    """Status listing read through ``executor``.

    Hive's ``SHOW COMPACTIONS`` returns its own header (``CompactionId``,
    ``Table``, ``Start Time``, ...) as the first data row, so by default the
    rows are passed through as they are. Set ``header_in_rows=False`` for
    listings without such a row, the cursor's column names are used instead.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        statement: str = "SHOW COMPACTIONS",
        header_in_rows: bool = True,
    ):
        self.executor = executor
        self.statement = statement
        self.header_in_rows = header_in_rows

    def __call__(self) -> List[List[Any]]:
        if self.header_in_rows:
            return [list(row) for row in self.executor.fetch_rows(self.statement)]
        return self.executor.fetch_table(self.statement)
