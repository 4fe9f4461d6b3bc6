from datetime import datetime
from typing import Any, List, Optional, Sequence

from compaction_monitor.models import CompactionQuery, StatusColumns, StatusRecord


def parse_status_snapshot(table: Sequence[Sequence[Any]]) -> List[StatusRecord]:
    """Turns a tabular listing (header row first) into status records.

    Header names are lower-cased. Columns with a missing header are skipped and
    missing cells are left out of the record instead of becoming empty strings.
    """
    if not table:
        return []

    header = table[0]
    records: List[StatusRecord] = []
    for row in table[1:]:
        record: StatusRecord = {}
        for column_name, value in zip(header, row):
            if column_name is None or value is None:
                continue
            record[str(column_name).lower()] = (
                value if isinstance(value, str) else str(value)
            )
        records.append(record)
    return records


def epoch_millis_truncated(instant: datetime) -> int:
    """Epoch milliseconds of ``instant`` truncated to the whole second"""
    return int(instant.timestamp()) * 1000


def _started_after(record: StatusRecord, not_before: int, column: str) -> bool:
    try:
        # start time is expressed in milliseconds
        return int(record[column]) >= not_before
    except (KeyError, ValueError):
        return False


def filter_compactions(
    records: Sequence[StatusRecord],
    query: CompactionQuery,
    columns: Optional[StatusColumns] = None,
) -> List[StatusRecord]:
    """Selects the records describing compactions of ``query.kind`` on ``query.table_name``.

    When ``query.not_before`` is given, records whose start time cannot be
    parsed do not pass the time filter. Without it they are kept.
    """
    columns = columns or StatusColumns()
    table_name = query.table_name.lower()
    not_before = (
        epoch_millis_truncated(query.not_before)
        if query.not_before is not None
        else None
    )

    matching = []
    for record in records:
        record_table = record.get(columns.table)
        if record_table is None or record_table.lower() != table_name:
            continue
        if record.get(columns.type) != query.kind.value:
            continue
        if not_before is not None and not _started_after(
            record, not_before, columns.start_time
        ):
            continue
        matching.append(record)
    return matching
